"""
Services Package

Remote collaborators the engine consumes.
"""
