"""Configuration package."""

from ledgersync.config.settings import (
    LedgerSettings,
    LoggingSettings,
    Settings,
    UserProfile,
    get_accounts,
    get_categories,
    get_criticality_for_category,
    get_criticality_options,
    get_default_payment_method_for_account,
    get_payment_methods,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "LedgerSettings",
    "LoggingSettings",
    "Settings",
    "UserProfile",
    "get_accounts",
    "get_categories",
    "get_criticality_for_category",
    "get_criticality_options",
    "get_default_payment_method_for_account",
    "get_payment_methods",
    "get_settings",
    "validate_all_settings",
]
