"""
LedgerSync - Transaction Reconciliation Engine

The in-process core of a household ledger client. It keeps locally drafted
transactions, fetched budget (actual) transactions and fetched projected
(planned) transactions in one consistent view per account and statement
period, and propagates every mutation to the cached views that depend on it.

DESIGN PRINCIPLES:
1. Cache entries are replaced wholesale, never patched in place
2. A mutation against "joint" is never assumed to stay in "joint"
3. Row-scoped failures stay row-scoped
4. Reconciliation failures degrade, they never crash the view
"""

__version__ = "1.0.0"
__author__ = "LedgerSync Team"
