"""
Remote Collection Interfaces

DESIGN DECISION: The engine never talks HTTP itself.
Budget transactions, projected transactions and payment summaries live
behind the abstract interfaces below. This allows us to:
1. Plug in any network client (REST, IPC bridge, local server)
2. Use the in-memory backend for testing
3. Keep response-shape guessing out of the engine (see ``adapter``)

Implementations return the server's raw payloads (dicts and lists).
``ledgersync.services.collections.adapter`` turns those into models at the
boundary, so the interfaces stay as close to the wire as possible.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


# =============================================================================
# ERRORS
# =============================================================================

class LedgerError(Exception):
    """Base exception for the engine."""
    pass


class RemoteError(LedgerError):
    """A collaborator call failed (network, server or protocol)."""

    def __init__(self, message: str, *, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class NotFoundError(RemoteError):
    """The addressed transaction does not exist remotely."""
    pass


class UploadError(RemoteError):
    """A bulk import failed as a whole."""

    def __init__(self, message: str, *, statement_period: Optional[str] = None):
        super().__init__(message, operation="upload")
        self.statement_period = statement_period


class ReconciliationError(LedgerError):
    """Internal merge or normalization failure. Always caught inside the engine."""
    pass


class TransactionValidationError(LedgerError):
    """A draft failed create-time validation."""

    def __init__(self, result):
        super().__init__(result.message or "Validation failed")
        self.result = result


# =============================================================================
# INTERFACES
# =============================================================================

class BudgetCollection(ABC):
    """
    Remote collection of actual (budget) transactions.

    Every read tolerates an empty filter set and then returns everything.
    """

    @abstractmethod
    async def list_transactions(
        self,
        account: Optional[str] = None,
        filters: Optional[dict[str, str]] = None,
    ) -> Any:
        """
        Fetch budget transactions.

        Args:
            account: Account to scope the read to; None for every account
            filters: Equality filters (statementPeriod, category,
                criticality, paymentMethod)

        Returns:
            Raw payload: an account split (personal and joint rows) when
            account-scoped, otherwise a flat list

        Raises:
            RemoteError: If the read fails
        """
        pass

    @abstractmethod
    async def create(self, payload: dict[str, Any]) -> Any:
        """
        Create one transaction.

        Args:
            payload: Request body without any client-only field

        Returns:
            The created transaction as the server stored it. The server may
            assign a different account than the one requested.

        Raises:
            RemoteError: If the create fails
        """
        pass

    @abstractmethod
    async def update(self, transaction_id: str, payload: dict[str, Any]) -> Any:
        """
        Update one transaction by persistent id.

        Raises:
            NotFoundError: If the transaction doesn't exist
            RemoteError: If the update fails
        """
        pass

    @abstractmethod
    async def delete(self, transaction_id: str) -> Any:
        """
        Delete one transaction by persistent id.

        Raises:
            RemoteError: If the delete fails
        """
        pass

    @abstractmethod
    async def upload(self, file: Any, statement_period: str) -> Any:
        """
        Bulk-import a statement file into one statement period.

        Args:
            file: Readable file handle, path or raw bytes
            statement_period: Target statement period token

        Returns:
            Raw import result

        Raises:
            UploadError: If the import fails
        """
        pass


class ProjectedCollection(ABC):
    """Remote collection of planned (projected) transactions."""

    @abstractmethod
    async def list_transactions(
        self,
        account: str,
        filters: Optional[dict[str, str]] = None,
    ) -> Any:
        """
        Fetch projected transactions for one account.

        Returns:
            Raw payload with the account's personal rows and the joint rows
        """
        pass

    @abstractmethod
    async def list_all(self) -> Any:
        """
        Fetch every projected transaction.

        No server-side filtering; callers filter the result themselves.
        """
        pass

    @abstractmethod
    async def create(self, payload: dict[str, Any]) -> Any:
        pass

    @abstractmethod
    async def update(self, transaction_id: str, payload: dict[str, Any]) -> Any:
        pass

    @abstractmethod
    async def delete(self, transaction_id: str) -> Any:
        pass


class PaymentSummarySource(ABC):
    """Per-account payment totals by credit card."""

    @abstractmethod
    async def get_payment_summary(
        self,
        accounts: list[str],
        statement_period: Optional[str],
    ) -> Any:
        """
        Fetch payment summaries.

        Args:
            accounts: Member accounts to summarize
            statement_period: Statement period token

        Returns:
            Raw payload: a list of summaries or a ``{"summary": [...]}`` wrapper
        """
        pass
