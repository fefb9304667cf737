"""
Core Data Models for LedgerSync

These models define the strict schemas for all data flowing through the engine.
They are designed to:
1. Resolve the "projected or actual" question once, at the boundary
2. Resolve the "member or joint" question once, at the boundary
3. Keep client-only bookkeeping out of every request payload
4. Be serializable for logging and for the wire (camelCase aliases)

DESIGN DECISION: A transaction is a tagged union. ``BudgetTransaction`` and
``ProjectedTransaction`` share every field and differ only in their ``kind``
tag, so routing a row to the right remote collection is a property of the
row's type instead of an ad-hoc flag that every transformation must carry.
"""

import re
import time
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


JOINT_ACCOUNT = "joint"

# Client-generated ids start with this prefix and never reach the server.
TEMP_ID_PREFIX = "new-"

# Fields that exist only on the client.
CLIENT_ONLY_FIELDS = frozenset({"id", "is_new", "kind"})


def make_temp_id() -> str:
    """Create a temporary id for an optimistic row: ``new-<epoch ms>-<6 hex>``."""
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{uuid4().hex[:6]}"


def is_temporary_id(row_id: Any) -> bool:
    return str(row_id).startswith(TEMP_ID_PREFIX)


# =============================================================================
# ACCOUNTS
# =============================================================================

class AccountKind(str, Enum):
    """Whether an account reference names a member or the joint pseudo-account."""
    MEMBER = "member"
    JOINT = "joint"


class AccountRef(BaseModel):
    """
    A resolved account reference.

    Built once from the raw account string with ``AccountRef.parse`` so the
    rest of the engine never compares against the literal ``"joint"``.
    Member names are lower-cased: cache keys built from a view and cache keys
    built by the invalidation fan-out must agree.
    """
    model_config = ConfigDict(frozen=True)

    kind: AccountKind
    name: str

    @classmethod
    def parse(cls, value: Any) -> Optional["AccountRef"]:
        """Resolve a raw account value; blank or missing values resolve to None."""
        if value is None:
            return None
        if isinstance(value, AccountRef):
            return value
        text = str(value).strip()
        if not text:
            return None
        lower = text.lower()
        if lower == JOINT_ACCOUNT:
            return cls.joint()
        return cls(kind=AccountKind.MEMBER, name=lower)

    @classmethod
    def joint(cls) -> "AccountRef":
        return cls(kind=AccountKind.JOINT, name=JOINT_ACCOUNT)

    @classmethod
    def member(cls, name: str) -> "AccountRef":
        ref = cls.parse(name)
        if ref is None or ref.is_joint:
            raise ValueError(f"Not a member account: {name!r}")
        return ref

    @property
    def is_joint(self) -> bool:
        return self.kind == AccountKind.JOINT

    def __str__(self) -> str:
        return self.name


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionBase(BaseModel):
    """
    Fields shared by actual and projected transactions.

    ``id`` is either a persistent, server-assigned id or a temporary id
    (``new-`` prefix) on a row flagged ``is_new``. Exactly one of the two
    holds for every row.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    id: str = Field(..., min_length=1)
    account: str = ""
    statement_period: Optional[str] = None
    amount: Optional[Decimal] = None
    name: str = ""
    category: str = ""
    criticality: str = ""
    payment_method: str = ""
    memo: str = ""
    transaction_date: Optional[datetime] = None
    is_new: bool = False

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Servers may return numeric ids; ids are opaque strings here."""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("account", "name", "category", "criticality", "payment_method", "memo", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("transaction_date")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Naive timestamps are read as UTC so every row sorts on one timeline."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def check_id_space(self) -> "TransactionBase":
        """A temporary id and the is_new flag always travel together."""
        if is_temporary_id(self.id) and not self.is_new:
            raise ValueError(f"Temporary id {self.id} must be flagged as new")
        if self.is_new and not is_temporary_id(self.id):
            raise ValueError(f"New row must carry a temporary id, got {self.id}")
        return self

    @property
    def is_projected(self) -> bool:
        return getattr(self, "kind", "budget") == "projected"

    @property
    def account_ref(self) -> Optional[AccountRef]:
        return AccountRef.parse(self.account)

    def sort_timestamp(self) -> float:
        """Sort key for newest-first ordering; rows without a date sort last."""
        if self.transaction_date is None:
            return float("-inf")
        return self.transaction_date.timestamp()

    def to_payload(self) -> dict[str, Any]:
        """
        Request body for the server.

        Strips every client-only field: the id (temporary or persistent, it
        travels in the URL), the ``isNew`` flag and the ``kind`` tag.
        """
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude=set(CLIENT_ONLY_FIELDS),
        )

    def merged(self, patch: dict[str, Any]) -> "TransactionBase":
        """Return a validated copy with ``patch`` applied (snake_case or camelCase keys)."""
        data = self.model_dump()
        for key, value in patch.items():
            field = _FIELD_BY_ALIAS.get(key, key)
            if field in CLIENT_ONLY_FIELDS:
                continue
            data[field] = value
        return type(self).model_validate(data)


class BudgetTransaction(TransactionBase):
    """An actual transaction stored in the Budget collection."""
    kind: Literal["budget"] = "budget"


class ProjectedTransaction(TransactionBase):
    """A planned transaction stored in the Projected collection."""
    kind: Literal["projected"] = "projected"


Transaction = Annotated[
    Union[BudgetTransaction, ProjectedTransaction],
    Field(discriminator="kind"),
]

TransactionAdapter: TypeAdapter = TypeAdapter(Transaction)

_FIELD_BY_ALIAS = {
    to_camel(name): name for name in TransactionBase.model_fields
}


def as_projected(row: TransactionBase) -> ProjectedTransaction:
    """Re-tag a row as projected, keeping every field."""
    if isinstance(row, ProjectedTransaction):
        return row
    return ProjectedTransaction.model_validate(row.model_dump(exclude={"kind"}))


def as_budget(row: TransactionBase) -> BudgetTransaction:
    if isinstance(row, BudgetTransaction):
        return row
    return BudgetTransaction.model_validate(row.model_dump(exclude={"kind"}))


def transaction_from_mapping(data: dict[str, Any], *, projected: bool) -> TransactionBase:
    """Build the right variant of a transaction from a server or draft mapping."""
    model = ProjectedTransaction if projected else BudgetTransaction
    return model.model_validate(data)


# =============================================================================
# SCOPES
# =============================================================================

class Scope(BaseModel):
    """
    The (account?, statementPeriod?, filters?) tuple identifying a cacheable query.

    ``filters()`` is the one canonical filter-construction path: the order
    of the returned mapping is fixed, and empty values are omitted.
    """
    model_config = ConfigDict(frozen=True)

    account: Optional[AccountRef] = None
    statement_period: Optional[str] = None
    category: Optional[str] = None
    criticality: Optional[str] = None
    payment_method: Optional[str] = None

    @classmethod
    def of(cls, account: Any = None, statement_period: Optional[str] = None, **filters) -> "Scope":
        return cls(account=AccountRef.parse(account), statement_period=statement_period or None, **filters)

    def filters(self) -> dict[str, str]:
        ordered = (
            ("statementPeriod", self.statement_period),
            ("category", self.category),
            ("criticality", self.criticality),
            ("paymentMethod", self.payment_method),
        )
        return {k: v for k, v in ordered if v}

    @property
    def account_name(self) -> Optional[str]:
        return self.account.name if self.account else None


# =============================================================================
# SERVER SHAPES
# =============================================================================

class AccountTransactionList(BaseModel):
    """
    Canonical account-scoped response: the account's own rows and the joint rows.

    Totals are the server's when it reports them; otherwise they are summed
    from the rows.
    """

    personal: list[Transaction] = Field(default_factory=list)
    joint: list[Transaction] = Field(default_factory=list)
    personal_total: Optional[Decimal] = None
    joint_total: Optional[Decimal] = None

    @property
    def rows(self) -> list[TransactionBase]:
        return [*self.personal, *self.joint]

    @property
    def count(self) -> int:
        return len(self.personal) + len(self.joint)

    def resolved_personal_total(self) -> Decimal:
        if self.personal_total is not None:
            return self.personal_total
        return sum((t.amount or Decimal("0") for t in self.personal), Decimal("0"))

    def resolved_joint_total(self) -> Decimal:
        if self.joint_total is not None:
            return self.joint_total
        return sum((t.amount or Decimal("0") for t in self.joint), Decimal("0"))

    @property
    def total(self) -> Decimal:
        return self.resolved_personal_total() + self.resolved_joint_total()


class PaymentSummary(BaseModel):
    """Per-account payment totals for a statement period, by credit card."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    account: str
    credit_card_totals: dict[str, Decimal] = Field(default_factory=dict)
    credit_card_category_breakdowns: dict[str, dict[str, Decimal]] = Field(default_factory=dict)

    @field_validator("account")
    @classmethod
    def lower_account(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def total(self) -> Decimal:
        return sum(self.credit_card_totals.values(), Decimal("0"))


class ImportResult(BaseModel):
    """Result of a bulk CSV import into the Budget collection."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    statement_period: str
    imported_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)
    errors: list[str] = Field(default_factory=list)


# =============================================================================
# STATEMENT PERIODS
# =============================================================================

_MONTHS = (
    "JANUARY", "FEBRUARY", "MARCH", "APRIL", "MAY", "JUNE",
    "JULY", "AUGUST", "SEPTEMBER", "OCTOBER", "NOVEMBER", "DECEMBER",
)

_PERIOD_RE = re.compile(r"^([A-Z]+)(\d{4})$", re.IGNORECASE)


def statement_period_for(day: date) -> str:
    """Statement period token for a date, e.g. ``NOVEMBER2025``."""
    return f"{_MONTHS[day.month - 1]}{day.year}"


def parse_statement_period(value: Optional[str]) -> Optional[tuple[str, int]]:
    """Split ``NOVEMBER2025`` into ``("NOVEMBER", 2025)``; None when unparseable."""
    if not value:
        return None
    match = _PERIOD_RE.match(value.strip())
    if not match or match.group(1).upper() not in _MONTHS:
        return None
    return match.group(1).upper(), int(match.group(2))


def statement_period_options(
    anchor: Optional[date] = None,
    lookback: int = 1,
    forward: int = 5,
) -> list[str]:
    """Statement periods from ``lookback`` months before ``anchor`` to ``forward`` months after."""
    anchor = anchor or date.today()
    options = []
    for offset in range(-lookback, forward + 1):
        month_index = anchor.year * 12 + (anchor.month - 1) + offset
        year, month = divmod(month_index, 12)
        options.append(statement_period_for(date(year, month + 1, 1)))
    return options
