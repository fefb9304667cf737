"""
Configuration Management for LedgerSync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
The engine only ever reads configuration through the accessor functions at
the bottom of this module, so tests can hand in an explicit settings object
and production code can rely on the cached environment-backed one.

List and mapping fields are read from the environment as JSON, e.g.
``LEDGER_ACCOUNTS='["josh", "anna"]'``.
"""

from functools import lru_cache
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = structlog.get_logger(__name__)

DEFAULT_CRITICALITY_OPTIONS = ["Essential", "Nonessential"]


class UserProfile(BaseModel):
    """A household member as configured for the client (user1, user2, joint)."""

    name: str = ""
    filter: str = ""
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")

    model_config = ConfigDict(populate_by_name=True)


class LoggingSettings(BaseSettings):
    """Local logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = Field(
        default="INFO",
        description="Minimum level for local log output"
    )
    json_logs: bool = Field(
        default=True,
        description="Render log lines as JSON (False renders for a console)"
    )

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Accept any casing for the level name."""
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class LedgerSettings(BaseSettings):
    """
    Household ledger configuration.

    Mirrors the configuration file the desktop client ships with: the
    canonical member accounts, the category and criticality enumerations and
    the default payment method per account.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    accounts: list[str] = Field(
        default_factory=list,
        description="Canonical member accounts (never includes 'joint')"
    )
    categories: list[str] = Field(
        default_factory=list,
        description="Enumerated categories; empty means free-form categories"
    )
    criticality_options: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CRITICALITY_OPTIONS),
        description="Enumerated criticality levels"
    )
    payment_methods: list[str] = Field(
        default_factory=list,
        description="Known payment methods"
    )
    default_payment_method_map: dict[str, str] = Field(
        default_factory=dict,
        description="Account name -> default payment method"
    )
    default_criticality_map: dict[str, str] = Field(
        default_factory=dict,
        description="Category -> default criticality"
    )
    user_profiles: dict[str, UserProfile] = Field(
        default_factory=dict,
        description="Profile key (user1, user2, joint) -> member profile"
    )

    @field_validator("accounts", "categories", "criticality_options", "payment_methods")
    @classmethod
    def drop_blank_entries(cls, v: list[str]) -> list[str]:
        """Ignore empty strings in enumerations."""
        return [str(item).strip() for item in v if str(item).strip()]

    @property
    def member_accounts(self) -> list[str]:
        """Canonical member accounts, lower-cased, without the joint pseudo-account."""
        members = [a.lower() for a in self.accounts]
        return [a for a in members if a != "joint"]

    @property
    def has_category_enumeration(self) -> bool:
        return len(self.categories) > 0

    def with_overrides(self, **fields) -> "LedgerSettings":
        """Return a copy with the given fields replaced (bootstrap and tests)."""
        data = self.model_dump()
        data.update(fields)
        return LedgerSettings.model_validate(data)


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()

    @property
    def logging(self) -> LoggingSettings:
        return LoggingSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.ledger
        results["ledger"] = True
    except Exception as e:
        results["ledger"] = False
        results["ledger_error"] = str(e)

    try:
        _ = settings.logging
        results["logging"] = True
    except Exception as e:
        results["logging"] = False
        results["logging_error"] = str(e)

    return results


# =============================================================================
# ACCESSORS - the only way the engine reads configuration
# =============================================================================

def _ledger(settings: Optional[LedgerSettings]) -> LedgerSettings:
    return settings if settings is not None else get_settings().ledger


def get_accounts(settings: Optional[LedgerSettings] = None) -> list[str]:
    """Canonical member accounts used to resolve joint fan-out targets."""
    accounts = _ledger(settings).member_accounts
    logger.debug("config_accounts", count=len(accounts))
    return accounts


def get_categories(settings: Optional[LedgerSettings] = None) -> list[str]:
    return list(_ledger(settings).categories)


def get_criticality_options(settings: Optional[LedgerSettings] = None) -> list[str]:
    return list(_ledger(settings).criticality_options)


def get_payment_methods(settings: Optional[LedgerSettings] = None) -> list[str]:
    return list(_ledger(settings).payment_methods)


def get_criticality_for_category(
    category: Optional[str],
    settings: Optional[LedgerSettings] = None,
) -> str:
    """
    Resolve the default criticality for a category.

    Exact map match first, then a case-insensitive match, then the first
    configured criticality option.
    """
    ledger = _ledger(settings)
    options = ledger.criticality_options or DEFAULT_CRITICALITY_OPTIONS
    fallback = options[0]

    if not category:
        return fallback

    mapping = ledger.default_criticality_map
    if category in mapping:
        return mapping[category]

    lower = category.lower()
    for key, value in mapping.items():
        if key.lower() == lower:
            logger.debug("criticality_case_insensitive_match", category=category, key=key)
            return value

    return fallback


def get_default_payment_method_for_account(
    account: Optional[str],
    settings: Optional[LedgerSettings] = None,
) -> Optional[str]:
    """
    Resolve the default payment method for an account.

    Resolution order:
    1. The user profile whose ``name`` or ``filter`` matches the account
    2. ``default_payment_method_map`` exact match, then case-insensitive
    3. The first configured payment method
    """
    ledger = _ledger(settings)
    first_method = ledger.payment_methods[0] if ledger.payment_methods else None

    if not account:
        return first_method

    acct_lower = account.lower()
    for key, profile in ledger.user_profiles.items():
        if acct_lower in (profile.name.lower(), profile.filter.lower()):
            if profile.payment_method:
                logger.debug("payment_method_from_profile", account=account, profile=key)
                return profile.payment_method
            break

    mapping = ledger.default_payment_method_map
    if account in mapping:
        return mapping[account]
    for key, value in mapping.items():
        if key.lower() == acct_lower:
            return value

    return first_method
