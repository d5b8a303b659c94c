"""
Settings for the compensation job.

Values come from the environment (a .env file is read first) and are frozen
into one AppConfig. Computation code never reads the module-level instance;
the entry point passes the relevant section into each constructor.

    from upsales.config import config

    tiers = config.compensation.tiers
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

from dotenv import load_dotenv

from upsales.exceptions import ConfigurationError

load_dotenv()


@dataclass(frozen=True)
class APIConfig:
    """KeyCRM API configuration."""

    base_url: str = field(
        default_factory=lambda: os.getenv("KEYCRM_BASE_URL", "https://openapi.keycrm.app/v1")
    )
    key: str = field(default_factory=lambda: os.getenv("KEYCRM_API_KEY", ""))
    page_limit: int = 50
    request_timeout: float = 30.0
    rate_limit_delay: float = 1.1
    max_pages: int = 1000
    include: str = "products.offer,manager,tags,status"


@dataclass(frozen=True)
class TierConfig:
    """One manager seniority level."""

    level: int
    name: str
    rate_pct: float       # % of incoming-order margin
    bonus_pct: float      # % of upsell / tagged-order margin
    threshold: float      # bonus is paid only when margin is strictly above this (UAH)

    @property
    def header(self) -> str:
        """Column header used in the monthly tables, e.g. 'ЗП Р1 (3%/50%)'."""
        return f"ЗП Р{self.level} ({self.rate_pct:g}%/{self.bonus_pct:g}%)"


DEFAULT_TIERS: Tuple[TierConfig, ...] = (
    TierConfig(level=1, name="Рівень 1", rate_pct=3, bonus_pct=50, threshold=150),
    TierConfig(level=2, name="Рівень 2", rate_pct=4, bonus_pct=55, threshold=175),
    TierConfig(level=3, name="Рівень 3", rate_pct=5, bonus_pct=60, threshold=200),
)


@dataclass(frozen=True)
class CompensationConfig:
    """Tier table, special tags and canceled-status rules."""

    tiers: Tuple[TierConfig, ...] = DEFAULT_TIERS

    # Orders carrying one of these tags are counted in full (order matters)
    full_order_tags: Tuple[str, ...] = ("Стара база", "Відгук")

    # Statuses treated as canceled / failed
    canceled_status_ids: FrozenSet[int] = frozenset(
        {15, 16, 17, 19, 28, 29, 30, 31, 32, 35}
    )
    canceled_status_group_id: int = 6

    def is_canceled(self, status_id: Optional[int], status_group_id: Optional[int]) -> bool:
        """Check the canceled-order predicate."""
        if status_group_id and status_group_id == self.canceled_status_group_id:
            return True
        return bool(status_id) and status_id in self.canceled_status_ids


@dataclass(frozen=True)
class ReportConfig:
    """Report output and period selection."""

    output_dir: str = field(default_factory=lambda: os.getenv("UPSALES_REPORT_DIR", "reports"))
    filename_template: str = "upsales_{stamp}.xlsx"
    timezone: str = "Europe/Kyiv"

    # Period: last_month, this_month, this_month_to_yesterday, last_30_days, custom, all
    period: str = field(
        default_factory=lambda: os.getenv("UPSALES_PERIOD", "this_month_to_yesterday")
    )
    custom_start: str = field(default_factory=lambda: os.getenv("UPSALES_CUSTOM_START", ""))
    custom_end: str = field(default_factory=lambda: os.getenv("UPSALES_CUSTOM_END", ""))
    convert_dates_to_utc: bool = True


@dataclass(frozen=True)
class SchedulerConfig:
    """Periodic batch schedule."""

    hour: int = field(default_factory=lambda: int(os.getenv("UPSALES_CRON_HOUR", "6")))
    minute: int = 0
    max_history: int = 50


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "1.0.0"
    api: APIConfig = field(default_factory=APIConfig)
    compensation: CompensationConfig = field(default_factory=CompensationConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    json_logs: bool = field(
        default_factory=lambda: os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")
    )


# Global config instance
config = AppConfig()


def validate_config(app_config: AppConfig = None, require_api: bool = True) -> None:
    """
    Check the settings a run depends on, reporting every problem at once.

    Call this on startup to fail fast with clear error messages
    instead of wrong payroll numbers.

    Args:
        app_config: Configuration to check (defaults to the global instance)
        require_api: If True, validate the KeyCRM API key

    Raises:
        ConfigurationError: If required configuration is missing
    """
    app_config = app_config or config
    errors: List[str] = []

    if require_api and not app_config.api.key:
        errors.append("KEYCRM_API_KEY is not set")

    tiers = app_config.compensation.tiers
    if len(tiers) != 3:
        errors.append(f"Exactly 3 manager tiers are required, got {len(tiers)}")

    levels = [t.level for t in tiers]
    if sorted(levels) != list(range(1, len(tiers) + 1)):
        errors.append(f"Tier levels must be 1..{len(tiers)}, got {levels}")

    for tier in tiers:
        if tier.rate_pct < 0 or tier.bonus_pct < 0:
            errors.append(f"Tier {tier.level}: percentages must be non-negative")
        if tier.threshold < 0:
            errors.append(f"Tier {tier.level}: threshold must be non-negative")

    if not app_config.compensation.full_order_tags:
        errors.append("At least one full-order tag is required")

    if app_config.api.page_limit <= 0:
        errors.append("API page limit must be positive")

    if errors:
        problems = "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(f"Invalid configuration:\n{problems}")
