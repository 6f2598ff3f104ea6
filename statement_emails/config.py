"""
Statement Email Scheduler -- Configuration Module

Centralizes all configuration for the statement email scheduler.
Loads defaults from dataclasses, then overlays any overrides from config.yaml.

Usage:
    from statement_emails.config import get_config
    cfg = get_config()                         # loads config.yaml if present
    cfg = get_config("path/to/custom.yaml")    # loads a specific file
    print(cfg.statement_emails.enabled)        # False
    print(cfg.statement_emails.weekly_day_of_week.display_name)  # "Monday"
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .models import DayOfWeek

# ---------------------------------------------------------------------------
# Path constants -- everything relative to the project root
# ---------------------------------------------------------------------------
_THIS_DIR = Path(__file__).resolve().parent          # statement_emails/
PROJECT_ROOT = _THIS_DIR.parent                       # repository root
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
TEMPLATE_DIR = _THIS_DIR / "templates"

# Fixed poll interval of the background loop.
POLL_INTERVAL_MINUTES = 30


class ConfigError(ValueError):
    """Raised when a configuration value cannot be used."""


_TRUE_STRINGS = ("true", "1", "yes", "y", "on")
_FALSE_STRINGS = ("false", "0", "no", "n", "off", "")


def parse_bool(val, name: str) -> bool:
    """Coerce a YAML scalar to bool.

    Handles ``True``, ``"false"``, ``"yes"``, ``0``.  Anything else raises
    ConfigError naming the setting.
    """
    if isinstance(val, bool):
        return val
    if val is None:
        return False
    if isinstance(val, (int, float)):
        return val != 0
    s = str(val).strip().lower()
    if s in _TRUE_STRINGS:
        return True
    if s in _FALSE_STRINGS:
        return False
    raise ConfigError(f"{name} must be a boolean, got {val!r}")


# ===================================================================
# 1. Statement schedule
# ===================================================================

@dataclass
class StatementScheduleConfig:
    """When weekly and monthly statements go out (all hours in UTC)."""
    enabled: bool = False
    weekly_day_of_week: DayOfWeek = DayOfWeek.MONDAY
    weekly_send_hour_utc: int = 6
    monthly_day_of_month: int = 1
    monthly_send_hour_utc: int = 6
    include_closed_invoices: bool = True

    def __post_init__(self):
        self.normalize()

    def normalize(self) -> None:
        """Coerce YAML scalars into their typed form.

        Hours and day-of-month are kept as given; the schedule calculator
        clamps them.
        """
        try:
            self.weekly_day_of_week = DayOfWeek.parse(self.weekly_day_of_week)
        except ValueError as exc:
            raise ConfigError(f"statement_emails.weekly_day_of_week: {exc}") from exc
        for attr in ("weekly_send_hour_utc", "monthly_day_of_month", "monthly_send_hour_utc"):
            try:
                setattr(self, attr, int(getattr(self, attr)))
            except (TypeError, ValueError) as exc:
                raise ConfigError(
                    f"statement_emails.{attr} must be an integer, "
                    f"got {getattr(self, attr)!r}"
                ) from exc
        self.enabled = parse_bool(self.enabled, "statement_emails.enabled")
        self.include_closed_invoices = parse_bool(
            self.include_closed_invoices, "statement_emails.include_closed_invoices"
        )


# ===================================================================
# 2. Email / SMTP
# ===================================================================

@dataclass
class EmailSettings:
    """Outbound email configuration.

    When ``enabled`` is False the mailer only logs what it would have sent
    and reports success, so a disabled mail relay never blocks the
    scheduler's markers.
    """
    enabled: bool = False
    smtp_host: str = "localhost"
    smtp_port: int = 587
    smtp_username: str = ""        # set via env var SMTP_USERNAME
    smtp_password: str = ""        # set via env var SMTP_PASSWORD
    from_email: str = "statements@example.com"
    from_name: str = "Accounts Receivable"
    enable_ssl: bool = True        # STARTTLS
    timeout_seconds: float = 30.0
    application_url: str = "http://localhost:5000"
    company_name: str = "Shop Inventory"

    def __post_init__(self):
        self.smtp_username = self.smtp_username or os.environ.get("SMTP_USERNAME", "")
        self.smtp_password = self.smtp_password or os.environ.get("SMTP_PASSWORD", "")
        self.normalize()

    def normalize(self) -> None:
        self.enabled = parse_bool(self.enabled, "email.enabled")
        self.enable_ssl = parse_bool(self.enable_ssl, "email.enable_ssl")
        try:
            self.smtp_port = int(self.smtp_port)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"email.smtp_port must be an integer, got {self.smtp_port!r}") from exc

    @property
    def statements_url(self) -> str:
        return f"{self.application_url.rstrip('/')}/customer-portal/statements"


# ===================================================================
# 3. Backend API
# ===================================================================

@dataclass
class BackendApiConfig:
    """The inventory backend that owns invoices, payments and partners."""
    base_url: str = "http://localhost:5106"
    api_key: str = ""              # set via env var BACKEND_API_KEY
    timeout_seconds: float = 30.0

    def __post_init__(self):
        self.api_key = self.api_key or os.environ.get("BACKEND_API_KEY", "")


# ===================================================================
# 4. Storage
# ===================================================================

@dataclass
class StorageConfig:
    """SQLite file holding app settings and customer portal users."""
    db_path: str = "data/statement_emails.db"

    @property
    def resolved_db_path(self) -> Path:
        p = Path(self.db_path)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p


# ===================================================================
# 5. Scheduler loop
# ===================================================================

@dataclass
class SchedulerConfig:
    """Background loop settings."""
    poll_interval_minutes: float = POLL_INTERVAL_MINUTES
    run_on_start: bool = False     # run a tick before the first wait

    def __post_init__(self):
        self.normalize()

    def normalize(self) -> None:
        self.run_on_start = parse_bool(self.run_on_start, "scheduler.run_on_start")

    @property
    def poll_interval_seconds(self) -> float:
        return float(self.poll_interval_minutes) * 60.0


# ===================================================================
# 6. Logging
# ===================================================================

@dataclass
class LoggingConfig:
    level: str = "INFO"
    log_file: str = ""             # empty = console only

    def resolved_log_file(self) -> Path | None:
        if not self.log_file:
            return None
        p = Path(self.log_file)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p


# ===================================================================
# Master Config
# ===================================================================

@dataclass
class StatementEmailConfig:
    """Top-level configuration container."""
    statement_emails: StatementScheduleConfig = field(default_factory=StatementScheduleConfig)
    email: EmailSettings = field(default_factory=EmailSettings)
    backend_api: BackendApiConfig = field(default_factory=BackendApiConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ===================================================================
# YAML Loading
# ===================================================================

def _apply_yaml_to_config(cfg: StatementEmailConfig, data: dict) -> None:
    """Apply a parsed YAML dict onto a StatementEmailConfig instance."""

    _section_map = {
        "statement_emails": cfg.statement_emails,
        "email": cfg.email,
        "backend_api": cfg.backend_api,
        "storage": cfg.storage,
        "scheduler": cfg.scheduler,
        "logging": cfg.logging,
    }

    for section_key, section_obj in _section_map.items():
        if section_key in data and isinstance(data[section_key], dict):
            for attr, val in data[section_key].items():
                if hasattr(section_obj, attr):
                    setattr(section_obj, attr, val)

    cfg.statement_emails.normalize()
    cfg.email.normalize()
    cfg.scheduler.normalize()


def get_config(yaml_path: Optional[str | Path] = None) -> StatementEmailConfig:
    """Build a StatementEmailConfig, optionally overlaying values from a YAML file.

    Args:
        yaml_path: Path to a config.yaml file.  If None, looks for the
                   default config.yaml at the project root.  If that file
                   doesn't exist, returns pure defaults.

    Returns:
        Fully populated StatementEmailConfig instance.

    Raises:
        FileNotFoundError: If an explicit ``yaml_path`` does not exist.
        ConfigError: If a value cannot be coerced (e.g. unknown weekday).
    """
    cfg = StatementEmailConfig()

    if yaml_path is not None:
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
    else:
        path = DEFAULT_CONFIG_PATH

    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: top level must be a mapping")
        _apply_yaml_to_config(cfg, data)

    return cfg
