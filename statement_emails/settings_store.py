"""
Statement Email Scheduler -- Application Settings Store

Persistent key/value settings backed by SQLite.  The scheduler keeps its
last-sent markers here (``StatementEmailsLastWeeklySentUtc`` and
``StatementEmailsLastMonthlySentUtc``) so that a restart never re-sends a
period that already went out.

Usage:
    from statement_emails.settings_store import AppSettingsStore

    store = AppSettingsStore("data/statement_emails.db")
    store.initialize_default_settings()
    store.get_value("CompanyName")               # "Shop Inventory"
    store.save_setting("Theme", "dark", "alice")
    store.get_last_sent(Cadence.WEEKLY)          # datetime | None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from .database import connect, init_db, now_iso
from .models import Cadence, SettingsStore
from .schedule import format_utc, parse_marker

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Keys and categories
# ---------------------------------------------------------------------------

class SettingKeys:
    COMPANY_NAME = "CompanyName"
    DEFAULT_CURRENCY = "DefaultCurrency"
    DATE_FORMAT = "DateFormat"
    API_BASE_URL = "ApiBaseUrl"
    STATEMENT_EMAILS_LAST_WEEKLY_SENT_UTC = "StatementEmailsLastWeeklySentUtc"
    STATEMENT_EMAILS_LAST_MONTHLY_SENT_UTC = "StatementEmailsLastMonthlySentUtc"


class SettingCategories:
    GENERAL = "General"
    API = "API"
    NOTIFICATIONS = "Notifications"


MARKER_KEYS: dict[Cadence, str] = {
    Cadence.WEEKLY: SettingKeys.STATEMENT_EMAILS_LAST_WEEKLY_SENT_UTC,
    Cadence.MONTHLY: SettingKeys.STATEMENT_EMAILS_LAST_MONTHLY_SENT_UTC,
}

SYSTEM_USER = "System"


def read_last_sent(store: SettingsStore, cadence: Cadence) -> datetime | None:
    """The stored marker for ``cadence``; None if absent or unparseable."""
    return parse_marker(store.get_value(MARKER_KEYS[cadence]), cadence.label)


def write_last_sent(store: SettingsStore, cadence: Cadence, point: datetime) -> None:
    store.save_setting(MARKER_KEYS[cadence], format_utc(point), SYSTEM_USER)


@dataclass
class AppSetting:
    """One row of the app_settings table."""

    key: str
    value: str = ""
    category: str = SettingCategories.GENERAL
    data_type: str = "string"
    description: str = ""
    display_order: int = 0
    is_visible: bool = True
    is_editable: bool = True
    last_modified_at: datetime | None = None
    last_modified_by: str | None = None


DEFAULT_SETTINGS: list[AppSetting] = [
    AppSetting(
        key=SettingKeys.COMPANY_NAME,
        value="Shop Inventory",
        description="The name of your company",
        display_order=1,
    ),
    AppSetting(
        key=SettingKeys.DEFAULT_CURRENCY,
        value="USD",
        description="Default currency for transactions",
        display_order=2,
    ),
    AppSetting(
        key=SettingKeys.DATE_FORMAT,
        value="%b %d, %Y",
        description="Date format for display",
        display_order=3,
    ),
    AppSetting(
        key=SettingKeys.API_BASE_URL,
        value="http://localhost:5106",
        category=SettingCategories.API,
        description="Base URL of the backend API",
        display_order=1,
    ),
    # Statement email tracking (internal)
    AppSetting(
        key=SettingKeys.STATEMENT_EMAILS_LAST_WEEKLY_SENT_UTC,
        category=SettingCategories.NOTIFICATIONS,
        description="Last weekly statement sent timestamp (UTC)",
        display_order=1,
        is_visible=False,
        is_editable=False,
    ),
    AppSetting(
        key=SettingKeys.STATEMENT_EMAILS_LAST_MONTHLY_SENT_UTC,
        category=SettingCategories.NOTIFICATIONS,
        description="Last monthly statement sent timestamp (UTC)",
        display_order=2,
        is_visible=False,
        is_editable=False,
    ),
]


def _row_to_setting(row: Any) -> AppSetting:
    modified_at = None
    if row["last_modified_at"]:
        try:
            modified_at = datetime.fromisoformat(row["last_modified_at"])
        except (ValueError, TypeError):
            pass
    return AppSetting(
        key=row["key"],
        value=row["value"],
        category=row["category"],
        data_type=row["data_type"],
        description=row["description"],
        display_order=row["display_order"],
        is_visible=bool(row["is_visible"]),
        is_editable=bool(row["is_editable"]),
        last_modified_at=modified_at,
        last_modified_by=row["last_modified_by"],
    )


# ---------------------------------------------------------------------------
# AppSettingsStore
# ---------------------------------------------------------------------------

class AppSettingsStore:
    """Key/value settings persisted in the ``app_settings`` table.

    Each method opens and closes its own connection, so the store is safe
    to share between the scheduler thread and CLI commands.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        init_db(self.db_path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_setting(self, key: str) -> AppSetting | None:
        conn = connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT * FROM app_settings WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        return _row_to_setting(row) if row else None

    def get_value(self, key: str) -> str | None:
        setting = self.get_setting(key)
        return setting.value if setting else None

    def get_all_settings(self) -> list[AppSetting]:
        """Visible settings ordered by category, then display order."""
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM app_settings WHERE is_visible = 1 "
                "ORDER BY category, display_order"
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_setting(r) for r in rows]

    def get_settings_by_category(self, category: str) -> list[AppSetting]:
        conn = connect(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM app_settings WHERE category = ? AND is_visible = 1 "
                "ORDER BY display_order",
                (category,),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_setting(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save_setting(self, key: str, value: str, modified_by: str | None = None) -> None:
        """Insert or update a single setting."""
        conn = connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO app_settings (key, value, last_modified_at, last_modified_by)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    last_modified_at = excluded.last_modified_at,
                    last_modified_by = excluded.last_modified_by
                """,
                (key, value, now_iso(), modified_by),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Setting %s updated to %s by %s", key, value, modified_by)

    def save_settings(self, settings: dict[str, str], modified_by: str | None = None) -> int:
        """Bulk update existing, editable settings.

        Unknown or read-only keys are ignored.

        Returns:
            Number of settings actually updated.
        """
        updated = 0
        conn = connect(self.db_path)
        try:
            for key, value in settings.items():
                cur = conn.execute(
                    "UPDATE app_settings SET value = ?, last_modified_at = ?, "
                    "last_modified_by = ? WHERE key = ? AND is_editable = 1",
                    (value, now_iso(), modified_by, key),
                )
                updated += cur.rowcount
            conn.commit()
        finally:
            conn.close()
        logger.info("Saved %d settings by %s", updated, modified_by)
        return updated

    def initialize_default_settings(self) -> int:
        """Insert any default settings that are missing.  Existing values are kept.

        Returns:
            Number of settings inserted.
        """
        inserted = 0
        conn = connect(self.db_path)
        try:
            existing = {
                row["key"] for row in conn.execute("SELECT key FROM app_settings")
            }
            for setting in DEFAULT_SETTINGS:
                if setting.key in existing:
                    continue
                conn.execute(
                    "INSERT INTO app_settings (key, value, category, data_type, "
                    "description, display_order, is_visible, is_editable) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        setting.key,
                        setting.value,
                        setting.category,
                        setting.data_type,
                        setting.description,
                        setting.display_order,
                        int(setting.is_visible),
                        int(setting.is_editable),
                    ),
                )
                inserted += 1
            conn.commit()
        finally:
            conn.close()
        logger.info("Initialized default application settings (%d added)", inserted)
        return inserted

    # ------------------------------------------------------------------
    # Statement markers
    # ------------------------------------------------------------------

    def get_last_sent(self, cadence: Cadence) -> datetime | None:
        return read_last_sent(self, cadence)

    def set_last_sent(self, cadence: Cadence, point: datetime) -> None:
        write_last_sent(self, cadence, point)
