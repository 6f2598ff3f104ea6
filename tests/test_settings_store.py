"""Tests for statement_emails.settings_store -- SQLite app settings and markers."""

from datetime import datetime, timezone

import pytest

from statement_emails.models import Cadence
from statement_emails.settings_store import (
    DEFAULT_SETTINGS,
    MARKER_KEYS,
    AppSettingsStore,
    SettingCategories,
    SettingKeys,
)


@pytest.fixture
def store(tmp_path):
    s = AppSettingsStore(tmp_path / "settings.db")
    s.initialize_default_settings()
    return s


class TestDefaults:

    def test_initialize_inserts_all_defaults(self, tmp_path):
        s = AppSettingsStore(tmp_path / "settings.db")
        assert s.initialize_default_settings() == len(DEFAULT_SETTINGS)

    def test_initialize_is_idempotent(self, store):
        store.save_setting(SettingKeys.COMPANY_NAME, "Acme", "alice")
        assert store.initialize_default_settings() == 0
        assert store.get_value(SettingKeys.COMPANY_NAME) == "Acme"

    def test_marker_settings_hidden_and_read_only(self, store):
        for key in MARKER_KEYS.values():
            setting = store.get_setting(key)
            assert setting is not None
            assert setting.value == ""
            assert setting.category == SettingCategories.NOTIFICATIONS
            assert setting.is_visible is False
            assert setting.is_editable is False

    def test_get_all_settings_excludes_hidden(self, store):
        keys = {s.key for s in store.get_all_settings()}
        assert SettingKeys.COMPANY_NAME in keys
        assert not keys & set(MARKER_KEYS.values())

    def test_get_settings_by_category_ordered(self, store):
        general = store.get_settings_by_category(SettingCategories.GENERAL)
        assert [s.key for s in general] == [
            SettingKeys.COMPANY_NAME,
            SettingKeys.DEFAULT_CURRENCY,
            SettingKeys.DATE_FORMAT,
        ]


class TestReadsAndWrites:

    def test_missing_key_is_none(self, store):
        assert store.get_setting("Nope") is None
        assert store.get_value("Nope") is None

    def test_save_setting_records_modifier(self, store):
        store.save_setting(SettingKeys.DEFAULT_CURRENCY, "EUR", "bob")
        setting = store.get_setting(SettingKeys.DEFAULT_CURRENCY)
        assert setting.value == "EUR"
        assert setting.last_modified_by == "bob"
        assert setting.last_modified_at is not None

    def test_save_setting_inserts_unknown_key(self, store):
        store.save_setting("Theme", "dark")
        assert store.get_value("Theme") == "dark"

    def test_save_settings_skips_read_only_and_unknown(self, store):
        updated = store.save_settings({
            SettingKeys.COMPANY_NAME: "Acme",
            SettingKeys.STATEMENT_EMAILS_LAST_WEEKLY_SENT_UTC: "2024-01-01T00:00:00Z",
            "Unknown": "x",
        }, modified_by="carol")
        assert updated == 1
        assert store.get_value(SettingKeys.COMPANY_NAME) == "Acme"
        assert store.get_value(SettingKeys.STATEMENT_EMAILS_LAST_WEEKLY_SENT_UTC) == ""

    def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "settings.db"
        AppSettingsStore(path).save_setting("Key", "value")
        assert AppSettingsStore(path).get_value("Key") == "value"


class TestMarkers:

    def test_unset_marker_is_none(self, store):
        assert store.get_last_sent(Cadence.WEEKLY) is None

    def test_marker_round_trip(self, store):
        point = datetime(2024, 3, 11, 6, tzinfo=timezone.utc)
        store.set_last_sent(Cadence.WEEKLY, point)
        assert store.get_last_sent(Cadence.WEEKLY) == point
        assert store.get_last_sent(Cadence.MONTHLY) is None

        setting = store.get_setting(SettingKeys.STATEMENT_EMAILS_LAST_WEEKLY_SENT_UTC)
        assert setting.value == "2024-03-11T06:00:00Z"
        assert setting.last_modified_by == "System"

    def test_unparseable_marker_treated_as_absent(self, store, caplog):
        store.save_setting(SettingKeys.STATEMENT_EMAILS_LAST_MONTHLY_SENT_UTC, "yesterday-ish")
        assert store.get_last_sent(Cadence.MONTHLY) is None
        assert "unparseable" in caplog.text
