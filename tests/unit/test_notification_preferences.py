"""Unit tests for the notification preference bundle."""

from dtrack.users.service import (
    DEFAULT_PREFERENCES,
    REMINDER_KINDS,
    daily_summary_enabled,
    in_app_daily_summary_enabled,
    in_app_overdue_enabled,
    in_app_reminder_enabled,
    merge_preferences,
    overdue_enabled,
    reminder_enabled,
)


class TestMergePreferences:
    def test_none_gives_defaults(self):
        assert merge_preferences(None) == DEFAULT_PREFERENCES

    def test_defaults_not_shared(self):
        merged = merge_preferences(None)
        merged["reminders"]["1_day"] = False
        assert DEFAULT_PREFERENCES["reminders"]["1_day"] is True

    def test_nested_maps_merge_per_key(self):
        merged = merge_preferences({"reminders": {"1_hour": False}})
        assert merged["reminders"]["1_hour"] is False
        assert all(merged["reminders"][k] for k in REMINDER_KINDS if k != "1_hour")

    def test_updates_layer_over_stored(self):
        merged = merge_preferences({"daily_summary": True, "reminders": {"2_days": False}}, {"reminders": {"1_day": False}})
        assert merged["daily_summary"] is True
        assert merged["reminders"]["2_days"] is False
        assert merged["reminders"]["1_day"] is False

    def test_legacy_bundle_without_in_app_keys(self):
        merged = merge_preferences({"email_enabled": True, "reminders": {"1_day": True}})
        assert merged["in_app_daily_summary"] is True
        assert merged["in_app_reminders"] == {k: True for k in REMINDER_KINDS}


class TestPredicates:
    def test_defaults(self):
        prefs = merge_preferences(None)
        assert reminder_enabled(prefs, "1_day") is True
        assert in_app_reminder_enabled(prefs, "1_day") is True
        assert overdue_enabled(prefs) is True
        assert in_app_overdue_enabled(prefs) is True
        assert daily_summary_enabled(prefs) is False
        assert in_app_daily_summary_enabled(prefs) is True

    def test_email_master_switch(self):
        prefs = merge_preferences({"email_enabled": False, "daily_summary": True})
        assert reminder_enabled(prefs, "1_day") is False
        assert overdue_enabled(prefs) is False
        assert daily_summary_enabled(prefs) is False
        assert in_app_reminder_enabled(prefs, "1_day") is True

    def test_in_app_master_switch(self):
        prefs = merge_preferences({"in_app_enabled": False})
        assert in_app_reminder_enabled(prefs, "12_hours") is False
        assert in_app_overdue_enabled(prefs) is False
        assert in_app_daily_summary_enabled(prefs) is False
        assert reminder_enabled(prefs, "12_hours") is True

    def test_per_kind_toggle(self):
        prefs = merge_preferences({"in_app_reminders": {"2_days": False}})
        assert in_app_reminder_enabled(prefs, "2_days") is False
        assert in_app_reminder_enabled(prefs, "1_hour") is True

    def test_unknown_kind_defaults_on(self):
        assert reminder_enabled(merge_preferences(None), "3_weeks") is True
