"""Tests for deadline email templates and the email service."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from dtrack.email.service import (
    _TEMPLATE_REGISTRY,
    BaseEmailProvider,
    DeliveryResult,
    EmailService,
    LogProvider,
    _create_provider,
)
from dtrack.email.templates import daily_summary, deadline_overdue, deadline_reminder, deadline_shared


class _RecordingProvider(BaseEmailProvider):
    name = "recording"

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_with = fail_with

    async def send(self, to_email: str, subject: str, html_body: str, text_body: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((to_email, subject))


class TestEmailTemplates:
    def test_reminder(self):
        subject, html, text = deadline_reminder(
            "Alice", "Essay", "2026-03-03 09:00 UTC", "1 day", "high", "https://app/deadlines/1", "History"
        )
        assert subject == "Reminder: Essay - Due in 1 day"
        assert "Alice" in html
        assert "History" in text
        assert "https://app/deadlines/1" in text

    def test_overdue(self):
        subject, html, text = deadline_overdue("Alice", "Essay", "2026-03-01", "5 hours", "urgent", "https://app/d/1")
        assert subject == "OVERDUE: Essay"
        assert "5 hours" in html
        assert "5 hours ago" in text

    def test_daily_summary(self):
        summary = {"total_deadlines": 4, "due_today": 1, "upcoming_deadlines": 2, "overdue_deadlines": 0, "completed_today": 3}
        subject, html, text = daily_summary("Alice", summary, "Monday, March 02, 2026", "https://app/deadlines")
        assert subject == "Daily Deadline Summary - Monday, March 02, 2026"
        assert "Completed today: 3" in text
        assert "Active deadlines" in html

    def test_shared(self):
        subject, _, text = deadline_shared("Bob", "Essay (My Copy)", "Essay", "Alice", "https://app/deadlines/2")
        assert subject == "Alice shared a deadline with you: Essay"
        assert "Essay (My Copy)" in text

    def test_user_text_is_escaped(self):
        _, html, _ = deadline_reminder("<b>Eve</b>", "<script>x</script>", "today", "1 hour", "low", "https://app")
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "&lt;b&gt;Eve&lt;/b&gt;" in html


class TestEmailService:
    def test_registry(self):
        assert set(_TEMPLATE_REGISTRY) == {"deadline_reminder", "deadline_overdue", "daily_summary", "deadline_shared"}

    def test_log_provider_is_default(self):
        assert isinstance(_create_provider(), LogProvider)

    @pytest.mark.asyncio
    async def test_send_template_success(self):
        provider = _RecordingProvider()
        service = EmailService(provider=provider)
        result = await service.send_template(
            "bob@example.com",
            "deadline_shared",
            {"name": "Bob", "title": "Essay (My Copy)", "original_title": "Essay", "sharer": "Alice", "url": "u"},
        )
        assert result == DeliveryResult(success=True)
        assert provider.sent == [("bob@example.com", "Alice shared a deadline with you: Essay")]

    @pytest.mark.asyncio
    async def test_provider_failure_is_reported_not_raised(self):
        service = EmailService(provider=_RecordingProvider(fail_with=ConnectionError("smtp down")))
        result = await service.send_email("bob@example.com", "s", "<p>h</p>", "t")
        assert result.success is False
        assert result.error == "smtp down"

    @pytest.mark.asyncio
    async def test_unknown_template(self):
        service = EmailService(provider=_RecordingProvider())
        with pytest.raises(ValueError, match="Unknown template"):
            await service.send_template("bob@example.com", "welcome", {})

    @pytest.mark.asyncio
    async def test_bad_context(self):
        service = EmailService(provider=_RecordingProvider())
        with pytest.raises(ValueError, match="Invalid context"):
            await service.send_template("bob@example.com", "deadline_overdue", {"name": "Bob"})

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        redis = MagicMock()
        redis.incr = AsyncMock(return_value=3)
        redis.expire = AsyncMock()
        provider = _RecordingProvider()
        service = EmailService(provider=provider, redis=redis, rate_limit_per_hour=2)

        result = await service.send_email("bob@example.com", "s", "h", "t")
        assert result == DeliveryResult(success=False, error="rate_limited")
        assert provider.sent == []

    @pytest.mark.asyncio
    async def test_first_send_sets_window_expiry(self):
        redis = MagicMock()
        redis.incr = AsyncMock(return_value=1)
        redis.expire = AsyncMock()
        service = EmailService(provider=_RecordingProvider(), redis=redis, rate_limit_per_hour=2)

        result = await service.send_email("Bob@Example.com", "s", "h", "t")
        assert result.success is True
        redis.expire.assert_awaited_once()
        assert redis.expire.await_args.args[1] == EmailService.RATE_LIMIT_WINDOW
