"""Tests for the reminder, overdue, daily summary and cleanup passes."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from dtrack.db.models import Deadline, Notification
from dtrack.deadlines.collaboration import add_collaborators
from dtrack.email.service import DeliveryResult
from dtrack.notifications import scheduler as scheduler_module
from dtrack.notifications.scheduler import NotificationScheduler
from dtrack.notifications.service import InAppNotifier, create_notification


def _scheduler(session_factory, mock_email, clock) -> NotificationScheduler:
    return NotificationScheduler(session_factory, mock_email, InAppNotifier(), clock=clock)


async def _notifications(session_factory, **filters) -> list[Notification]:
    async with session_factory() as db:
        stmt = select(Notification).order_by(Notification.id)
        for key, value in filters.items():
            stmt = stmt.where(getattr(Notification, key) == value)
        return list((await db.execute(stmt)).scalars().all())


async def _reload(session_factory, deadline_id: int) -> Deadline:
    async with session_factory() as db:
        return await db.get(Deadline, deadline_id)


def _templates_sent(mock_email) -> list[tuple[str, str]]:
    return [(c.args[0], c.args[1]) for c in mock_email.send_template.await_args_list]


class TestReminderPass:
    @pytest.mark.asyncio
    async def test_owner_and_collaborators_reminded_once(
        self, session_factory, mock_email, clock, now, make_user, make_deadline, befriend
    ):
        async with session_factory() as db:
            alice = await make_user(db, "alice")
            bob = await make_user(db, "bob")
            carol = await make_user(db, "carol")
            await befriend(db, alice, bob)
            await befriend(db, alice, carol)
            deadline = await make_deadline(db, alice, due=now + timedelta(hours=24))
            await add_collaborators(db, deadline.id, alice.id, [bob.id], create_copies=False)
            shared = await add_collaborators(db, deadline.id, alice.id, [carol.id])
            await db.commit()
        copy_id = shared.added[0]["copy_deadline_id"]
        scheduler = _scheduler(session_factory, mock_email, clock)

        stats = await scheduler.run_reminder_pass()

        assert stats.as_dict() == {"examined": 2, "notified": 3, "failed": 0, "updated": 2}
        on_original = await _notifications(session_factory, deadline_id=deadline.id, type="reminder")
        assert sorted(n.user_id for n in on_original) == sorted([alice.id, bob.id])
        on_copy = await _notifications(session_factory, deadline_id=copy_id, type="reminder")
        assert [n.user_id for n in on_copy] == [carol.id]
        assert on_original[0].title == "Deadline Reminder: Essay"
        assert on_original[0].data["time_remaining"] == "1 day"

        reloaded = await _reload(session_factory, deadline.id)
        assert reloaded.notifications_sent["1_day"]["user_ids"] == sorted([alice.id, bob.id])
        assert {to for to, _ in _templates_sent(mock_email)} == {"alice@example.com", "bob@example.com", "carol@example.com"}
        assert {name for _, name in _templates_sent(mock_email)} == {"deadline_reminder"}

        again = await scheduler.run_reminder_pass()
        assert again.examined == 0
        assert mock_email.send_template.await_count == 3
        assert len(await _notifications(session_factory, type="reminder")) == 3

    @pytest.mark.asyncio
    async def test_each_lead_is_its_own_kind(self, session_factory, mock_email, clock, now, make_user, make_deadline):
        async with session_factory() as db:
            alice = await make_user(db, "alice")
            two_days = await make_deadline(db, alice, "Thesis", due=now + timedelta(hours=48, minutes=10))
            one_hour = await make_deadline(db, alice, "Quiz", due=now + timedelta(minutes=50))
            await make_deadline(db, alice, "Later", due=now + timedelta(hours=30))
            await db.commit()

        stats = await _scheduler(session_factory, mock_email, clock).run_reminder_pass()

        assert stats.examined == 2
        assert set((await _reload(session_factory, two_days.id)).notifications_sent) == {"2_days"}
        assert set((await _reload(session_factory, one_hour.id)).notifications_sent) == {"1_hour"}

    @pytest.mark.asyncio
    async def test_inactive_deadlines_skipped(self, session_factory, mock_email, clock, now, make_user, make_deadline):
        async with session_factory() as db:
            alice = await make_user(db, "alice")
            await make_deadline(db, alice, due=now + timedelta(hours=12), status="completed")
            await db.commit()

        stats = await _scheduler(session_factory, mock_email, clock).run_reminder_pass()

        assert stats.examined == 0
        mock_email.send_template.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preferences_respected(
        self, session_factory, mock_email, clock, now, make_user, make_deadline, befriend
    ):
        muted = {"reminders": {"1_day": False}, "in_app_reminders": {"1_day": False}}
        async with session_factory() as db:
            alice = await make_user(db, "alice")
            bob = await make_user(db, "bob", preferences=muted)
            await befriend(db, alice, bob)
            deadline = await make_deadline(db, alice, due=now + timedelta(hours=24))
            await add_collaborators(db, deadline.id, alice.id, [bob.id], create_copies=False)
            await db.commit()

        stats = await _scheduler(session_factory, mock_email, clock).run_reminder_pass()

        assert stats.notified == 1
        assert _templates_sent(mock_email) == [("alice@example.com", "deadline_reminder")]
        reloaded = await _reload(session_factory, deadline.id)
        assert reloaded.notifications_sent["1_day"]["user_ids"] == [alice.id]

    @pytest.mark.asyncio
    async def test_undelivered_reminder_is_retried(self, session_factory, mock_email, clock, now, make_user, make_deadline):
        mock_email.send_template.return_value = DeliveryResult(success=False, error="smtp down")
        async with session_factory() as db:
            alice = await make_user(db, "alice", preferences={"in_app_enabled": False})
            deadline = await make_deadline(db, alice, due=now + timedelta(hours=12))
            await db.commit()
        scheduler = _scheduler(session_factory, mock_email, clock)

        stats = await scheduler.run_reminder_pass()

        assert stats.as_dict() == {"examined": 1, "notified": 0, "failed": 1, "updated": 0}
        assert (await _reload(session_factory, deadline.id)).notifications_sent == {}

        mock_email.send_template.return_value = DeliveryResult(success=True)
        retry = await scheduler.run_reminder_pass()
        assert retry.notified == 1
        assert "12_hours" in (await _reload(session_factory, deadline.id)).notifications_sent

    @pytest.mark.asyncio
    async def test_one_failed_recipient_does_not_block_others(
        self, session_factory, mock_email, clock, now, make_user, make_deadline, befriend
    ):
        email_only = {"in_app_enabled": False}
        async with session_factory() as db:
            alice = await make_user(db, "alice", preferences=email_only)
            bob = await make_user(db, "bob", preferences=email_only)
            carol = await make_user(db, "carol", preferences=email_only)
            await befriend(db, alice, bob)
            shared = await make_deadline(db, alice, "Essay", due=now + timedelta(minutes=50))
            await add_collaborators(db, shared.id, alice.id, [bob.id], create_copies=False)
            other = await make_deadline(db, carol, "Lab", due=now + timedelta(minutes=70))
            await db.commit()

        async def _send(to, template_name, context):
            if to == "bob@example.com":
                return DeliveryResult(success=False, error="mailbox full")
            return DeliveryResult(success=True)

        mock_email.send_template.side_effect = _send
        scheduler = _scheduler(session_factory, mock_email, clock)

        stats = await scheduler.run_reminder_pass()

        assert stats.as_dict() == {"examined": 2, "notified": 2, "failed": 1, "updated": 2}
        assert sorted(to for to, _ in _templates_sent(mock_email)) == [
            "alice@example.com",
            "bob@example.com",
            "carol@example.com",
        ]
        assert (await _reload(session_factory, shared.id)).notifications_sent["1_hour"]["user_ids"] == [alice.id]
        assert (await _reload(session_factory, other.id)).notifications_sent["1_hour"]["user_ids"] == [carol.id]

    @pytest.mark.asyncio
    async def test_database_error_on_one_deadline_rolls_back_and_continues(
        self, monkeypatch, session_factory, mock_email, clock, now, make_user, make_deadline
    ):
        async with session_factory() as db:
            alice = await make_user(db, "alice")
            broken = await make_deadline(db, alice, "Broken", due=now + timedelta(minutes=40))
            healthy = await make_deadline(db, alice, "Healthy", due=now + timedelta(minutes=80))
            await db.commit()

        real_recipients = scheduler_module.get_notification_recipients

        async def _recipients(db, deadline_id):
            if deadline_id == broken.id:
                raise SQLAlchemyError("connection reset")
            return await real_recipients(db, deadline_id)

        monkeypatch.setattr(scheduler_module, "get_notification_recipients", _recipients)
        scheduler = _scheduler(session_factory, mock_email, clock)

        stats = await scheduler.run_reminder_pass()

        assert stats.as_dict() == {"examined": 2, "notified": 1, "failed": 1, "updated": 1}
        assert (await _reload(session_factory, broken.id)).notifications_sent == {}
        assert "1_hour" in (await _reload(session_factory, healthy.id)).notifications_sent
        reminders = await _notifications(session_factory, type="reminder")
        assert [n.deadline_id for n in reminders] == [healthy.id]


class TestOverduePass:
    @pytest.mark.asyncio
    async def test_marks_and_alerts_recently_overdue(self, session_factory, mock_email, clock, now, make_user, make_deadline):
        async with session_factory() as db:
            alice = await make_user(db, "alice")
            recent = await make_deadline(db, alice, "Lab report", due=now - timedelta(hours=2))
            stale = await make_deadline(db, alice, "Old essay", due=now - timedelta(hours=10))
            done = await make_deadline(db, alice, "Done", due=now - timedelta(hours=1), status="completed")
            await db.commit()
        scheduler = _scheduler(session_factory, mock_email, clock)

        stats = await scheduler.run_overdue_pass()

        assert stats.updated == 2
        assert stats.examined == 1
        assert stats.notified == 1
        assert (await _reload(session_factory, recent.id)).status == "overdue"
        assert (await _reload(session_factory, stale.id)).status == "overdue"
        assert (await _reload(session_factory, done.id)).status == "completed"

        alerts = await _notifications(session_factory, type="overdue")
        assert [(n.user_id, n.deadline_id, n.priority) for n in alerts] == [(alice.id, recent.id, "urgent")]
        assert alerts[0].data["overdue_duration"] == "2 hours"
        context = mock_email.send_template.await_args.args[2]
        assert context["overdue_duration"] == "2 hours"
        assert "overdue" in (await _reload(session_factory, recent.id)).notifications_sent

    @pytest.mark.asyncio
    async def test_not_repeated_within_a_day(self, session_factory, mock_email, clock, now, make_user, make_deadline):
        async with session_factory() as db:
            alice = await make_user(db, "alice")
            await make_deadline(db, alice, due=now - timedelta(hours=1))
            await db.commit()
        scheduler = _scheduler(session_factory, mock_email, clock)

        await scheduler.run_overdue_pass()
        second = await scheduler.run_overdue_pass()

        assert second.updated == 0
        assert second.examined == 1
        assert second.notified == 0
        assert len(await _notifications(session_factory, type="overdue")) == 1
        assert mock_email.send_template.await_count == 1


class TestDailySummary:
    async def _arrange(self, session_factory, make_user, make_deadline, befriend, now, alice_prefs=None):
        async with session_factory() as db:
            alice = await make_user(db, "alice", preferences=alice_prefs)
            bob = await make_user(db, "bob")
            await make_user(db, "idle")
            await befriend(db, alice, bob)
            today = await make_deadline(db, alice, "Quiz", due=now + timedelta(hours=3))
            await make_deadline(db, alice, "Essay", due=now - timedelta(hours=30))
            done = await make_deadline(db, alice, "Lab", due=now + timedelta(days=1), status="completed")
            done.completed_at = now - timedelta(hours=1)
            await add_collaborators(db, today.id, alice.id, [bob.id], create_copies=False)
            await db.commit()
        return alice, bob

    @pytest.mark.asyncio
    async def test_in_app_by_default(self, session_factory, mock_email, clock, now, make_user, make_deadline, befriend):
        alice, bob = await self._arrange(session_factory, make_user, make_deadline, befriend, now)

        stats = await _scheduler(session_factory, mock_email, clock).run_daily_summary()

        assert stats.examined == 2
        assert stats.notified == 2
        mock_email.send_template.assert_not_awaited()
        (alice_note,) = await _notifications(session_factory, user_id=alice.id, type="daily_summary")
        assert alice_note.data["summary"] == {
            "total_deadlines": 2,
            "due_today": 1,
            "upcoming_deadlines": 1,
            "overdue_deadlines": 1,
            "completed_today": 1,
        }
        assert alice_note.priority == "high"
        (bob_note,) = await _notifications(session_factory, user_id=bob.id, type="daily_summary")
        assert bob_note.data["summary"]["total_deadlines"] == 1
        assert bob_note.message == "Daily Summary: 1 active deadline, 1 due today, 1 due this week"

    @pytest.mark.asyncio
    async def test_email_when_opted_in(self, session_factory, mock_email, clock, now, make_user, make_deadline, befriend):
        await self._arrange(session_factory, make_user, make_deadline, befriend, now, {"daily_summary": True})

        await _scheduler(session_factory, mock_email, clock).run_daily_summary()

        assert _templates_sent(mock_email) == [("alice@example.com", "daily_summary")]
        context = mock_email.send_template.await_args.args[2]
        assert context["date_label"] == "Monday, March 02, 2026"
        assert context["summary"]["due_today"] == 1

    @pytest.mark.asyncio
    async def test_both_channels_off(self, session_factory, mock_email, clock, now, make_user, make_deadline, befriend):
        alice, _ = await self._arrange(
            session_factory, make_user, make_deadline, befriend, now, {"in_app_daily_summary": False}
        )

        stats = await _scheduler(session_factory, mock_email, clock).run_daily_summary()

        assert stats.notified == 1
        assert await _notifications(session_factory, user_id=alice.id, type="daily_summary") == []


class TestCleanupPass:
    @pytest.mark.asyncio
    async def test_expired_notifications_deleted(self, session_factory, mock_email, clock, now, make_user):
        async with session_factory() as db:
            alice = await make_user(db, "alice")
            await create_notification(db, alice.id, "system", "old", "m", expires_at=now - timedelta(hours=1))
            await create_notification(db, alice.id, "system", "fresh", "m", expires_at=now + timedelta(hours=1))
            await create_notification(db, alice.id, "system", "forever", "m")
            await db.commit()

        stats = await _scheduler(session_factory, mock_email, clock).run_cleanup_pass()

        assert stats.updated == 1
        assert [n.title for n in await _notifications(session_factory)] == ["fresh", "forever"]
