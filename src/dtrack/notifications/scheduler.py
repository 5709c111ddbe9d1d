"""Notification scheduler: reminder, overdue, daily summary and cleanup passes.

The scheduler is a plain service object. The clock, the email service and
the in-app notifier are injected, so every pass is deterministic under test.
Each pass opens its own sessions and never raises; failures are logged and
counted in the returned ``PassStats``.

Each deadline is processed in its own transaction. Its idempotency marker
(``notifications_sent[kind]``) is committed together with the in-app
notifications it produced. Emails go out before that commit, so a failed
commit can mean one repeated email on the next pass.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dtrack.config import Settings, get_settings
from dtrack.db.models import Deadline, DeadlineCollaborator, Notification, User
from dtrack.deadlines.collaboration import Recipient, get_notification_recipients
from dtrack.deadlines.service import accessible_to
from dtrack.email.service import EmailService
from dtrack.notifications.rules import (
    OVERDUE_KIND,
    REMINDER_LEADS,
    format_overdue_duration,
    format_time_remaining,
    has_marker,
    reminder_window,
    should_notify,
    with_marker,
)
from dtrack.notifications.service import InAppNotifier
from dtrack.time_utils import as_utc, day_boundaries, get_zone, utcnow
from dtrack.users.service import (
    has_daily_summary_enabled,
    has_in_app_daily_summary_enabled,
    has_in_app_overdue_notifications_enabled,
    has_overdue_notifications_enabled,
    is_in_app_reminder_enabled,
    is_reminder_enabled,
)

logger = structlog.get_logger()

_INACTIVE = ("completed", "overdue")


@dataclass
class PassStats:
    examined: int = 0
    notified: int = 0
    failed: int = 0
    updated: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class NotificationScheduler:
    """Computes and delivers scheduled notifications."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        email: EmailService,
        in_app: InAppNotifier,
        clock: Callable[[], datetime] = utcnow,
        settings: Settings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.email = email
        self.in_app = in_app
        self.clock = clock
        self.settings = settings or get_settings()

    def _url(self, path: str) -> str:
        return f"{self.settings.frontend_base_url}{path}"

    @staticmethod
    def _display_name(recipient: Recipient | User) -> str:
        return recipient.full_name or recipient.username

    @staticmethod
    def _format_due(deadline: Deadline) -> str:
        return as_utc(deadline.due_date).strftime("%Y-%m-%d %H:%M UTC")

    async def _deliver_in_app(
        self, db: AsyncSession, label: str, user_id: int, build: Callable[[], Awaitable[Notification]]
    ) -> bool:
        """Run an in-app builder inside a savepoint. Returns success."""
        try:
            async with db.begin_nested():
                await build()
        except (SQLAlchemyError, ValueError):
            logger.warning("in_app_delivery_failed", kind=label, user_id=user_id, exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def run_reminder_pass(self) -> PassStats:
        """Send 2-day, 1-day, 12-hour and 1-hour reminders for deadlines in their window."""
        now = self.clock()
        stats = PassStats()
        for kind, lead in REMINDER_LEADS:
            try:
                deadline_ids = await self._select_reminder_candidates(kind, lead, now)
            except SQLAlchemyError:
                logger.exception("reminder_selection_failed", kind=kind)
                continue
            for deadline_id in deadline_ids:
                stats.examined += 1
                await self._process_reminder(deadline_id, kind, lead, now, stats)
        logger.info("reminder_pass_complete", **stats.as_dict())
        return stats

    async def _select_reminder_candidates(self, kind: str, lead: timedelta, now: datetime) -> list[int]:
        start, end = reminder_window(now, lead, self.settings.reminder_window_minutes)
        async with self.session_factory() as db:
            result = await db.execute(
                select(Deadline.id, Deadline.notifications_sent)
                .where(
                    Deadline.due_date >= start,
                    Deadline.due_date <= end,
                    Deadline.status.not_in(_INACTIVE),
                )
                .order_by(Deadline.due_date, Deadline.id)
            )
            # JSON filtering stays in Python so SQLite and Postgres behave the same
            return [row.id for row in result.all() if not has_marker(row.notifications_sent, kind)]

    async def _process_reminder(
        self, deadline_id: int, kind: str, lead: timedelta, now: datetime, stats: PassStats
    ) -> None:
        lead_hours = int(lead.total_seconds() // 3600)
        async with self.session_factory() as db:
            try:
                deadline = await db.get(Deadline, deadline_id)
                if deadline is None:
                    return
                time_remaining = format_time_remaining(lead_hours)
                delivered: list[int] = []

                for recipient in await get_notification_recipients(db, deadline_id):
                    email_on = await is_reminder_enabled(db, recipient.user_id, kind)
                    in_app_on = await is_in_app_reminder_enabled(db, recipient.user_id, kind)
                    if not email_on and not in_app_on:
                        continue

                    ok = False
                    if email_on:
                        result = await self.email.send_template(
                            recipient.email,
                            "deadline_reminder",
                            {
                                "name": self._display_name(recipient),
                                "title": deadline.title,
                                "due_date": self._format_due(deadline),
                                "time_remaining": time_remaining,
                                "priority": deadline.priority,
                                "url": self._url(f"/deadlines/{deadline.id}"),
                                "subject_area": deadline.subject,
                                "description": deadline.description,
                            },
                        )
                        if result.success:
                            ok = True
                        else:
                            stats.failed += 1
                            logger.warning(
                                "reminder_email_failed", deadline_id=deadline_id, user_id=recipient.user_id, error=result.error
                            )
                    if in_app_on:
                        if await self._deliver_in_app(
                            db,
                            kind,
                            recipient.user_id,
                            lambda r=recipient: self.in_app.reminder(db, r.user_id, deadline, kind, lead_hours),
                        ):
                            ok = True
                        else:
                            stats.failed += 1
                    if ok:
                        delivered.append(recipient.user_id)

                if delivered:
                    deadline.notifications_sent = with_marker(deadline.notifications_sent, kind, now, delivered)
                    stats.notified += len(delivered)
                    stats.updated += 1
                await db.commit()
                logger.info("reminder_processed", deadline_id=deadline_id, kind=kind, delivered=len(delivered))
            except SQLAlchemyError:
                await db.rollback()
                stats.failed += 1
                logger.exception("reminder_processing_failed", deadline_id=deadline_id, kind=kind)

    # ------------------------------------------------------------------
    # Overdue
    # ------------------------------------------------------------------

    async def run_overdue_pass(self) -> PassStats:
        """Mark past-due deadlines overdue, then alert on recently overdue ones."""
        now = self.clock()
        stats = PassStats()

        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    update(Deadline)
                    .where(Deadline.due_date < now, Deadline.status.not_in(_INACTIVE))
                    .values(status="overdue", updated_at=now)
                )
                await db.commit()
                stats.updated += result.rowcount or 0
        except SQLAlchemyError:
            logger.exception("overdue_status_update_failed")

        try:
            candidates = await self._select_overdue_candidates(now)
        except SQLAlchemyError:
            logger.exception("overdue_selection_failed")
            candidates = []

        for deadline_id, notifications_sent, due_date in candidates:
            stats.examined += 1
            if not should_notify(
                notifications_sent,
                due_date,
                now,
                renotify_hours=self.settings.overdue_renotify_hours,
                cutoff_hours=self.settings.overdue_cutoff_hours,
            ):
                continue
            await self._process_overdue(deadline_id, now, stats)

        logger.info("overdue_pass_complete", **stats.as_dict())
        return stats

    async def _select_overdue_candidates(self, now: datetime) -> list[tuple[int, dict[str, Any], datetime]]:
        since = now - timedelta(hours=self.settings.overdue_lookback_hours)
        async with self.session_factory() as db:
            result = await db.execute(
                select(Deadline.id, Deadline.notifications_sent, Deadline.due_date)
                .where(Deadline.due_date >= since, Deadline.due_date < now, Deadline.status != "completed")
                .order_by(Deadline.due_date, Deadline.id)
            )
            return [(row.id, row.notifications_sent or {}, row.due_date) for row in result.all()]

    async def _process_overdue(self, deadline_id: int, now: datetime, stats: PassStats) -> None:
        async with self.session_factory() as db:
            try:
                deadline = await db.get(Deadline, deadline_id)
                if deadline is None:
                    return
                duration = format_overdue_duration(deadline.due_date, now)
                delivered: list[int] = []

                for recipient in await get_notification_recipients(db, deadline_id):
                    email_on = await has_overdue_notifications_enabled(db, recipient.user_id)
                    in_app_on = await has_in_app_overdue_notifications_enabled(db, recipient.user_id)
                    if not email_on and not in_app_on:
                        continue

                    ok = False
                    if email_on:
                        result = await self.email.send_template(
                            recipient.email,
                            "deadline_overdue",
                            {
                                "name": self._display_name(recipient),
                                "title": deadline.title,
                                "due_date": self._format_due(deadline),
                                "overdue_duration": duration,
                                "priority": deadline.priority,
                                "url": self._url(f"/deadlines/{deadline.id}"),
                                "subject_area": deadline.subject,
                            },
                        )
                        if result.success:
                            ok = True
                        else:
                            stats.failed += 1
                            logger.warning(
                                "overdue_email_failed", deadline_id=deadline_id, user_id=recipient.user_id, error=result.error
                            )
                    if in_app_on:
                        if await self._deliver_in_app(
                            db,
                            OVERDUE_KIND,
                            recipient.user_id,
                            lambda r=recipient: self.in_app.overdue(db, r.user_id, deadline, now),
                        ):
                            ok = True
                        else:
                            stats.failed += 1
                    if ok:
                        delivered.append(recipient.user_id)

                if delivered:
                    deadline.notifications_sent = with_marker(deadline.notifications_sent, OVERDUE_KIND, now, delivered)
                    stats.notified += len(delivered)
                await db.commit()
                logger.info("overdue_processed", deadline_id=deadline_id, delivered=len(delivered))
            except SQLAlchemyError:
                await db.rollback()
                stats.failed += 1
                logger.exception("overdue_processing_failed", deadline_id=deadline_id)

    # ------------------------------------------------------------------
    # Daily summary
    # ------------------------------------------------------------------

    async def run_daily_summary(self) -> PassStats:
        """Send each active user a digest of their deadlines. Not idempotent."""
        now = self.clock()
        stats = PassStats()
        tz = get_zone(self.settings.scheduler_timezone)

        try:
            user_ids = await self._select_summary_users()
        except SQLAlchemyError:
            logger.exception("daily_summary_selection_failed")
            return stats

        for user_id in user_ids:
            stats.examined += 1
            async with self.session_factory() as db:
                try:
                    await self._process_summary(db, user_id, now, tz, stats)
                    await db.commit()
                except SQLAlchemyError:
                    await db.rollback()
                    stats.failed += 1
                    logger.exception("daily_summary_failed", user_id=user_id)

        logger.info("daily_summary_complete", **stats.as_dict())
        return stats

    async def _select_summary_users(self) -> list[int]:
        async with self.session_factory() as db:
            owners = await db.execute(select(Deadline.owner_id).distinct())
            members = await db.execute(select(DeadlineCollaborator.user_id).distinct())
            return sorted({row[0] for row in owners.all()} | {row[0] for row in members.all()})

    async def build_summary(
        self, db: AsyncSession, user_id: int, now: datetime, tz: tzinfo | None = None
    ) -> dict[str, int]:
        """Counts for one user's accessible deadlines relative to ``now``."""
        day_start, day_end = day_boundaries(now, tz)
        week_end = now + timedelta(days=7)
        result = await db.execute(select(Deadline).where(accessible_to(user_id)))

        summary = {
            "total_deadlines": 0,
            "due_today": 0,
            "upcoming_deadlines": 0,
            "overdue_deadlines": 0,
            "completed_today": 0,
        }
        for deadline in result.scalars():
            due = as_utc(deadline.due_date)
            if deadline.status == "completed":
                if deadline.completed_at and day_start <= as_utc(deadline.completed_at) < day_end:
                    summary["completed_today"] += 1
                continue
            summary["total_deadlines"] += 1
            if day_start <= due < day_end:
                summary["due_today"] += 1
            if now <= due <= week_end:
                summary["upcoming_deadlines"] += 1
            if due < now:
                summary["overdue_deadlines"] += 1
        return summary

    async def _process_summary(
        self, db: AsyncSession, user_id: int, now: datetime, tz: tzinfo, stats: PassStats
    ) -> None:
        user = await db.get(User, user_id)
        if user is None:
            return
        email_on = await has_daily_summary_enabled(db, user_id)
        in_app_on = await has_in_app_daily_summary_enabled(db, user_id)
        if not email_on and not in_app_on:
            return

        summary = await self.build_summary(db, user_id, now, tz)
        ok = False
        if email_on:
            result = await self.email.send_template(
                user.email,
                "daily_summary",
                {
                    "name": self._display_name(user),
                    "summary": summary,
                    "date_label": now.astimezone(tz).strftime("%A, %B %d, %Y"),
                    "url": self._url("/deadlines"),
                },
            )
            if result.success:
                ok = True
            else:
                stats.failed += 1
                logger.warning("daily_summary_email_failed", user_id=user_id, error=result.error)
        if in_app_on:
            if await self._deliver_in_app(
                db, "daily_summary", user_id, lambda: self.in_app.daily_summary(db, user_id, summary, now)
            ):
                ok = True
            else:
                stats.failed += 1
        if ok:
            stats.notified += 1

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def run_cleanup_pass(self) -> PassStats:
        """Delete expired in-app notifications."""
        now = self.clock()
        stats = PassStats()
        try:
            async with self.session_factory() as db:
                stats.updated = await self.in_app.cleanup_expired(db, now)
                await db.commit()
        except SQLAlchemyError:
            stats.failed += 1
            logger.exception("notification_cleanup_failed")
        logger.info("cleanup_pass_complete", **stats.as_dict())
        return stats
