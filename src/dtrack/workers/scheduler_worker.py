"""arq worker driving the notification scheduler.

Runs as a separate process. Only one instance may run at a time; the
scheduler has no cross-process locking, so two workers double-send.
"""

from __future__ import annotations

import logging

from arq.connections import RedisSettings
from arq.cron import cron

from dtrack.config import get_settings
from dtrack.database import close_db, get_session_factory, init_db
from dtrack.email.service import EmailService
from dtrack.middleware.logging import setup_logging
from dtrack.notifications.scheduler import NotificationScheduler
from dtrack.notifications.service import InAppNotifier
from dtrack.redis_client import close_redis, get_redis, init_redis
from dtrack.time_utils import get_zone

logger = logging.getLogger(__name__)

_OVERDUE_MINUTES = set(range(0, 60, 4))


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB, Redis and the scheduler on worker startup."""
    settings = get_settings()
    setup_logging(settings, component="scheduler")
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    redis = get_redis()

    ctx["scheduler"] = NotificationScheduler(
        get_session_factory(),
        EmailService(redis=redis),
        InAppNotifier(redis=redis),
        settings=settings,
    )
    logger.info("Notification scheduler worker started (tz=%s)", settings.scheduler_timezone)


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_db()
    await close_redis()
    logger.info("Notification scheduler worker shut down")


async def send_reminders(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Hourly: 2-day, 1-day, 12-hour and 1-hour reminders."""
    stats = await ctx["scheduler"].run_reminder_pass()
    return stats.as_dict()


async def check_overdue(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Every 4 minutes: mark overdue deadlines and send overdue alerts."""
    stats = await ctx["scheduler"].run_overdue_pass()
    return stats.as_dict()


async def send_daily_summaries(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    stats = await ctx["scheduler"].run_daily_summary()
    return stats.as_dict()


async def cleanup_notifications(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    stats = await ctx["scheduler"].run_cleanup_pass()
    return stats.as_dict()


_settings = get_settings()


class WorkerSettings:
    """arq worker settings for the notification scheduler."""

    functions = [send_reminders, check_overdue, send_daily_summaries, cleanup_notifications]
    cron_jobs = [
        cron(send_reminders, minute=0, run_at_startup=False),
        cron(check_overdue, minute=_OVERDUE_MINUTES, run_at_startup=True),
        cron(send_daily_summaries, hour=_settings.daily_summary_hour, minute=0),
        cron(cleanup_notifications, minute=30),
    ]
    redis_settings = RedisSettings.from_dsn(_settings.redis_url)
    timezone = get_zone(_settings.scheduler_timezone)
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 1
    job_timeout = 600
