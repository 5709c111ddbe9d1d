"""arq worker settings module.

Import path for arq CLI: arq dtrack.workers.settings.WorkerSettings
"""

from __future__ import annotations

from dtrack.workers.scheduler_worker import WorkerSettings

__all__ = ["WorkerSettings"]
