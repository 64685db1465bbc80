"""Periodic stale stats sweep driven by APScheduler."""

import asyncio
import uuid
from datetime import timedelta
from typing import Optional

import structlog
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from structlog import contextvars as structlog_contextvars

from uc_helper.core.config import Settings, get_global_settings
from uc_helper.features.players.resolver import IdentityResolver
from uc_helper.features.players.schemas import RefreshReport

logger = structlog.get_logger(__name__)

SWEEP_JOB_ID = "refresh_stale_sweep"


class SweepScheduler:
    """Runs ``IdentityResolver.refresh_stale`` on a fixed interval.

    The resolver already refuses to run two sweeps at once; the job defaults
    also keep APScheduler from queueing overlapping or missed runs.
    """

    def __init__(
        self,
        resolver: IdentityResolver,
        settings: Optional[Settings] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        settings = settings or get_global_settings()
        self.resolver = resolver
        self.enabled = settings.refresh_sweep_enabled
        self.interval_minutes = settings.refresh_sweep_interval_minutes
        self.max_age = timedelta(minutes=settings.stale_after_minutes)
        self._scheduler = scheduler

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        return self._scheduler

    def _build_scheduler(self) -> AsyncIOScheduler:
        executors = {
            "default": AsyncIOExecutor(),
        }
        job_defaults = {
            "coalesce": True,  # Combine multiple missed runs into one
            "max_instances": 1,  # Only one sweep at a time
            "misfire_grace_time": 60,
        }
        return AsyncIOScheduler(
            executors=executors,
            job_defaults=job_defaults,
            timezone="UTC",
        )

    async def run_sweep(self) -> RefreshReport:
        """Run one sweep with a run id bound to every log line it produces."""
        run_id = uuid.uuid4().hex[:12]
        structlog_contextvars.bind_contextvars(sweep_run_id=run_id)
        try:
            report = await self.resolver.refresh_stale(self.max_age)
            if report.failed:
                logger.warning(
                    "Stale sweep completed with failures",
                    succeeded=len(report.succeeded),
                    failed=len(report.failed),
                    failed_identities=[f.chat_identity for f in report.failed],
                )
            return report
        except Exception as e:
            logger.error(
                "Stale sweep crashed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            raise
        finally:
            structlog_contextvars.unbind_contextvars("sweep_run_id")

    def start(self) -> Optional[AsyncIOScheduler]:
        """Start the scheduler and register the sweep job.

        Must be called from within a running event loop.

        :returns: The scheduler, or None if the sweep is disabled
        """
        if not self.enabled:
            logger.info("Stale sweep is disabled via configuration")
            return None

        if self._scheduler is None:
            self._scheduler = self._build_scheduler()

        self._scheduler.add_job(
            self.run_sweep,
            trigger="interval",
            minutes=self.interval_minutes,
            id=SWEEP_JOB_ID,
            name="Refresh stale TETR.IO stats",
            replace_existing=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()

        logger.info(
            "Stale sweep scheduled",
            interval_minutes=self.interval_minutes,
            max_age_minutes=self.max_age.total_seconds() / 60,
        )
        return self._scheduler

    async def shutdown(self) -> None:
        """Stop the scheduler, then wait for a running sweep to finish.

        Call this before closing the client or the database the sweep uses.
        """
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            # Newer APScheduler 3.x stops the asyncio scheduler on the next loop pass
            await asyncio.sleep(0)
            logger.info("Stale sweep scheduler shut down")

        await self.resolver.wait_for_refresh()
