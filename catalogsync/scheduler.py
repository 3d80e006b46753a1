"""
Recurring refresh of the offline cache.

RefreshScheduler makes sure exactly one periodic job named
REFRESH_WORK_NAME exists and hands RefreshDataWork to the job runner.
RefreshDataWork maps the result of one refresh to a job outcome:

    completed normally      -> SUCCESS
    TransientNetworkError   -> RETRY   (runner backs off, same occurrence)
    anything else           -> FAILURE (next period still runs)
"""

import asyncio
from datetime import datetime, timedelta
from typing import Optional

from .errors import PermanentError, PersistenceError, TransientNetworkError
from .jobs import ConflictPolicy, JobInfo, JobRunner, JobState, Outcome
from .logger import get_logger
from .repository import ItemsRepository

logger = get_logger()

REFRESH_WORK_NAME = "RefreshDataWorker"
REFRESH_PERIOD = timedelta(days=1)


class RefreshDataWork:
    """One occurrence of the recurring refresh."""

    def __init__(self, repository: ItemsRepository):
        self._repository = repository

    async def do_work(self) -> Outcome:
        logger.record_refresh_attempt()
        try:
            await self._repository.refresh()
        except asyncio.CancelledError:
            raise
        except TransientNetworkError as e:
            logger.record_refresh_failure(type(e).__name__)
            logger.warning("Refresh hit a transient error, asking for retry", error=str(e))
            return Outcome.RETRY
        except (PermanentError, PersistenceError) as e:
            logger.record_refresh_failure(type(e).__name__)
            logger.error("Refresh failed", error=str(e), error_type=type(e).__name__)
            return Outcome.FAILURE
        except Exception as e:
            logger.record_refresh_failure(type(e).__name__)
            logger.error("Refresh failed unexpectedly", error=repr(e))
            return Outcome.FAILURE

        logger.record_refresh_success()
        return Outcome.SUCCESS


class RefreshScheduler:
    """Owns the single periodic refresh job."""

    def __init__(self, runner: JobRunner, repository: ItemsRepository):
        self._runner = runner
        self._work = RefreshDataWork(repository)
        runner.register_worker(REFRESH_WORK_NAME, self._work.do_work)

    def ensure_scheduled(
        self,
        policy: ConflictPolicy = ConflictPolicy.KEEP,
        now: Optional[datetime] = None,
    ) -> JobInfo:
        """
        Register the refresh job if it is not registered yet.

        Safe to call on every start: under KEEP an existing job keeps its
        schedule and state.
        """
        return self._runner.registry.enqueue_unique_periodic(
            REFRESH_WORK_NAME,
            REFRESH_PERIOD,
            policy,
            now=now,
        )

    @property
    def state(self) -> JobState:
        return self._runner.registry.state(REFRESH_WORK_NAME)

    def job(self) -> Optional[JobInfo]:
        return self._runner.registry.get(REFRESH_WORK_NAME)

    async def run_pending(self, now: Optional[datetime] = None) -> Optional[Outcome]:
        """Run the refresh job if it is due. Returns its outcome, or None."""
        return await self._runner.run_job(REFRESH_WORK_NAME, now)
