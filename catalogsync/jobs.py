"""
Unique periodic jobs.

A small persistent job facility:
- JobRegistry persists named periodic jobs in SQLite, so a scheduled job
  survives process restarts.
- JobRunner polls the registry, runs due jobs one at a time and records
  each occurrence's outcome (success / retry / failure).

Retries are scheduled with exponential backoff and are bounded per
occurrence; success and failure both wait for the next period.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import ScheduledJob, utcnow
from .errors import PersistenceError
from .logger import get_logger
from .retry import BackoffPolicy

logger = get_logger()


class ConflictPolicy(str, Enum):
    """What to do when a job with the same name is already registered."""

    KEEP = "keep"
    REPLACE = "replace"


class JobState(str, Enum):
    ABSENT = "absent"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    RETRY_PENDING = "retry_pending"
    FAILED = "failed"


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRY = "retry"
    FAILURE = "failure"


# States that wait for next_run_at; RUNNING is excluded.
_WAITING_STATES = (
    JobState.SCHEDULED.value,
    JobState.SUCCEEDED.value,
    JobState.RETRY_PENDING.value,
    JobState.FAILED.value,
)


@dataclass(frozen=True)
class JobInfo:
    """Read-only view of a registered job."""

    name: str
    period: timedelta
    state: JobState
    next_run_at: datetime
    run_attempt: int
    last_outcome: Optional[Outcome]
    last_error: Optional[str]


def _to_info(job: ScheduledJob) -> JobInfo:
    return JobInfo(
        name=job.name,
        period=timedelta(seconds=job.period_seconds),
        state=JobState(job.state),
        next_run_at=job.next_run_at,
        run_attempt=job.run_attempt,
        last_outcome=Outcome(job.last_outcome) if job.last_outcome else None,
        last_error=job.last_error,
    )


class JobRegistry:
    """
    Persistent registrations of unique periodic jobs.

    Every method runs in its own session and commits before returning.
    Times are naive UTC.
    """

    def __init__(self, engine: Engine, backoff: Optional[BackoffPolicy] = None):
        self._Session = sessionmaker(bind=engine, expire_on_commit=False)
        self.backoff = backoff or BackoffPolicy()

    def _run(self, fn):
        session = self._Session()
        try:
            result = fn(session)
            session.commit()
            return result
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceError(f"Job registry unavailable: {e}") from e
        finally:
            session.close()

    def enqueue_unique_periodic(
        self,
        name: str,
        period: timedelta,
        policy: ConflictPolicy,
        initial_delay: timedelta = timedelta(0),
        now: Optional[datetime] = None,
    ) -> JobInfo:
        """
        Register `name` to run every `period`.

        A new job first runs after `initial_delay`, then once per period.
        Under KEEP an existing job is returned untouched. Under REPLACE it
        is reset as if new.
        """
        if not name or not name.strip():
            raise ValueError("name is required")
        if period <= timedelta(0):
            raise ValueError("period must be positive")
        now = now or utcnow()

        def op(session):
            job = session.get(ScheduledJob, name)
            if job is not None and policy == ConflictPolicy.KEEP:
                logger.debug("Periodic job already scheduled, keeping it", job=name, state=job.state)
                return _to_info(job)

            if job is None:
                job = ScheduledJob(name=name)
                session.add(job)
                logger.info("Periodic job scheduled", job=name, period_seconds=int(period.total_seconds()))
            else:
                logger.info("Periodic job replaced", job=name, period_seconds=int(period.total_seconds()))

            job.period_seconds = int(period.total_seconds())
            job.state = JobState.SCHEDULED.value
            job.next_run_at = now + initial_delay
            job.run_attempt = 0
            job.last_outcome = None
            job.last_error = None
            session.flush()
            return _to_info(job)

        return self._run(op)

    def get(self, name: str) -> Optional[JobInfo]:
        def op(session):
            job = session.get(ScheduledJob, name)
            return _to_info(job) if job is not None else None

        return self._run(op)

    def state(self, name: str) -> JobState:
        info = self.get(name)
        return info.state if info is not None else JobState.ABSENT

    def active_jobs(self) -> List[JobInfo]:
        return self._run(
            lambda session: [_to_info(j) for j in session.query(ScheduledJob).order_by(ScheduledJob.name).all()]
        )

    def cancel(self, name: str) -> bool:
        """Remove a job. Returns True if it existed."""
        def op(session):
            deleted = session.query(ScheduledJob).filter_by(name=name).delete()
            if deleted:
                logger.info("Periodic job cancelled", job=name)
            return bool(deleted)

        return self._run(op)

    def due_jobs(self, now: Optional[datetime] = None) -> List[JobInfo]:
        """Jobs waiting for a run whose time has come, oldest first."""
        now = now or utcnow()
        return self._run(
            lambda session: [
                _to_info(j)
                for j in session.query(ScheduledJob)
                .filter(ScheduledJob.state.in_(_WAITING_STATES), ScheduledJob.next_run_at <= now)
                .order_by(ScheduledJob.next_run_at, ScheduledJob.name)
                .all()
            ]
        )

    def try_claim(self, name: str, now: Optional[datetime] = None) -> bool:
        """
        Atomically move a due job to RUNNING.

        Returns True if this caller claimed it.
        """
        now = now or utcnow()

        def op(session):
            claimed = (
                session.query(ScheduledJob)
                .filter(
                    ScheduledJob.name == name,
                    ScheduledJob.state.in_(_WAITING_STATES),
                    ScheduledJob.next_run_at <= now,
                )
                .update({ScheduledJob.state: JobState.RUNNING.value}, synchronize_session=False)
            )
            return claimed == 1

        return self._run(op)

    def release(self, name: str) -> None:
        """Return a RUNNING job to SCHEDULED without recording an outcome."""
        self._run(
            lambda session: session.query(ScheduledJob)
            .filter_by(name=name, state=JobState.RUNNING.value)
            .update({ScheduledJob.state: JobState.SCHEDULED.value}, synchronize_session=False)
        )

    def record_outcome(
        self,
        name: str,
        outcome: Outcome,
        now: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> Optional[JobInfo]:
        """
        Store the outcome of one occurrence and schedule the next run.

        Returns None if the job was cancelled while it ran.
        """
        now = now or utcnow()

        def op(session):
            job = session.get(ScheduledJob, name)
            if job is None:
                logger.warning("Outcome for unknown job dropped", job=name, outcome=outcome.value)
                return None

            period = timedelta(seconds=job.period_seconds)
            result = outcome
            if outcome == Outcome.RETRY:
                attempt = job.run_attempt + 1
                if self.backoff.exhausted(attempt):
                    logger.error("Retries exhausted, failing occurrence", job=name, attempts=job.run_attempt)
                    result = Outcome.FAILURE
                else:
                    delay = self.backoff.delay_for(attempt)
                    job.state = JobState.RETRY_PENDING.value
                    job.run_attempt = attempt
                    job.next_run_at = now + delay
                    logger.warning(
                        "Occurrence will be retried",
                        job=name,
                        attempt=attempt,
                        delay_seconds=delay.total_seconds(),
                    )

            if result == Outcome.SUCCESS:
                job.state = JobState.SUCCEEDED.value
            elif result == Outcome.FAILURE:
                job.state = JobState.FAILED.value
            if result != Outcome.RETRY:
                job.run_attempt = 0
                job.next_run_at = now + period

            job.last_outcome = result.value
            job.last_error = error
            session.flush()
            return _to_info(job)

        return self._run(op)

    def recover_interrupted(self, now: Optional[datetime] = None) -> int:
        """
        Make occurrences left RUNNING by a dead process runnable again.

        Call once at startup, before any runner is active.
        """
        now = now or utcnow()

        def op(session):
            recovered = (
                session.query(ScheduledJob)
                .filter_by(state=JobState.RUNNING.value)
                .update(
                    {ScheduledJob.state: JobState.SCHEDULED.value, ScheduledJob.next_run_at: now},
                    synchronize_session=False,
                )
            )
            if recovered:
                logger.warning("Recovered interrupted jobs", count=recovered)
            return recovered

        return self._run(op)


Worker = Callable[[], Awaitable[Outcome]]


class JobRunner:
    """
    Runs due jobs from a JobRegistry.

    Jobs run sequentially inside one tick, so two occurrences of the same
    job never overlap. Jobs without a registered worker are left alone.
    """

    def __init__(self, registry: JobRegistry):
        self.registry = registry
        self._workers: Dict[str, Worker] = {}

    def register_worker(self, name: str, worker: Worker) -> None:
        self._workers[name] = worker

    def _release(self, name: str) -> None:
        try:
            self.registry.release(name)
        except PersistenceError as e:
            logger.error("Could not release job claim", job=name, error=str(e))

    async def run_job(self, name: str, now: Optional[datetime] = None) -> Optional[Outcome]:
        """
        Claim and run one occurrence of `name` if it is due.

        Returns the recorded outcome, or None if nothing ran.
        """
        worker = self._workers.get(name)
        if worker is None:
            return None
        if not self.registry.try_claim(name, now):
            return None

        logger.info("Running job", job=name)
        error = None
        try:
            outcome = await worker()
        except asyncio.CancelledError:
            self._release(name)
            logger.warning("Job cancelled, claim released", job=name)
            raise
        except Exception as e:
            logger.error("Job worker raised", job=name, error=repr(e))
            outcome, error = Outcome.FAILURE, repr(e)

        try:
            info = self.registry.record_outcome(name, outcome, now, error=error)
        except PersistenceError:
            # Leave the job due again rather than stuck in RUNNING
            self._release(name)
            raise

        return info.last_outcome if info is not None else None

    async def run_due(self, now: Optional[datetime] = None) -> Dict[str, Outcome]:
        """Run every due job with a registered worker once."""
        results: Dict[str, Outcome] = {}
        for job in self.registry.due_jobs(now):
            outcome = await self.run_job(job.name, now)
            if outcome is not None:
                results[job.name] = outcome
        return results

    async def run_forever(self, poll_interval: float = 60.0) -> None:
        """
        Poll and run due jobs until cancelled.

        Occurrences interrupted by a previous process are recovered first,
        and again after a tick that hit a registry error, since only this
        runner claims jobs.
        """
        sleep_s = max(0.01, float(poll_interval))
        needs_recovery = True

        while True:
            try:
                if needs_recovery:
                    self.registry.recover_interrupted()
                    needs_recovery = False
                await self.run_due()
            except PersistenceError as e:
                needs_recovery = True
                logger.error("Job registry unavailable, will poll again", error=str(e))
            await asyncio.sleep(sleep_s)
