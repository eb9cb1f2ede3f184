"""
Scheduled-job lifecycle engine.

One JobScheduler owns the in-memory job collection, a TimerQueue with at
most one armed timer per pending job, a background loop that wakes at the
earliest due time (and at least every sweep interval), and a worker pool
that performs the GitHub calls.

Every mutation happens under a single lock and is followed by a full-snapshot
save while the lock is still held, so the store always receives the latest
collection and two completions can never overwrite each other.

The pending -> creating transition is a check-and-set under that lock and is
persisted before the worker is submitted. Timer, sweep and trigger_now all go
through it, so a job executes at most once; losing the race is a silent no-op.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol

from .clock import SystemClock
from .errors import (
    ExecutionError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    SchedulerError,
    ValidationError,
)
from .github import ExecutionResult, RepositoryCreator
from .logger import get_logger
from .models import DEFAULT_CREDENTIAL_REF, Job, JobStatus, parse_timestamp
from .schema import normalize_fields, validate_job_spec, validate_job_update
from .stats import compute_stats
from .storage import JobStore
from .timers import TimerQueue

logger = get_logger()

DEFAULT_SWEEP_INTERVAL = 10.0
DEFAULT_MAX_WORKERS = 4
MISSING_TOKEN_MESSAGE = "No GitHub token configured"
INTERRUPTED_MESSAGE = (
    "Interrupted: the scheduler stopped while this repository was being created; "
    "check GitHub before scheduling it again"
)


class CredentialProvider(Protocol):
    def get_token(self, credential_ref: str) -> Optional[str]:
        ...


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class JobScheduler:
    def __init__(
        self,
        store: JobStore,
        creator: RepositoryCreator,
        credentials: CredentialProvider,
        clock: Optional[Clock] = None,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self._store = store
        self._creator = creator
        self._credentials = credentials
        self._clock = clock or SystemClock()
        self._sweep_interval = sweep_interval
        self._max_workers = max_workers

        self._lock = threading.RLock()
        self._wakeup = threading.Condition(self._lock)
        self._idle = threading.Condition(self._lock)

        self._jobs: Dict[str, Job] = {}
        self._timers = TimerQueue()
        self._inflight: Dict[str, Future] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._thread: Optional[threading.Thread] = None
        self._loaded = False
        self._running = False
        self._closed = False
        self._next_sweep: Optional[datetime] = None

    # Lifecycle -----------------------------------------------------------

    def load(self) -> None:
        """Read the snapshot and re-arm every pending job.

        Read-only with respect to the store: jobs a previous process left in
        ``creating`` are only resolved by ``start()``. Refuses to reload while
        the loop runs or an execution is in flight.
        """
        with self._lock:
            if self._running or self._inflight:
                raise SchedulerError("Cannot reload jobs while the scheduler is running")
            jobs = self._store.load()
            self._jobs = {job.id: job for job in jobs}
            self._timers.clear()
            for job in jobs:
                if job.status == JobStatus.PENDING:
                    self._timers.arm(job.id, job.scheduled_at)

            self._loaded = True
            logger.info("Loaded job snapshot", total=len(jobs), armed=len(self._timers))
            self._wakeup.notify_all()

    def _recover_interrupted(self) -> int:
        """Fail jobs a previous process left in ``creating``.

        They cannot be resumed safely (the repository may or may not exist).
        Must be called with the lock held.
        """
        now = self._clock.now()
        interrupted = 0
        for job in self._jobs.values():
            if job.status != JobStatus.CREATING or job.id in self._inflight:
                continue
            job.status = JobStatus.FAILED
            job.error_message = INTERRUPTED_MESSAGE
            job.completed_at = now
            interrupted += 1
            logger.warning("Marking interrupted job as failed", job_id=job.id, name=job.name)
        if interrupted:
            self._persist()
        return interrupted

    def start(self) -> None:
        """Load state (if not yet loaded) and start the background loop."""
        with self._lock:
            if self._running:
                return
            if self._closed:
                raise SchedulerError("Scheduler has been shut down")
            if not self._loaded:
                try:
                    self.load()
                except PersistenceError as e:
                    logger.error("Refusing to start: job store unreadable", error=str(e))
                    raise
            interrupted = self._recover_interrupted()
            self._running = True
            self._next_sweep = self._clock.now() + timedelta(seconds=self._sweep_interval)
            self._thread = threading.Thread(
                target=self._run_loop, name="reposcheduler-loop", daemon=True
            )
            self._thread.start()
            logger.info(
                "Scheduler started", sweep_interval=self._sweep_interval, interrupted=interrupted
            )

    def shutdown(self, wait: bool = True) -> None:
        """Disarm all timers and stop the loop.

        Executions already in flight are never cancelled; with ``wait`` the
        call blocks until they have been recorded.
        """
        with self._lock:
            self._running = False
            self._closed = True
            self._timers.clear()
            self._wakeup.notify_all()
            thread, self._thread = self._thread, None
            executor, self._executor = self._executor, None

        if thread is not None and thread is not threading.current_thread():
            thread.join()
        if executor is not None:
            executor.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self._running

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no execution is in flight. Returns False on timeout."""
        with self._lock:
            return self._idle.wait_for(lambda: not self._inflight, timeout)

    # Commands ------------------------------------------------------------

    def add_job(self, spec: Dict[str, Any]) -> Job:
        with self._lock:
            self._ensure_loaded()
            now = self._clock.now()
            errors = validate_job_spec(spec, now)
            fields: Dict[str, Any] = {}
            if not errors:
                fields = normalize_fields(spec)
                duplicate = self._find_duplicate(fields["name"], fields.get("owner_ref"))
                if duplicate is not None:
                    errors.append(
                        f"A job named '{fields['name']}' already exists (id {duplicate.id})"
                    )
            if errors:
                raise ValidationError(errors)

            if not fields.get("credential_ref"):
                fields["credential_ref"] = fields.get("owner_ref") or DEFAULT_CREDENTIAL_REF
            job = Job(created_at=now, **fields)
            self._jobs[job.id] = job
            self._persist()
            self._arm(job)
            logger.info(
                "Scheduled repository",
                job_id=job.id, name=job.name, scheduled_at=job.scheduled_at.isoformat(),
            )
            return job.copy()

    def update_job(self, job_id: str, changes: Dict[str, Any]) -> Job:
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.PENDING:
                raise InvalidStateError(job_id, job.status.value, "update")

            changes = dict(changes)
            if "scheduled_at" in changes and self._same_instant(changes["scheduled_at"], job.scheduled_at):
                del changes["scheduled_at"]

            errors = validate_job_update(changes, self._clock.now())
            fields: Dict[str, Any] = {}
            if not errors:
                fields = normalize_fields(changes)
                if "name" in fields:
                    duplicate = self._find_duplicate(fields["name"], job.owner_ref, exclude_id=job.id)
                    if duplicate is not None:
                        errors.append(
                            f"A job named '{fields['name']}' already exists (id {duplicate.id})"
                        )
            if errors:
                raise ValidationError(errors)

            for key, value in fields.items():
                setattr(job, key, value)
            self._persist()
            if "scheduled_at" in fields:
                self._timers.cancel(job.id)
                self._arm(job)
            logger.info("Updated job", job_id=job.id, fields=sorted(fields))
            return job.copy()

    def cancel_job(self, job_id: str) -> None:
        """Remove a pending or finished job. In-flight jobs cannot be cancelled."""
        with self._lock:
            job = self._require(job_id)
            if job.status == JobStatus.CREATING:
                raise InvalidStateError(job_id, job.status.value, "cancel")
            self._timers.cancel(job_id)
            del self._jobs[job_id]
            self._persist()
            self._wakeup.notify_all()
            logger.info("Cancelled job", job_id=job_id, name=job.name, status=job.status.value)

    def trigger_now(self, job_id: str) -> None:
        """Start creating a pending job immediately, bypassing its timer."""
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.PENDING:
                raise InvalidStateError(job_id, job.status.value, "trigger")
            self._begin(job_id, trigger="manual")

    def sweep(self) -> List[str]:
        """Start every pending job that is due. Safe to call repeatedly."""
        with self._lock:
            self._ensure_loaded()
            now = self._clock.now()
            due = sorted(
                (job for job in self._jobs.values() if job.is_due(now)),
                key=lambda job: job.scheduled_at,
            )
            started = [job.id for job in due if self._begin(job.id, trigger="sweep")]
            if started:
                logger.info("Sweep started overdue jobs", count=len(started))
            return started

    def tick(self) -> List[str]:
        """Fire every armed timer whose due time has passed."""
        with self._lock:
            self._ensure_loaded()
            fired = self._timers.pop_due(self._clock.now())
            return [job_id for job_id in fired if self._begin(job_id, trigger="timer")]

    # Queries -------------------------------------------------------------

    def list_jobs(self, owner_ref: Optional[str] = None) -> List[Job]:
        with self._lock:
            self._ensure_loaded()
            jobs = [job.copy() for job in self._owned(owner_ref)]
        return sorted(jobs, key=lambda job: job.scheduled_at)

    def get_job(self, job_id: str) -> Job:
        with self._lock:
            return self._require(job_id).copy()

    def stats(self, owner_ref: Optional[str] = None) -> Dict[str, int]:
        with self._lock:
            self._ensure_loaded()
            jobs = list(self._owned(owner_ref))
            if owner_ref is None:
                armed = len(self._timers)
            else:
                armed = sum(1 for job in jobs if self._timers.is_armed(job.id))
            return compute_stats(jobs, active_timers=armed)

    # Internals -----------------------------------------------------------

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def _require(self, job_id: str) -> Job:
        self._ensure_loaded()
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    def _owned(self, owner_ref: Optional[str]):
        if owner_ref is None:
            return self._jobs.values()
        return (job for job in self._jobs.values() if job.owner_ref == owner_ref)

    def _find_duplicate(
        self, name: str, owner_ref: Optional[str], exclude_id: Optional[str] = None
    ) -> Optional[Job]:
        # GitHub repository names are case-insensitive per account.
        wanted = name.lower()
        for job in self._jobs.values():
            if job.id == exclude_id or job.owner_ref != owner_ref:
                continue
            if job.status != JobStatus.FAILED and job.name.lower() == wanted:
                return job
        return None

    @staticmethod
    def _same_instant(value: Any, current: datetime) -> bool:
        try:
            return parse_timestamp(value) == current
        except (TypeError, ValueError):
            return False

    def _arm(self, job: Job) -> None:
        self._timers.arm(job.id, job.scheduled_at)
        self._wakeup.notify_all()

    def _persist(self) -> None:
        try:
            self._store.save_all(self._jobs.values())
        except PersistenceError as e:
            # In-memory state stays authoritative; the next save carries it.
            logger.record_persistence_error()
            logger.error("Failed to persist job snapshot", error=str(e))

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._closed:
            raise SchedulerError("Scheduler has been shut down")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="reposcheduler-worker"
            )
        return self._executor

    def _begin(self, job_id: str, trigger: str) -> bool:
        """pending -> creating, persisted, then hand off to a worker.

        Must be called with the lock held.
        """
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return False
        executor = self._get_executor()

        self._timers.cancel(job_id)
        job.status = JobStatus.CREATING
        job.started_at = self._clock.now()
        self._persist()

        logger.record_execution_attempt()
        logger.info("Creating repository", job_id=job.id, name=job.name, trigger=trigger)
        self._inflight[job_id] = executor.submit(self._execute, job.copy())
        return True

    def _execute(self, job: Job) -> None:
        try:
            token = self._credentials.get_token(job.credential_ref)
            if not token:
                result = ExecutionResult.failure(ExecutionError(MISSING_TOKEN_MESSAGE))
            else:
                result = self._creator.execute(job, token)
        except Exception as e:
            # The job must still leave `creating`; record the failure on it.
            logger.error("Unexpected error while creating repository", job_id=job.id, error=repr(e))
            result = ExecutionResult.failure(ExecutionError(f"Unexpected error: {e}"))
        self._complete(job.id, result)

    def _complete(self, job_id: str, result: ExecutionResult) -> None:
        with self._lock:
            try:
                job = self._jobs.get(job_id)
                if job is None or job.status != JobStatus.CREATING:
                    logger.warning("Discarding result for job no longer in flight", job_id=job_id)
                    return
                job.completed_at = self._clock.now()
                if result.ok:
                    job.status = JobStatus.CREATED
                    job.result_url = result.result_url
                    job.github_id = result.github_id
                    logger.record_execution_success()
                    logger.info("Repository created", job_id=job_id, name=job.name, url=job.result_url)
                else:
                    job.status = JobStatus.FAILED
                    job.error_message = result.error.message
                    code = result.error.status_code
                    logger.record_execution_failure(f"HTTP_{code}" if code else "ExecutionError")
                    logger.warning(
                        "Repository creation failed",
                        job_id=job_id, name=job.name, error=job.error_message,
                    )
                self._persist()
            finally:
                self._inflight.pop(job_id, None)
                self._idle.notify_all()

    def _run_loop(self) -> None:
        with self._lock:
            while self._running:
                try:
                    self.tick()
                    now = self._clock.now()
                    if now >= self._next_sweep:
                        self.sweep()
                        self._next_sweep = now + timedelta(seconds=self._sweep_interval)
                except Exception as e:
                    logger.error("Scheduler loop iteration failed", error=repr(e))
                if self._running:
                    self._wakeup.wait(self._seconds_until_wake())

    def _seconds_until_wake(self) -> float:
        now = self._clock.now()
        wake = self._next_sweep
        next_due = self._timers.next_due()
        if next_due is not None and next_due < wake:
            wake = next_due
        return min(max((wake - now).total_seconds(), 0.0), self._sweep_interval)
