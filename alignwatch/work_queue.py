"""
ALIGNWATCH Work Queue

Asynchronous job queue that runs regeneration work in the background.

Key Features:
- Priority ordering (high, normal, low), FIFO within a priority
- Dedupe: a job with the same key that is still waiting or active is
  returned instead of queuing a duplicate
- Bounded worker pool, resizable at runtime (1-10 workers)
- Retry with capped exponential backoff, then a terminal FAILED state kept
  for inspection and manual retry
- Stall detection: active jobs without a heartbeat are reclaimed a bounded
  number of times, then failed
- Throttling: per-priority start delay and pauses between processing steps
- Optional JSON journal so waiting jobs survive a restart
"""

import asyncio
import json
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, Tuple, Type

from alignwatch import constants as C
from alignwatch.exceptions import JobCancelledError, JobError, LandmarkNotFoundError, ScopeError
from alignwatch.jobs import Job, JobPayload, JobRequest, JobState, Priority
from alignwatch.logging_config import correlation_context, log_exception

logger = logging.getLogger("alignwatch.WorkQueue")

__all__ = [
    "JobContext",
    "JobExecutor",
    "RetryPolicy",
    "Throttle",
    "WorkQueue",
]


# =============================================================================
# Policies
# =============================================================================


@dataclass
class RetryPolicy:
    """Retry budget, backoff shape and stall handling."""
    max_attempts: int = C.QUEUE_MAX_ATTEMPTS
    backoff_base_sec: float = C.QUEUE_BACKOFF_BASE_SEC
    backoff_multiplier: float = C.QUEUE_BACKOFF_MULTIPLIER
    backoff_max_sec: float = C.QUEUE_BACKOFF_MAX_SEC
    stall_timeout_sec: float = C.QUEUE_STALL_TIMEOUT_SEC
    stall_check_interval_sec: float = 30.0
    max_stall_reclaims: int = C.QUEUE_MAX_STALL_RECLAIMS
    # Errors that cannot succeed on a later attempt
    non_retryable: Tuple[Type[BaseException], ...] = (JobError, LandmarkNotFoundError, ScopeError)

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        delay = self.backoff_base_sec * (self.backoff_multiplier ** max(0, attempt - 1))
        return min(delay, self.backoff_max_sec)

    def should_retry(self, job: Job, exc: BaseException) -> bool:
        if isinstance(exc, self.non_retryable):
            return False
        return job.attempts < job.max_attempts

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        """Build from a QueueConfig section."""
        return cls(
            max_attempts=config.max_attempts,
            backoff_base_sec=config.backoff_base_seconds,
            backoff_multiplier=config.backoff_multiplier,
            backoff_max_sec=config.backoff_max_seconds,
            stall_timeout_sec=config.stall_timeout_seconds,
            stall_check_interval_sec=config.stall_check_interval_seconds,
            max_stall_reclaims=config.max_stall_reclaims,
        )


@dataclass
class Throttle:
    """Keeps background work from saturating the host."""
    low_priority_mode: bool = True
    job_delay_sec: float = C.QUEUE_JOB_DELAY_SEC
    processing_delay_sec: float = C.QUEUE_PROCESSING_DELAY_SEC

    def start_delay(self, priority: Priority) -> float:
        """Delay before a newly queued job may start."""
        if not self.low_priority_mode or priority is Priority.HIGH:
            return 0.0
        if priority is Priority.NORMAL:
            return self.job_delay_sec / 2
        return self.job_delay_sec

    def step_pause(self, priority: Priority) -> float:
        """Pause between processing steps of a running job."""
        if not self.low_priority_mode or priority is Priority.HIGH:
            return 0.0
        return self.processing_delay_sec

    @classmethod
    def from_config(cls, config) -> "Throttle":
        """Build from a QueueConfig section."""
        return cls(
            low_priority_mode=config.low_priority_mode,
            job_delay_sec=config.job_delay_seconds,
            processing_delay_sec=config.processing_delay_seconds,
        )


# =============================================================================
# Executor Interface
# =============================================================================


class JobContext:
    """Handle given to an executor while its job runs."""

    def __init__(self, queue: "WorkQueue", job: Job):
        self._queue = queue
        self.job = job
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Detach this run from the job; later heartbeats raise."""
        self._cancelled.set()

    def heartbeat(self) -> None:
        """
        Report progress; safe to call from worker threads.

        Raises:
            JobCancelledError: The run was reclaimed or stopped. Work still
                running in a thread stops here instead of writing results
                or refreshing the heartbeat of a later attempt.
        """
        if self._cancelled.is_set():
            raise JobCancelledError(f"Job {self.job.job_id} run was cancelled")
        self.job.heartbeat_at = self._queue.clock()

    async def pause(self, fraction: float = 1.0) -> None:
        """Throttle pause between processing steps."""
        delay = self._queue.throttle.step_pause(self.job.priority) * fraction
        if delay > 0:
            await asyncio.sleep(delay)
        self.heartbeat()


class JobExecutor(Protocol):
    """What the queue needs to run a job. Nothing more."""

    async def execute(self, job: Job, context: JobContext) -> Any:
        """Run the job; raise to signal failure. The return value is kept."""
        ...


# =============================================================================
# Work Queue
# =============================================================================


class WorkQueue:
    """
    Priority work queue with retries, stall reclaim and throttling.

    ``enqueue`` may be called before ``start``; jobs wait until workers run.
    """

    def __init__(
        self,
        executor: JobExecutor,
        policy: Optional[RetryPolicy] = None,
        throttle: Optional[Throttle] = None,
        concurrency: int = C.QUEUE_CONCURRENCY,
        journal_path: Optional[str | Path] = None,
        keep_completed: int = C.QUEUE_KEEP_COMPLETED,
        keep_failed: int = C.QUEUE_KEEP_FAILED,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the queue.

        Args:
            executor: Runs job payloads
            policy: Retry and stall policy
            throttle: Start delays and step pauses
            concurrency: Initial number of workers
            journal_path: JSON file persisting queue state (None disables)
            keep_completed: Completed jobs retained for inspection
            keep_failed: Failed jobs retained for inspection
            clock: Wall-clock source (seconds since epoch)
        """
        self._validate_concurrency(concurrency)
        self.executor = executor
        self.policy = policy or RetryPolicy()
        self.throttle = throttle or Throttle()
        self.clock = clock
        self.journal_path = Path(journal_path) if journal_path else None
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed

        self._concurrency = concurrency
        self._jobs: Dict[str, Job] = {}
        self._dedupe: Dict[str, str] = {}
        self._completed: Deque[str] = deque()
        self._failed: Deque[str] = deque()
        self._sequence = 0

        self._workers: Dict[int, asyncio.Task] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._contexts: Dict[str, JobContext] = {}
        self._reclaimed: set = set()
        self._monitor_task: Optional[asyncio.Task] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._running = False

        if self.journal_path is not None:
            self._load()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def concurrency(self) -> int:
        return self._concurrency

    async def start(self):
        """Start workers and the stall monitor."""
        if self._running:
            return
        self._running = True
        self._wakeup = asyncio.Event()
        for worker_id in range(self._concurrency):
            self._spawn_worker(worker_id)
        self._monitor_task = asyncio.create_task(self._monitor_loop())
        logger.info(f"Work queue started with {self._concurrency} worker(s)")

    async def stop(self):
        """Stop workers; interrupted jobs go back to waiting."""
        if not self._running:
            return
        self._running = False

        tasks = list(self._workers.values())
        if self._monitor_task:
            tasks.append(self._monitor_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._workers.clear()
        self._monitor_task = None
        self._save()
        logger.info("Work queue stopped")

    def _spawn_worker(self, worker_id: int):
        self._workers[worker_id] = asyncio.create_task(self._worker(worker_id))

    @staticmethod
    def _validate_concurrency(value: int):
        if not 1 <= value <= C.QUEUE_MAX_CONCURRENCY:
            raise ValueError(f"Concurrency must be between 1 and {C.QUEUE_MAX_CONCURRENCY}")

    async def update_concurrency(self, value: int):
        """
        Resize the worker pool.

        Surplus workers finish their current job before exiting.
        """
        self._validate_concurrency(value)
        old = self._concurrency
        self._concurrency = value
        if self._running:
            for worker_id in range(old, value):
                if worker_id not in self._workers:
                    self._spawn_worker(worker_id)
            self._wake()
        logger.info(f"Concurrency changed {old} -> {value}")

    # =========================================================================
    # Enqueue and inspection
    # =========================================================================

    def enqueue(
        self,
        payload: JobPayload,
        priority: Priority = Priority.NORMAL,
        dedupe_key: Optional[str] = None,
        dedupe_active: bool = True,
    ) -> str:
        """
        Queue a job, or return the id of a pending job with the same key.

        A duplicate submitted at a higher priority upgrades the waiting job.
        With ``dedupe_active=False`` only a waiting job absorbs the request;
        a running one gets a successor.

        Returns:
            Job id
        """
        key = dedupe_key or payload.dedupe_key
        now = self.clock()

        existing_id = self._dedupe.get(key)
        if existing_id is not None:
            existing = self._jobs.get(existing_id)
            if existing is not None and existing.is_pending and (
                dedupe_active or existing.state is JobState.WAITING
            ):
                if existing.state is JobState.WAITING and priority.rank < existing.priority.rank:
                    existing.priority = priority
                    existing.ready_at = min(existing.ready_at, now + self.throttle.start_delay(priority))
                    self._save()
                    self._wake()
                logger.debug(f"Dedupe hit for {key}: job {existing_id}")
                return existing_id

        self._sequence += 1
        job = Job(
            job_id=uuid.uuid4().hex[:12],
            payload=payload,
            priority=priority,
            dedupe_key=key,
            sequence=self._sequence,
            created_at=now,
            ready_at=now + self.throttle.start_delay(priority),
            max_attempts=self.policy.max_attempts,
        )
        self._jobs[job.job_id] = job
        self._dedupe[key] = job.job_id
        self._save()
        self._wake()
        logger.info(f"Queued job {job.job_id} {payload.TYPE} ({priority.value}) key={key}")
        return job.job_id

    def submit(self, request: JobRequest) -> str:
        """Queue a JobRequest produced by a scheduler rule or trigger."""
        return self.enqueue(request.payload, request.priority, request.dedupe_key)

    def get(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobError(f"Unknown job {job_id}")
        return job

    def jobs(self, state: Optional[JobState] = None) -> List[Job]:
        """Jobs in queue order, optionally filtered by state."""
        selected = [j for j in self._jobs.values() if state is None or j.state is state]
        return sorted(selected, key=lambda j: (j.priority.rank, j.sequence))

    def failed_jobs(self) -> List[Job]:
        """Failed jobs, most recent first."""
        return [self._jobs[i] for i in reversed(self._failed) if i in self._jobs]

    def retry_failed(self, job_id: str) -> bool:
        """Move a failed job back to waiting with a fresh retry budget."""
        job = self.get(job_id)
        if job.state is not JobState.FAILED:
            return False
        pending = self._dedupe.get(job.dedupe_key)
        if pending is not None and pending != job_id and self._jobs[pending].is_pending:
            return False

        job.state = JobState.WAITING
        job.attempts = 0
        job.stall_reclaims = 0
        job.ready_at = self.clock()
        job.finished_at = None
        self._failed.remove(job_id)
        self._dedupe[job.dedupe_key] = job_id
        self._save()
        self._wake()
        logger.info(f"Retrying failed job {job_id}")
        return True

    def clean_failed(self, older_than_sec: float = 7 * 86400) -> int:
        """Drop failed jobs that finished more than ``older_than_sec`` ago."""
        cutoff = self.clock() - older_than_sec
        stale = [
            i for i in self._failed
            if (self._jobs[i].finished_at or 0) < cutoff
        ]
        for job_id in stale:
            self._failed.remove(job_id)
            del self._jobs[job_id]
        if stale:
            self._save()
            logger.info(f"Cleaned {len(stale)} failed job(s)")
        return len(stale)

    def stats(self) -> Dict[str, Any]:
        """Counts per state, worker pool size and recent failures."""
        counts = {state.value: 0 for state in JobState}
        delayed = 0
        now = self.clock()
        for job in self._jobs.values():
            counts[job.state.value] += 1
            if job.state is JobState.WAITING and job.ready_at > now:
                delayed += 1
        return {
            **counts,
            "delayed": delayed,
            "concurrency": self._concurrency,
            "running": self._running,
            "failed_jobs": [
                {
                    "job_id": j.job_id,
                    "type": j.payload.TYPE,
                    "attempts": j.attempts,
                    "error": j.last_error,
                    "finished_at": j.finished_at,
                }
                for j in self.failed_jobs()[:5]
            ],
        }

    def pending_count(self) -> int:
        return sum(1 for j in self._jobs.values() if j.is_pending)

    async def wait_idle(self, timeout: Optional[float] = None, poll_sec: float = 0.02):
        """Wait until no job is waiting or active."""
        async def _poll():
            while self.pending_count():
                await asyncio.sleep(poll_sec)
        await asyncio.wait_for(_poll(), timeout)

    # =========================================================================
    # Workers
    # =========================================================================

    def _wake(self):
        if self._wakeup is not None:
            self._wakeup.set()

    def _next_ready(self) -> Tuple[Optional[Job], Optional[float]]:
        """Best ready job, or the seconds until the next one becomes ready."""
        now = self.clock()
        best: Optional[Job] = None
        soonest: Optional[float] = None
        for job in self._jobs.values():
            if job.state is not JobState.WAITING:
                continue
            if job.ready_at <= now:
                if best is None or (job.priority.rank, job.sequence) < (best.priority.rank, best.sequence):
                    best = job
            else:
                wait = job.ready_at - now
                soonest = wait if soonest is None else min(soonest, wait)
        return best, soonest

    async def _worker(self, worker_id: int):
        try:
            while self._running and worker_id < self._concurrency:
                self._wakeup.clear()
                job, wait = self._next_ready()
                if job is None:
                    try:
                        await asyncio.wait_for(self._wakeup.wait(), timeout=wait)
                    except asyncio.TimeoutError:
                        pass
                    continue
                await self._run(job)
        finally:
            if self._workers.get(worker_id) is asyncio.current_task():
                del self._workers[worker_id]

    async def _run(self, job: Job):
        now = self.clock()
        job.state = JobState.ACTIVE
        job.attempts += 1
        job.started_at = now
        job.heartbeat_at = now
        self._save()

        context = JobContext(self, job)
        task = asyncio.create_task(self._execute(job, context))
        self._tasks[job.job_id] = task
        self._contexts[job.job_id] = context
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            # Queue shutdown: interrupt and put the job back
            context.cancel()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            if job.state is JobState.ACTIVE:
                job.state = JobState.WAITING
                job.attempts = max(0, job.attempts - 1)
                job.ready_at = self.clock()
            raise
        finally:
            if self._tasks.get(job.job_id) is task:
                del self._tasks[job.job_id]
            if self._contexts.get(job.job_id) is context:
                del self._contexts[job.job_id]

        if job.job_id in self._reclaimed:
            # The stall monitor already moved this job on
            self._reclaimed.discard(job.job_id)
            return
        if task.cancelled():
            self._fail(job, "cancelled")
            return

        exc = task.exception()
        if exc is None:
            self._complete(job, task.result())
        else:
            self._handle_error(job, exc)

    async def _execute(self, job: Job, context: JobContext) -> Any:
        with correlation_context(f"job-{job.job_id}"):
            logger.info(f"Running job {job.job_id} {job.payload.TYPE} attempt {job.attempts}/{job.max_attempts}")
            return await self.executor.execute(job, context)

    # =========================================================================
    # State transitions
    # =========================================================================

    def _complete(self, job: Job, result: Any):
        job.state = JobState.COMPLETED
        job.finished_at = self.clock()
        job.result = result if isinstance(result, (dict, list, int, float, str, type(None))) else str(result)
        job.history.append({"attempt": job.attempts, "outcome": "completed"})
        self._release(job)
        self._completed.append(job.job_id)
        while len(self._completed) > self.keep_completed:
            self._jobs.pop(self._completed.popleft(), None)
        self._save()
        logger.info(f"Job {job.job_id} completed")

    def _handle_error(self, job: Job, exc: BaseException):
        job.last_error = f"{type(exc).__name__}: {exc}"
        job.history.append({"attempt": job.attempts, "outcome": "error", "error": job.last_error})

        if self.policy.should_retry(job, exc):
            delay = self.policy.backoff(job.attempts)
            job.state = JobState.WAITING
            job.ready_at = self.clock() + delay
            self._save()
            self._wake()
            logger.warning(
                f"Job {job.job_id} attempt {job.attempts} failed ({job.last_error}); "
                f"retrying in {delay:.1f}s"
            )
            return

        log_exception(logger, f"Job {job.job_id} failed after {job.attempts} attempt(s)", exc)
        self._fail(job, job.last_error)

    def _fail(self, job: Job, error: Optional[str]):
        job.state = JobState.FAILED
        job.last_error = error
        job.finished_at = self.clock()
        self._release(job)
        self._failed.append(job.job_id)
        while len(self._failed) > self.keep_failed:
            self._jobs.pop(self._failed.popleft(), None)
        self._save()

    def _release(self, job: Job):
        if self._dedupe.get(job.dedupe_key) == job.job_id:
            del self._dedupe[job.dedupe_key]

    # =========================================================================
    # Stall monitor
    # =========================================================================

    async def _monitor_loop(self):
        while self._running:
            await asyncio.sleep(self.policy.stall_check_interval_sec)
            self.reclaim_stalled()

    def reclaim_stalled(self) -> List[str]:
        """
        Reclaim active jobs whose heartbeat is older than the stall timeout.

        A job is requeued at most ``max_stall_reclaims`` times; after that
        it fails. Returns the ids of reclaimed jobs.
        """
        now = self.clock()
        reclaimed = []
        for job in list(self._jobs.values()):
            if job.state is not JobState.ACTIVE:
                continue
            last = job.heartbeat_at or job.started_at or now
            if now - last <= self.policy.stall_timeout_sec:
                continue

            context = self._contexts.get(job.job_id)
            if context is not None:
                context.cancel()
            task = self._tasks.get(job.job_id)
            if task is not None:
                self._reclaimed.add(job.job_id)
                task.cancel()
            job.history.append({"attempt": job.attempts, "outcome": "stalled"})

            if job.stall_reclaims < self.policy.max_stall_reclaims:
                job.stall_reclaims += 1
                job.state = JobState.WAITING
                job.attempts = max(0, job.attempts - 1)
                job.ready_at = now
                logger.warning(f"Job {job.job_id} stalled; requeued ({job.stall_reclaims}/{self.policy.max_stall_reclaims})")
                self._save()
                self._wake()
            else:
                logger.error(f"Job {job.job_id} stalled too many times; failing")
                self._fail(job, "stalled")
            reclaimed.append(job.job_id)
        return reclaimed

    # =========================================================================
    # Journal
    # =========================================================================

    def _save(self):
        """Write queue state to the journal."""
        if self.journal_path is None:
            return
        try:
            self.journal_path.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "version": 1,
                "saved_at": self.clock(),
                "sequence": self._sequence,
                "jobs": [j.to_dict() for j in self._jobs.values()],
            }
            tmp = self.journal_path.with_suffix(self.journal_path.suffix + ".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp.replace(self.journal_path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to save queue journal: {e}")

    def _load(self):
        """Restore queue state; jobs interrupted while active wait again."""
        if not self.journal_path.exists():
            return
        try:
            with open(self.journal_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            jobs = [Job.from_dict(d) for d in data.get("jobs", [])]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to load queue journal: {e}")
            return

        self._sequence = data.get("sequence", 0)
        for job in sorted(jobs, key=lambda j: j.sequence):
            if job.state is JobState.ACTIVE:
                job.state = JobState.WAITING
                job.ready_at = self.clock()
            self._jobs[job.job_id] = job
            if job.is_pending:
                self._dedupe[job.dedupe_key] = job.job_id
            elif job.state is JobState.COMPLETED:
                self._completed.append(job.job_id)
            else:
                self._failed.append(job.job_id)
            self._sequence = max(self._sequence, job.sequence)
        logger.info(f"Restored {self.pending_count()} pending job(s) from journal")
