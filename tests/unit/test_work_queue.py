"""
ALIGNWATCH Unit Tests - Work Queue

Priority, dedupe, retries, stall reclaim, throttling and the journal.
Executors here are tiny fakes; no search runs.

Run:
    pytest tests/unit/test_work_queue.py -v
"""

import asyncio
import json

import pytest

from alignwatch.exceptions import JobCancelledError, JobError
from alignwatch.jobs import Job, JobState, Priority, RegenerateDay, RegenerateYear, VerifyYear
from alignwatch.work_queue import JobContext, RetryPolicy, Throttle, WorkQueue


# =============================================================================
# Fake executors
# =============================================================================


class RecordingExecutor:
    """Succeeds after ``failures`` errors, recording the payloads it ran."""

    def __init__(self, failures: int = 0, error: type = RuntimeError):
        self.failures = failures
        self.error = error
        self.ran = []

    async def execute(self, job: Job, context: JobContext):
        self.ran.append(job.payload)
        if self.failures > 0:
            self.failures -= 1
            raise self.error("transient failure")
        return {"year": getattr(job.payload, "year", None)}


class BlockingExecutor:
    """Never finishes until released."""

    def __init__(self):
        self.started = 0
        self.release = asyncio.Event()
        self.contexts = []

    async def execute(self, job: Job, context: JobContext):
        self.started += 1
        self.contexts.append(context)
        await self.release.wait()
        return "released"


def fast_policy(**kwargs) -> RetryPolicy:
    defaults = dict(backoff_base_sec=0.01, backoff_max_sec=0.05, stall_check_interval_sec=1000.0)
    defaults.update(kwargs)
    return RetryPolicy(**defaults)


def no_throttle() -> Throttle:
    return Throttle(low_priority_mode=False)


async def wait_until(condition, timeout: float = 2.0):
    async def _poll():
        while not condition():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_poll(), timeout)


# =============================================================================
# Policies
# =============================================================================


class TestRetryPolicy:
    """Capped exponential backoff."""

    def test_backoff_doubles(self):
        policy = RetryPolicy(backoff_base_sec=5.0, backoff_multiplier=2.0, backoff_max_sec=300.0)
        assert [policy.backoff(n) for n in (1, 2, 3)] == [5.0, 10.0, 20.0]

    def test_backoff_capped(self):
        policy = RetryPolicy(backoff_base_sec=5.0, backoff_multiplier=2.0, backoff_max_sec=300.0)
        assert policy.backoff(10) == 300.0

    def test_non_retryable_errors(self):
        job = Job("j", RegenerateYear(2026), Priority.LOW, "k", 1, 0.0, 0.0, 3, attempts=1)
        policy = RetryPolicy()
        assert policy.should_retry(job, RuntimeError("x"))
        assert not policy.should_retry(job, JobError("x"))

    def test_budget_exhausted(self):
        job = Job("j", RegenerateYear(2026), Priority.LOW, "k", 1, 0.0, 0.0, 3, attempts=3)
        assert not RetryPolicy().should_retry(job, RuntimeError("x"))


class TestThrottle:
    """Start delays and step pauses per priority."""

    def test_start_delay_by_priority(self):
        throttle = Throttle(low_priority_mode=True, job_delay_sec=5.0)
        assert throttle.start_delay(Priority.HIGH) == 0.0
        assert throttle.start_delay(Priority.NORMAL) == 2.5
        assert throttle.start_delay(Priority.LOW) == 5.0

    def test_disabled_throttle(self):
        throttle = Throttle(low_priority_mode=False)
        assert throttle.start_delay(Priority.LOW) == 0.0
        assert throttle.step_pause(Priority.LOW) == 0.0

    def test_step_pause(self):
        throttle = Throttle(low_priority_mode=True, processing_delay_sec=2.0)
        assert throttle.step_pause(Priority.HIGH) == 0.0
        assert throttle.step_pause(Priority.NORMAL) == 2.0

    def test_delayed_job_counted(self):
        clock = [100.0]
        queue = WorkQueue(RecordingExecutor(), throttle=Throttle(job_delay_sec=5.0), clock=lambda: clock[0])
        job_id = queue.enqueue(RegenerateYear(2026), Priority.LOW)

        assert queue.get(job_id).ready_at == 105.0
        assert queue.stats()["delayed"] == 1


# =============================================================================
# Enqueue and dedupe
# =============================================================================


class TestEnqueue:
    """Queue admission."""

    def test_dedupe_returns_existing_job(self):
        queue = WorkQueue(RecordingExecutor())
        first = queue.enqueue(RegenerateYear(2026))
        second = queue.enqueue(RegenerateYear(2026))

        assert first == second
        assert queue.pending_count() == 1

    def test_dedupe_upgrades_priority(self):
        queue = WorkQueue(RecordingExecutor(), throttle=no_throttle())
        job_id = queue.enqueue(RegenerateYear(2026), Priority.LOW)

        queue.enqueue(RegenerateYear(2026), Priority.HIGH)

        assert queue.get(job_id).priority is Priority.HIGH

    def test_dedupe_never_downgrades(self):
        queue = WorkQueue(RecordingExecutor())
        job_id = queue.enqueue(RegenerateYear(2026), Priority.HIGH)
        queue.enqueue(RegenerateYear(2026), Priority.LOW)
        assert queue.get(job_id).priority is Priority.HIGH

    def test_explicit_dedupe_key(self):
        queue = WorkQueue(RecordingExecutor())
        a = queue.enqueue(RegenerateYear(2026), dedupe_key="shared")
        b = queue.enqueue(RegenerateYear(2027), dedupe_key="shared")
        assert a == b

    def test_running_job_can_be_bypassed(self):
        queue = WorkQueue(RecordingExecutor())
        running = queue.enqueue(RegenerateYear(2026))
        queue.get(running).state = JobState.ACTIVE

        assert queue.enqueue(RegenerateYear(2026)) == running
        successor = queue.enqueue(RegenerateYear(2026), dedupe_active=False)

        assert successor != running
        assert queue.enqueue(RegenerateYear(2026), dedupe_active=False) == successor

    def test_unknown_job(self):
        with pytest.raises(JobError):
            WorkQueue(RecordingExecutor()).get("nope")

    @pytest.mark.parametrize("value", [0, 11])
    def test_concurrency_bounds(self, value):
        with pytest.raises(ValueError):
            WorkQueue(RecordingExecutor(), concurrency=value)

    def test_jobs_listed_in_run_order(self):
        queue = WorkQueue(RecordingExecutor())
        low = queue.enqueue(RegenerateYear(2026), Priority.LOW)
        high = queue.enqueue(RegenerateDay(1, 2026, 3, 20), Priority.HIGH)
        assert [j.job_id for j in queue.jobs()] == [high, low]


# =============================================================================
# Execution
# =============================================================================


class TestExecution:
    """Workers, ordering and retries."""

    @pytest.mark.asyncio
    async def test_job_completes(self):
        executor = RecordingExecutor()
        queue = WorkQueue(executor, fast_policy(), no_throttle())
        job_id = queue.enqueue(RegenerateYear(2026))

        await queue.start()
        await queue.wait_idle(timeout=2.0)
        await queue.stop()

        job = queue.get(job_id)
        assert job.state is JobState.COMPLETED
        assert job.result == {"year": 2026}
        assert job.attempts == 1

    @pytest.mark.asyncio
    async def test_priority_order(self):
        executor = RecordingExecutor()
        queue = WorkQueue(executor, fast_policy(), no_throttle(), concurrency=1)
        queue.enqueue(RegenerateYear(2030), Priority.LOW)
        queue.enqueue(RegenerateYear(2029), Priority.NORMAL)
        queue.enqueue(RegenerateYear(2028), Priority.HIGH)
        queue.enqueue(RegenerateYear(2027), Priority.HIGH)

        await queue.start()
        await queue.wait_idle(timeout=2.0)
        await queue.stop()

        assert [p.year for p in executor.ran] == [2028, 2027, 2029, 2030]

    @pytest.mark.asyncio
    async def test_completed_key_can_be_queued_again(self):
        queue = WorkQueue(RecordingExecutor(), fast_policy(), no_throttle())
        first = queue.enqueue(RegenerateYear(2026))
        await queue.start()
        await queue.wait_idle(timeout=2.0)

        second = queue.enqueue(RegenerateYear(2026))
        await queue.wait_idle(timeout=2.0)
        await queue.stop()

        assert first != second
        assert queue.get(second).state is JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        executor = RecordingExecutor(failures=2)
        queue = WorkQueue(executor, fast_policy(max_attempts=3), no_throttle())
        job_id = queue.enqueue(RegenerateYear(2026))

        await queue.start()
        await queue.wait_idle(timeout=2.0)
        await queue.stop()

        job = queue.get(job_id)
        assert job.state is JobState.COMPLETED
        assert job.attempts == 3
        assert [h["outcome"] for h in job.history] == ["error", "error", "completed"]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        executor = RecordingExecutor(failures=10)
        queue = WorkQueue(executor, fast_policy(max_attempts=3), no_throttle())
        job_id = queue.enqueue(RegenerateYear(2026))

        await queue.start()
        await queue.wait_idle(timeout=2.0)
        await queue.stop()

        job = queue.get(job_id)
        assert job.state is JobState.FAILED
        assert job.attempts == 3
        assert "RuntimeError" in job.last_error
        assert queue.failed_jobs() == [job]
        assert queue.stats()["failed_jobs"][0]["job_id"] == job_id

    @pytest.mark.asyncio
    async def test_non_retryable_fails_immediately(self):
        executor = RecordingExecutor(failures=1, error=JobError)
        queue = WorkQueue(executor, fast_policy(), no_throttle())
        job_id = queue.enqueue(RegenerateYear(2026))

        await queue.start()
        await queue.wait_idle(timeout=2.0)

        job = queue.get(job_id)
        assert job.state is JobState.FAILED
        assert job.attempts == 1

        assert queue.retry_failed(job_id) is True
        await queue.wait_idle(timeout=2.0)
        await queue.stop()

        assert queue.get(job_id).state is JobState.COMPLETED
        assert queue.failed_jobs() == []

    @pytest.mark.asyncio
    async def test_retry_failed_ignores_other_states(self):
        queue = WorkQueue(RecordingExecutor())
        job_id = queue.enqueue(RegenerateYear(2026))
        assert queue.retry_failed(job_id) is False

    @pytest.mark.asyncio
    async def test_concurrency_can_grow(self):
        executor = BlockingExecutor()
        queue = WorkQueue(executor, fast_policy(), no_throttle(), concurrency=1)
        for year in (2026, 2027, 2028):
            queue.enqueue(RegenerateYear(year))

        await queue.start()
        await wait_until(lambda: executor.started == 1)
        await queue.update_concurrency(3)
        await wait_until(lambda: executor.started == 3)

        assert queue.concurrency == 3
        executor.release.set()
        await queue.wait_idle(timeout=2.0)
        await queue.stop()

    @pytest.mark.asyncio
    async def test_update_concurrency_validates(self):
        queue = WorkQueue(RecordingExecutor())
        with pytest.raises(ValueError):
            await queue.update_concurrency(0)

    @pytest.mark.asyncio
    async def test_stop_returns_active_job_to_waiting(self):
        executor = BlockingExecutor()
        queue = WorkQueue(executor, fast_policy(), no_throttle())
        job_id = queue.enqueue(RegenerateYear(2026))

        await queue.start()
        await wait_until(lambda: executor.started == 1)
        await queue.stop()

        job = queue.get(job_id)
        assert job.state is JobState.WAITING
        assert job.attempts == 0

    @pytest.mark.asyncio
    async def test_keep_completed_limit(self):
        queue = WorkQueue(RecordingExecutor(), fast_policy(), no_throttle(), keep_completed=2)
        ids = [queue.enqueue(RegenerateYear(y)) for y in (2026, 2027, 2028, 2029)]

        await queue.start()
        await queue.wait_idle(timeout=2.0)
        await queue.stop()

        assert len(queue.jobs(JobState.COMPLETED)) == 2
        with pytest.raises(JobError):
            queue.get(ids[0])

    @pytest.mark.asyncio
    async def test_context_pause_heartbeats(self):
        clock = [50.0]
        queue = WorkQueue(RecordingExecutor(), throttle=no_throttle(), clock=lambda: clock[0])
        job_id = queue.enqueue(RegenerateYear(2026))
        context = JobContext(queue, queue.get(job_id))

        clock[0] = 75.0
        await context.pause()

        assert queue.get(job_id).heartbeat_at == 75.0


# =============================================================================
# Stall reclaim
# =============================================================================


class TestStallReclaim:
    """Jobs without heartbeats are reclaimed, then failed."""

    @pytest.mark.asyncio
    async def test_reclaim_then_fail(self):
        clock = [1000.0]
        executor = BlockingExecutor()
        policy = fast_policy(stall_timeout_sec=10.0, max_stall_reclaims=1)
        queue = WorkQueue(executor, policy, no_throttle(), clock=lambda: clock[0])
        job_id = queue.enqueue(RegenerateYear(2026))

        await queue.start()
        await wait_until(lambda: executor.started == 1)

        clock[0] += 5.0
        assert queue.reclaim_stalled() == []

        clock[0] += 6.0
        assert queue.reclaim_stalled() == [job_id]
        job = queue.get(job_id)
        assert job.stall_reclaims == 1

        # The requeued job starts again with a fresh heartbeat
        await wait_until(lambda: executor.started == 2)
        assert job.state is JobState.ACTIVE
        assert job.attempts == 1

        clock[0] += 11.0
        assert queue.reclaim_stalled() == [job_id]
        assert job.state is JobState.FAILED
        assert job.last_error == "stalled"

        await queue.stop()
        assert [h["outcome"] for h in job.history] == ["stalled", "stalled"]

    @pytest.mark.asyncio
    async def test_reclaimed_run_cannot_heartbeat(self):
        clock = [1000.0]
        executor = BlockingExecutor()
        policy = fast_policy(stall_timeout_sec=10.0, max_stall_reclaims=1)
        queue = WorkQueue(executor, policy, no_throttle(), clock=lambda: clock[0])
        job_id = queue.enqueue(RegenerateYear(2026))

        await queue.start()
        await wait_until(lambda: executor.started == 1)
        stale = executor.contexts[0]

        clock[0] += 11.0
        assert queue.reclaim_stalled() == [job_id]
        assert stale.cancelled

        await wait_until(lambda: executor.started == 2)
        job = queue.get(job_id)
        restarted_at = job.heartbeat_at

        # A search thread left over from the first run keeps calling in
        clock[0] += 5.0
        with pytest.raises(JobCancelledError):
            stale.heartbeat()
        assert job.heartbeat_at == restarted_at

        current = executor.contexts[1]
        assert not current.cancelled
        current.heartbeat()
        assert job.heartbeat_at == clock[0]

        await queue.stop()


# =============================================================================
# Journal and cleanup
# =============================================================================


class TestJournal:
    """Queue state persisted to JSON."""

    def test_waiting_jobs_survive_restart(self, tmp_path):
        path = tmp_path / "queue.json"
        first = WorkQueue(RecordingExecutor(), journal_path=path)
        a = first.enqueue(RegenerateYear(2026), Priority.LOW)
        b = first.enqueue(VerifyYear(2026, True), Priority.HIGH)

        second = WorkQueue(RecordingExecutor(), journal_path=path)

        assert second.pending_count() == 2
        assert second.get(a).payload == RegenerateYear(2026)
        assert second.get(b).priority is Priority.HIGH
        # Dedupe index rebuilt
        assert second.enqueue(RegenerateYear(2026)) == a

    def test_active_jobs_reload_as_waiting(self, tmp_path):
        path = tmp_path / "queue.json"
        job = Job("j1", RegenerateYear(2026), Priority.LOW, "year:2026", 1, 0.0, 0.0, 3,
                  state=JobState.ACTIVE, attempts=1)
        path.write_text(json.dumps({"version": 1, "sequence": 1, "jobs": [job.to_dict()]}))

        queue = WorkQueue(RecordingExecutor(), journal_path=path)

        assert queue.get("j1").state is JobState.WAITING
        # New jobs sequence after restored ones
        new_id = queue.enqueue(RegenerateYear(2027))
        assert queue.get(new_id).sequence == 2

    def test_corrupt_journal_ignored(self, tmp_path):
        path = tmp_path / "queue.json"
        path.write_text("{not json")

        queue = WorkQueue(RecordingExecutor(), journal_path=path)

        assert queue.pending_count() == 0

    @pytest.mark.asyncio
    async def test_clean_failed(self):
        clock = [0.0]
        executor = RecordingExecutor(failures=1, error=JobError)
        queue = WorkQueue(executor, fast_policy(), no_throttle(), clock=lambda: clock[0])
        job_id = queue.enqueue(RegenerateYear(2026))

        await queue.start()
        await queue.wait_idle(timeout=2.0)
        await queue.stop()

        assert queue.clean_failed(older_than_sec=60.0) == 0
        clock[0] = 120.0
        assert queue.clean_failed(older_than_sec=60.0) == 1
        with pytest.raises(JobError):
            queue.get(job_id)
