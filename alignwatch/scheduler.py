"""
ALIGNWATCH Scheduler

Recurring rules (daily, weekly, monthly, annual) evaluated in the
configured timezone. When a rule fires, its action builds a job request
which is handed to the work queue; no work runs inline.

Each rule cycles idle -> armed -> fired -> armed. Long waits are slept in
chunks no longer than ``max_timer_sec`` and re-armed until the target
instant is reached.
"""

import asyncio
import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from alignwatch.constants import MAX_TIMER_SEC, PEAK_TIMEZONE
from alignwatch.jobs import JobRequest
from alignwatch.logging_config import log_exception

logger = logging.getLogger("alignwatch.Scheduler")

__all__ = [
    "RuleAction",
    "RuleKind",
    "RuleState",
    "ScheduledRule",
    "Scheduler",
    "next_fire_at",
]


class RuleKind(Enum):
    """Recurrence of a rule."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ANNUAL = "annual"


class RuleState(Enum):
    """Lifecycle of a rule inside the scheduler."""
    IDLE = "idle"
    ARMED = "armed"
    FIRED = "fired"


@dataclass(frozen=True)
class ScheduledRule:
    """
    A named recurrence.

    ``day_of_week`` uses Python's convention (Monday = 0, Sunday = 6).
    Monthly and annual rules whose day exceeds the month length fire on the
    month's last day.
    """
    name: str
    kind: RuleKind
    hour: int
    minute: int = 0
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    month: Optional[int] = None

    def __post_init__(self):
        if not 0 <= self.hour <= 23 or not 0 <= self.minute <= 59:
            raise ValueError(f"Rule {self.name}: invalid time {self.hour}:{self.minute}")
        if self.kind is RuleKind.WEEKLY and (self.day_of_week is None or not 0 <= self.day_of_week <= 6):
            raise ValueError(f"Rule {self.name}: weekly rules need day_of_week 0-6")
        if self.kind in (RuleKind.MONTHLY, RuleKind.ANNUAL):
            if self.day_of_month is None or not 1 <= self.day_of_month <= 31:
                raise ValueError(f"Rule {self.name}: day_of_month must be 1-31")
        if self.kind is RuleKind.ANNUAL and (self.month is None or not 1 <= self.month <= 12):
            raise ValueError(f"Rule {self.name}: annual rules need month 1-12")

    @property
    def at(self) -> time:
        return time(self.hour, self.minute)


def _clamped(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def next_fire_at(rule: ScheduledRule, now: datetime, tz: ZoneInfo) -> datetime:
    """
    First instant strictly after ``now`` at which a rule fires.

    Args:
        rule: The recurrence
        now: Current instant (timezone-aware)
        tz: Timezone the rule's wall-clock time is expressed in

    Returns:
        Timezone-aware datetime in ``tz``
    """
    local = now.astimezone(tz)
    today = local.date()

    def at(d: date) -> datetime:
        return datetime.combine(d, rule.at, tzinfo=tz)

    if rule.kind is RuleKind.DAILY:
        candidate = at(today)
        return candidate if candidate > local else at(today + timedelta(days=1))

    if rule.kind is RuleKind.WEEKLY:
        d = today + timedelta(days=(rule.day_of_week - today.weekday()) % 7)
        candidate = at(d)
        return candidate if candidate > local else at(d + timedelta(days=7))

    if rule.kind is RuleKind.MONTHLY:
        year, month = today.year, today.month
        while True:
            candidate = at(_clamped(year, month, rule.day_of_month))
            if candidate > local:
                return candidate
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)

    year = today.year
    while True:
        candidate = at(_clamped(year, rule.month, rule.day_of_month))
        if candidate > local:
            return candidate
        year += 1


# Receives the instant the rule fired for; returns work to queue, or None
RuleAction = Callable[[datetime], Optional[JobRequest]]


class Scheduler:
    """
    Owns the rule registry and one armed timer task per rule.

    The scheduler only knows how to submit a JobRequest; it has no
    knowledge of what the jobs do.
    """

    def __init__(
        self,
        submit: Callable[[JobRequest], str],
        tz: str = PEAK_TIMEZONE,
        max_timer_sec: float = MAX_TIMER_SEC,
        now: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the scheduler.

        Args:
            submit: Enqueues a job request and returns its job id
            tz: IANA timezone for rule wall-clock times
            max_timer_sec: Longest single sleep before re-arming
            now: Clock returning an aware datetime (UTC by default)
            sleep: Coroutine used to wait
        """
        self.submit = submit
        self.tz = ZoneInfo(tz)
        self.max_timer_sec = max_timer_sec
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

        self._rules: Dict[str, Tuple[ScheduledRule, RuleAction]] = {}
        self._states: Dict[str, RuleState] = {}
        self._next: Dict[str, datetime] = {}
        self._last_job: Dict[str, str] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running = False

    # =========================================================================
    # Registry
    # =========================================================================

    def register(self, rule: ScheduledRule, action: RuleAction):
        """Add a rule; arms it immediately when the scheduler is running."""
        if rule.name in self._rules:
            raise ValueError(f"Rule {rule.name} already registered")
        self._rules[rule.name] = (rule, action)
        self._states[rule.name] = RuleState.IDLE
        if self._running:
            self._arm(rule, action)

    def unregister(self, name: str):
        self._rules.pop(name, None)
        self._states.pop(name, None)
        self._next.pop(name, None)
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()

    def rules(self) -> List[ScheduledRule]:
        return [rule for rule, _ in self._rules.values()]

    def state(self, name: str) -> RuleState:
        return self._states[name]

    def next_fires(self) -> Dict[str, datetime]:
        """Next fire instant of every rule, computed from now."""
        now = self._now()
        return {name: next_fire_at(rule, now, self.tz) for name, (rule, _) in self._rules.items()}

    def status(self) -> Dict[str, object]:
        return {
            "running": self._running,
            "rules": {
                name: {
                    "kind": rule.kind.value,
                    "state": self._states[name].value,
                    "next_fire": self._next[name].isoformat() if name in self._next else None,
                    "last_job": self._last_job.get(name),
                }
                for name, (rule, _) in self._rules.items()
            },
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self):
        if self._running:
            return
        self._running = True
        for rule, action in self._rules.values():
            self._arm(rule, action)
        logger.info(f"Scheduler started with {len(self._rules)} rule(s)")

    async def stop(self):
        if not self._running:
            return
        self._running = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        for name in self._states:
            self._states[name] = RuleState.IDLE
        self._next.clear()
        logger.info("Scheduler stopped")

    def _arm(self, rule: ScheduledRule, action: RuleAction):
        self._tasks[rule.name] = asyncio.create_task(self._rule_loop(rule, action))

    async def _rule_loop(self, rule: ScheduledRule, action: RuleAction):
        while self._running:
            target = next_fire_at(rule, self._now(), self.tz)
            self._next[rule.name] = target
            self._states[rule.name] = RuleState.ARMED
            logger.debug(f"Rule {rule.name} armed for {target.isoformat()}")

            await self._sleep_until(target)

            self._states[rule.name] = RuleState.FIRED
            self.fire(rule.name, target)

    async def _sleep_until(self, target: datetime):
        """Sleep in capped chunks until ``target``."""
        while True:
            remaining = (target - self._now()).total_seconds()
            if remaining <= 0:
                return
            await self._sleep(min(remaining, self.max_timer_sec))

    def fire(self, name: str, when: Optional[datetime] = None) -> Optional[str]:
        """
        Run a rule's action now and submit its job.

        Used by the timer loop and for manual triggering. A failing action
        is logged and does not disarm the rule.

        Returns:
            Job id of the submitted request, or None
        """
        rule, action = self._rules[name]
        when = when or self._now().astimezone(self.tz)
        try:
            request = action(when)
            if request is None:
                logger.info(f"Rule {name} fired with nothing to do")
                return None
            job_id = self.submit(request)
        except Exception as e:
            log_exception(logger, f"Rule {name} failed to submit work", e)
            return None

        self._last_job[name] = job_id
        logger.info(f"Rule {name} fired: queued {request.payload.TYPE} as job {job_id}")
        return job_id
