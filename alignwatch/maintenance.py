"""
ALIGNWATCH Maintenance Rules

The default recurring rules that keep the event cache populated and
trimmed. Every action only describes work; the scheduler queues it.

| rule                   | when               | work                               |
|------------------------|--------------------|------------------------------------|
| yearly-calculation     | Dec 1 02:00        | regenerate next year               |
| yearly-preparation     | Dec 15 01:00       | verify next year, fill if missing  |
| new-year-verification  | Jan 2 01:00        | verify current year                |
| yearly-archive         | Mar 1 02:00        | drop years older than retention    |
| current-year-supplement| 1st 03:00 monthly  | verify current year, fill if empty |
| monthly-preparation    | 25th 03:00 monthly | verify next month's year, fill     |
| monthly-verification   | 5th 01:00 monthly  | verify current year                |
| system-health-check    | daily 01:00        | verify current year                |
| data-integrity-check   | Sunday 04:00       | verify current year                |
"""

from datetime import datetime
from typing import Iterable, List, Tuple

from alignwatch.constants import ARCHIVE_RETENTION_YEARS
from alignwatch.jobs import ArchiveEvents, JobRequest, Priority, RegenerateYear, VerifyYear
from alignwatch.scheduler import RuleAction, RuleKind, ScheduledRule, Scheduler

__all__ = ["default_rules", "install_default_rules"]

SUNDAY = 6


def _verify_current(when: datetime) -> JobRequest:
    return JobRequest(VerifyYear(when.year), Priority.NORMAL)


def default_rules(retention_years: int = ARCHIVE_RETENTION_YEARS) -> List[Tuple[ScheduledRule, RuleAction]]:
    """Maintenance rules paired with their actions."""

    def yearly_calculation(when: datetime) -> JobRequest:
        return JobRequest(RegenerateYear(when.year + 1), Priority.LOW)

    def yearly_preparation(when: datetime) -> JobRequest:
        return JobRequest(VerifyYear(when.year + 1, regenerate_if_missing=True), Priority.LOW)

    def yearly_archive(when: datetime) -> JobRequest:
        return JobRequest(ArchiveEvents(when.year - retention_years), Priority.LOW)

    def current_year_supplement(when: datetime) -> JobRequest:
        return JobRequest(VerifyYear(when.year, regenerate_if_missing=True), Priority.NORMAL)

    def monthly_preparation(when: datetime) -> JobRequest:
        year = when.year + 1 if when.month == 12 else when.year
        return JobRequest(VerifyYear(year, regenerate_if_missing=True), Priority.LOW)

    return [
        (ScheduledRule("yearly-calculation", RuleKind.ANNUAL, 2, month=12, day_of_month=1), yearly_calculation),
        (ScheduledRule("yearly-preparation", RuleKind.ANNUAL, 1, month=12, day_of_month=15), yearly_preparation),
        (ScheduledRule("new-year-verification", RuleKind.ANNUAL, 1, month=1, day_of_month=2), _verify_current),
        (ScheduledRule("yearly-archive", RuleKind.ANNUAL, 2, month=3, day_of_month=1), yearly_archive),
        (ScheduledRule("current-year-supplement", RuleKind.MONTHLY, 3, day_of_month=1), current_year_supplement),
        (ScheduledRule("monthly-preparation", RuleKind.MONTHLY, 3, day_of_month=25), monthly_preparation),
        (ScheduledRule("monthly-verification", RuleKind.MONTHLY, 1, day_of_month=5), _verify_current),
        (ScheduledRule("system-health-check", RuleKind.DAILY, 1), _verify_current),
        (ScheduledRule("data-integrity-check", RuleKind.WEEKLY, 4, day_of_week=SUNDAY), _verify_current),
    ]


def install_default_rules(
    scheduler: Scheduler,
    retention_years: int = ARCHIVE_RETENTION_YEARS,
    disabled: Iterable[str] = (),
) -> List[str]:
    """Register the default rules, skipping any named in ``disabled``."""
    disabled = set(disabled)
    installed = []
    for rule, action in default_rules(retention_years):
        if rule.name in disabled:
            continue
        scheduler.register(rule, action)
        installed.append(rule.name)
    return installed
