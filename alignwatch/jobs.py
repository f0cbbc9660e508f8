"""
ALIGNWATCH Job Model

Jobs carry a tagged payload (one dataclass per kind of work), a priority,
a dedupe key and their retry/stall bookkeeping. Everything round-trips
through plain dictionaries so the queue journal can be JSON.
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Union


class Priority(Enum):
    """Job priority; lower rank runs first."""
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "normal": 1, "low": 2}[self.value]


class JobState(Enum):
    """Job lifecycle states."""
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Payloads
# =============================================================================


@dataclass(frozen=True)
class RegenerateYear:
    """Recompute every landmark for a whole year."""
    year: int
    TYPE: ClassVar[str] = "regenerate_year"

    @property
    def dedupe_key(self) -> str:
        return f"year:{self.year}"


@dataclass(frozen=True)
class RegenerateLandmarkYears:
    """Recompute one landmark for a span of years, one year at a time."""
    landmark_id: int
    start_year: int
    end_year: int
    TYPE: ClassVar[str] = "regenerate_landmark_years"

    def __post_init__(self):
        if self.end_year < self.start_year:
            raise ValueError(f"end_year {self.end_year} before start_year {self.start_year}")

    @property
    def dedupe_key(self) -> str:
        return f"landmark:{self.landmark_id}:{self.start_year}-{self.end_year}"


@dataclass(frozen=True)
class RegenerateMonth:
    """Recompute one month, for all or some landmarks."""
    year: int
    month: int
    landmark_ids: Optional[Tuple[int, ...]] = None
    TYPE: ClassVar[str] = "regenerate_month"

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"Invalid month {self.month}")
        if self.landmark_ids is not None:
            object.__setattr__(self, "landmark_ids", tuple(sorted(set(self.landmark_ids))))

    @property
    def dedupe_key(self) -> str:
        who = "all" if self.landmark_ids is None else ",".join(str(i) for i in self.landmark_ids)
        return f"month:{self.year}-{self.month:02d}:{who}"


@dataclass(frozen=True)
class RegenerateDay:
    """Recompute one local date for one landmark."""
    landmark_id: int
    year: int
    month: int
    day: int
    TYPE: ClassVar[str] = "regenerate_day"

    @property
    def dedupe_key(self) -> str:
        return f"day:{self.landmark_id}:{self.year}-{self.month:02d}-{self.day:02d}"


@dataclass(frozen=True)
class VerifyYear:
    """Check a year is populated; optionally regenerate it when it is not."""
    year: int
    regenerate_if_missing: bool = False
    TYPE: ClassVar[str] = "verify_year"

    @property
    def dedupe_key(self) -> str:
        return f"verify:{self.year}:{int(self.regenerate_if_missing)}"


@dataclass(frozen=True)
class ArchiveEvents:
    """Delete events calculated for years before ``cutoff_year``."""
    cutoff_year: int
    TYPE: ClassVar[str] = "archive_events"

    @property
    def dedupe_key(self) -> str:
        return f"archive:{self.cutoff_year}"


JobPayload = Union[
    RegenerateYear,
    RegenerateLandmarkYears,
    RegenerateMonth,
    RegenerateDay,
    VerifyYear,
    ArchiveEvents,
]

PAYLOAD_TYPES = {
    cls.TYPE: cls
    for cls in (
        RegenerateYear,
        RegenerateLandmarkYears,
        RegenerateMonth,
        RegenerateDay,
        VerifyYear,
        ArchiveEvents,
    )
}


def payload_to_dict(payload: JobPayload) -> Dict[str, Any]:
    """Serialize a payload with its type tag."""
    data: Dict[str, Any] = {"type": payload.TYPE}
    for f in fields(payload):
        value = getattr(payload, f.name)
        data[f.name] = list(value) if isinstance(value, tuple) else value
    return data


def payload_from_dict(data: Dict[str, Any]) -> JobPayload:
    """Rebuild a payload from its tagged dictionary."""
    data = dict(data)
    kind = data.pop("type", None)
    cls = PAYLOAD_TYPES.get(kind)
    if cls is None:
        raise ValueError(f"Unknown job type: {kind}")
    if data.get("landmark_ids") is not None:
        data["landmark_ids"] = tuple(data["landmark_ids"])
    return cls(**data)


# =============================================================================
# Jobs
# =============================================================================


@dataclass
class JobRequest:
    """What a scheduler rule or trigger asks the queue to run."""
    payload: JobPayload
    priority: Priority = Priority.NORMAL
    dedupe_key: Optional[str] = None


@dataclass
class Job:
    """A queued unit of work and its execution history."""
    job_id: str
    payload: JobPayload
    priority: Priority
    dedupe_key: str
    sequence: int
    created_at: float
    ready_at: float
    max_attempts: int
    state: JobState = JobState.WAITING
    attempts: int = 0
    stall_reclaims: int = 0
    started_at: Optional[float] = None
    heartbeat_at: Optional[float] = None
    finished_at: Optional[float] = None
    last_error: Optional[str] = None
    result: Any = None
    history: list = field(default_factory=list)

    @property
    def is_pending(self) -> bool:
        return self.state in (JobState.WAITING, JobState.ACTIVE)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "job_id": self.job_id,
            "payload": payload_to_dict(self.payload),
            "priority": self.priority.value,
            "dedupe_key": self.dedupe_key,
            "sequence": self.sequence,
            "created_at": self.created_at,
            "ready_at": self.ready_at,
            "max_attempts": self.max_attempts,
            "state": self.state.value,
            "attempts": self.attempts,
            "stall_reclaims": self.stall_reclaims,
            "started_at": self.started_at,
            "heartbeat_at": self.heartbeat_at,
            "finished_at": self.finished_at,
            "last_error": self.last_error,
            "result": self.result,
            "history": list(self.history),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create from dictionary."""
        return cls(
            job_id=data["job_id"],
            payload=payload_from_dict(data["payload"]),
            priority=Priority(data["priority"]),
            dedupe_key=data["dedupe_key"],
            sequence=data["sequence"],
            created_at=data["created_at"],
            ready_at=data["ready_at"],
            max_attempts=data["max_attempts"],
            state=JobState(data["state"]),
            attempts=data.get("attempts", 0),
            stall_reclaims=data.get("stall_reclaims", 0),
            started_at=data.get("started_at"),
            heartbeat_at=data.get("heartbeat_at"),
            finished_at=data.get("finished_at"),
            last_error=data.get("last_error"),
            result=data.get("result"),
            history=list(data.get("history", [])),
        )
