"""
ALIGNWATCH Logging Configuration

Centralized logging setup for the alignment service:
- Console output plus an optional size-rotated log file
- Per-component log levels (search, queue, scheduler, store)
- Job correlation IDs so every line logged while a job runs can be traced
- Helpers for exceptions and timing of long computations

Usage:
    from alignwatch.logging_config import setup_logging, get_logger, log_timing

    setup_logging(log_level="INFO", log_file="alignwatch.log")
    logger = get_logger("search")

    with correlation_context(job.job_id):
        with log_timing(logger, "regenerate 2026"):
            executor.run(job)
"""

import logging
import sys
import time
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Generator, Optional

ROOT_LOGGER_NAME = "alignwatch"

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LOG_FORMAT_WITH_CORRELATION = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s"
)
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# =============================================================================
# Correlation IDs
# =============================================================================

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with the correlation ID of the running job.

    The ID lives in a ContextVar, so concurrent workers on the same event
    loop each see their own value. The filter is attached to handlers,
    which makes it apply to records from every child logger.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Add the correlation_id attribute to a record.

        Args:
            record: The log record to process

        Returns:
            True (the record always passes)
        """
        record.correlation_id = _correlation_id.get() or "-"
        return True


def get_correlation_id() -> Optional[str]:
    """Get the correlation ID of the current context.

    Returns:
        The bound correlation ID, or None outside any job.

    Example:
        cid = get_correlation_id()
        if cid:
            result["correlation_id"] = cid
    """
    return _correlation_id.get()


def generate_correlation_id(prefix: str = "aw") -> str:
    """Generate a new unique correlation ID.

    Args:
        prefix: Prefix for the ID (default: "aw" for alignwatch)

    Returns:
        A unique correlation ID string.

    Example:
        cid = generate_correlation_id("job")
        # Returns something like "job-a1b2c3d4"
    """
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def correlation_context(
    correlation_id: Optional[str] = None,
    prefix: str = "aw",
) -> Generator[str, None, None]:
    """Bind a correlation ID for the duration of a block.

    Args:
        correlation_id: ID to bind; a fresh one is generated when omitted.
        prefix: Prefix for generated IDs.

    Yields:
        The bound correlation ID.

    Example:
        with correlation_context(job.job_id):
            logger.info("Regenerating")  # Logged with the job id

        # Or with a generated ID:
        with correlation_context(prefix="cli") as cid:
            logger.info(f"Manual run {cid}")
    """
    cid = correlation_id or generate_correlation_id(prefix)
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


# =============================================================================
# Setup
# =============================================================================


def setup_logging(
    log_level: str = DEFAULT_LOG_LEVEL,
    log_file: Optional[str | Path] = None,
    enable_correlation: bool = True,
) -> None:
    """Configure the ``alignwatch`` logger hierarchy.

    Call once at process start. Calling again replaces the handlers, which
    keeps repeated CLI invocations inside one interpreter from duplicating
    output.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        log_file: Optional path; enables a rotating file handler.
        enable_correlation: Include the job correlation ID in every line.

    Example:
        setup_logging(log_level="DEBUG", log_file="/var/log/alignwatch.log")
    """
    level = LOG_LEVELS.get(log_level.upper(), logging.INFO)
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)
    root_logger.handlers.clear()
    root_logger.filters.clear()

    correlation_filter = CorrelationIdFilter() if enable_correlation else None
    log_format = (
        DEFAULT_LOG_FORMAT_WITH_CORRELATION if enable_correlation else DEFAULT_LOG_FORMAT
    )
    formatter = logging.Formatter(log_format, DEFAULT_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    if correlation_filter:
        console_handler.addFilter(correlation_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_path = Path(log_file)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=DEFAULT_MAX_BYTES,
            backupCount=DEFAULT_BACKUP_COUNT,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        if correlation_filter:
            file_handler.addFilter(correlation_filter)
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a component.

    Returns a child logger under the ``alignwatch`` namespace so it
    inherits the handlers installed by setup_logging.
    ``get_logger("WorkQueue")`` and ``get_logger("alignwatch.WorkQueue")``
    return the same logger.

    Args:
        name: Component name, with or without the ``alignwatch.`` prefix

    Returns:
        Configured logger instance

    Example:
        logger = get_logger("Scheduler")
        logger.info("Armed 9 rules")
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def set_component_level(component: str, level: str) -> None:
    """Set the log level of one component.

    Args:
        component: Logger name under ``alignwatch`` (e.g. "SearchEngine", "WorkQueue")
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Example:
        set_component_level("SearchEngine", "DEBUG")  # Every near miss
        set_component_level("WorkQueue", "WARNING")  # Only retries and failures
    """
    get_logger(component).setLevel(LOG_LEVELS.get(level.upper(), logging.INFO))


# =============================================================================
# Helpers
# =============================================================================


def log_exception(
    logger: logging.Logger,
    message: str,
    exc: BaseException,
    level: int = logging.ERROR,
    include_traceback: bool = True,
) -> None:
    """Log an exception with its type and, optionally, the full traceback.

    Args:
        logger: Logger to write to.
        message: What was being attempted.
        exc: The exception raised.
        level: Log level (default ERROR).
        include_traceback: Append the formatted traceback.

    Example:
        try:
            store.regenerate(scope, events)
        except StoreError as e:
            log_exception(logger, "Cache write failed", e)
    """
    exc_type = type(exc).__name__
    extra = {"exception_type": exc_type, "exception_message": str(exc)}

    if include_traceback:
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        extra["traceback"] = tb
        logger.log(level, f"{message}: [{exc_type}] {exc}\n{tb}", extra=extra)
    else:
        logger.log(level, f"{message}: [{exc_type}] {exc}", extra=extra)


@contextmanager
def log_timing(
    logger: logging.Logger,
    operation: str,
    level: int = logging.DEBUG,
    warn_threshold_sec: Optional[float] = None,
) -> Generator[None, None, None]:
    """Log how long a block took.

    Args:
        logger: Logger to write to.
        operation: Name of the timed operation.
        level: Log level for the start and completion lines (default DEBUG).
        warn_threshold_sec: Log a warning instead when the block runs longer.

    Example:
        with log_timing(logger, "regenerate year 2026", warn_threshold_sec=600):
            events = search_all(landmarks)
    """
    start_time = time.perf_counter()
    logger.log(level, f"{operation} started")
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start_time
        extra = {"operation": operation, "elapsed_seconds": round(elapsed, 3)}
        if warn_threshold_sec is not None and elapsed > warn_threshold_sec:
            logger.warning(
                f"{operation} completed in {elapsed:.3f}s "
                f"(exceeded {warn_threshold_sec}s threshold)",
                extra=extra,
            )
        else:
            logger.log(level, f"{operation} completed in {elapsed:.3f}s", extra=extra)
