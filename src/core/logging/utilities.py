"""Logging utility functions."""

import logging
from typing import Any

from core.utils.json_serializers import format_bytes

# Reserved LogRecord attribute names that cannot be used in extra dict
_RESERVED_LOG_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "asctime",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, etc.)
        msg: Log message
        **kwargs: Additional context fields (target_url, batch_id, etc.)
                  Note: exc_info=True is supported and handled specially.

    Example:
        log_with_context(
            logger, logging.INFO, "Batch delivered",
            target_url=endpoint.target_url,
            batch_id=batch.id,
            offset=progress.committed,
        )
    """
    exc_info = kwargs.pop("exc_info", None)

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Extracts error_category from CollectorError subclasses and truncates
    long error messages.

    Example:
        try:
            await streamer.stream(batch, progress, sealed)
        except StreamError as e:
            log_exception(logger, e, "Batch stream failed", batch_id=batch.id)
    """
    error_category = kwargs.get("error_category")
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        error_category = cat.value if hasattr(cat, "value") else str(cat)
        kwargs["error_category"] = error_category

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=extra)
    else:
        logger.log(level, msg, extra=extra)


def format_fleet_stats(
    cycle_count: int,
    active: int,
    disabled: int,
    sent_bytes: int,
    unacked_bytes: int,
    sink_connected: bool,
    since_last: int | None = None,
    interval_seconds: float = 30,
) -> str:
    """
    Format the standardized fleet stats line.

    Example:
        >>> format_fleet_stats(1, 12, 0, 1500, 0, True)
        'Cycle 1: pods=12 active | sent=1.5 kB | unacked=0 B | sink=up'
        >>> format_fleet_stats(2, 11, 1, 4500, 100, False, since_last=3000, interval_seconds=30)
        'Cycle 2: pods=11 active, 1 disabled | +3.0 kB this cycle (100 B/s) | sent=4.5 kB | unacked=100 B | sink=down'
    """
    pod_part = f"pods={active} active"
    if disabled:
        pod_part += f", {disabled} disabled"

    parts = [pod_part]

    if since_last is not None:
        rate = since_last / interval_seconds if interval_seconds > 0 else 0
        parts.append(f"+{format_bytes(since_last)} this cycle ({format_bytes(int(rate))}/s)")

    parts.append(f"sent={format_bytes(sent_bytes)}")
    parts.append(f"unacked={format_bytes(unacked_bytes)}")
    parts.append(f"sink={'up' if sink_connected else 'down'}")

    return f"Cycle {cycle_count}: {' | '.join(parts)}"


_BANNER_FIELDS: list[tuple[str, str]] = [
    ("directory", "Directory:    {}"),
    ("sink_url", "Sink:         {}"),
    ("workspace", "Workspace:    {}"),
    ("health_port", "Health:       http://localhost:{}"),
    ("metrics_port", "Metrics:      http://localhost:{}/metrics"),
    ("log_output_mode", "Log Output:   {}"),
]


def log_startup_banner(
    logger: logging.Logger,
    name: str,
    **kwargs: Any,
) -> None:
    """
    Log startup banner with collector configuration.

    Args:
        logger: Logger instance
        name: Process name (e.g., "Fleet Log Collector")
        **kwargs: Optional fields: version, directory, sink_url, workspace,
            health_port, metrics_port, log_output_mode
    """
    separator = "=" * 50

    lines = ["", separator, name]

    version = kwargs.get("version")
    if version:
        lines.append(f"Version: {version}")

    lines.append(separator)

    for field_name, fmt in _BANNER_FIELDS:
        value = kwargs.get(field_name)
        if value:
            lines.append(fmt.format(value))

    lines.append(separator)
    lines.append("")

    logger.info("\n".join(lines))


def detect_log_output_mode() -> str:
    """Describe where logs are going by inspecting the root handlers."""
    handlers = logging.getLogger().handlers
    modes = []
    if any(isinstance(h, logging.FileHandler) for h in handlers):
        modes.append("file")
    if any(type(h) is logging.StreamHandler for h in handlers):
        modes.append("stdout")
    return "+".join(modes) if modes else "none"
