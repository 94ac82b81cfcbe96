"""Context variables for structured logging."""

from contextvars import ContextVar

_stage_name: ContextVar[str] = ContextVar("stage_name", default="")
_service: ContextVar[str] = ContextVar("service", default="")
_target_url: ContextVar[str] = ContextVar("target_url", default="")


def set_log_context(
    stage: str | None = None,
    service: str | None = None,
    target_url: str | None = None,
) -> None:
    """
    Set context fields injected into every log record of the current task.

    Each asyncio task runs with its own copy of the context, so a Pod that
    sets its endpoint here does not leak it into sibling Pods.
    """
    if stage is not None:
        _stage_name.set(stage)
    if service is not None:
        _service.set(service)
    if target_url is not None:
        _target_url.set(target_url)


def get_log_context() -> dict[str, str]:
    return {
        "stage": _stage_name.get(),
        "service": _service.get(),
        "target_url": _target_url.get(),
    }
