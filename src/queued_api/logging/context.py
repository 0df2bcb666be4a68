"""Context variables for structured logging."""

from contextvars import ContextVar

_client: ContextVar[str] = ContextVar("client", default="")
_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def set_log_context(
    client: str | None = None,
    trace_id: str | None = None,
) -> None:
    if client is not None:
        _client.set(client)
    if trace_id is not None:
        _trace_id.set(trace_id)


def get_log_context() -> dict[str, str]:
    return {
        "client": _client.get(),
        "trace_id": _trace_id.get(),
    }


def clear_log_context() -> None:
    _client.set("")
    _trace_id.set("")
