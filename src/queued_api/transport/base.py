"""Transport protocol: the HTTP collaborator the client dispatches to."""

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

SUPPORTED_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"})


@dataclass
class TransportResponse:
    """Response from a transport call with status and decoded payload."""

    status_code: int
    data: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    url: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@runtime_checkable
class Transport(Protocol):
    """
    Protocol for HTTP transports.

    Implementations return a TransportResponse for 2xx replies and raise
    TransportError (with status_code when the server answered) otherwise.
    """

    async def request(
        self,
        method: str,
        url: str,
        data: Any = None,
        **options: Any,
    ) -> TransportResponse: ...

    async def close(self) -> None: ...


__all__ = [
    "SUPPORTED_METHODS",
    "Transport",
    "TransportResponse",
]
