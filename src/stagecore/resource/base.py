"""
Resource client protocol.

The exercise stage talks to the provisioned resource through this small
interface so it can be swapped for a fake in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Where and how to reach the provisioned resource."""
    host: str
    port: int
    user: str
    password: str
    database: str

    def redacted(self) -> str:
        """Connection target without the password, safe for logs."""
        return f"{self.user}@{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True)
class ExecResult:
    """Result of a statement; ``lastrowid`` is the server-assigned id of an insert."""
    lastrowid: Optional[int]
    rowcount: int = -1


class ResourceClient(Protocol):
    """An open connection to the provisioned resource."""

    def ping(self) -> None:
        ...

    def execute(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> ExecResult:
        ...

    def close(self) -> None:
        ...


# Opens a client; raises ResourceConnectionError when the resource is unreachable
ClientFactory = Callable[[ConnectionDescriptor], ResourceClient]
