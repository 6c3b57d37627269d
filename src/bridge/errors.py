"""Failure taxonomy for the relay.

None of these escape a Session or the dialer; they are raised and handled
locally and end up in the logs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from bridge.candidates import ConnectionCandidate


class BridgeError(Exception):
    default_detail: str = "Bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class DialRejected(BridgeError):
    default_detail = "Agent handshake rejected"

    def __init__(self, status_code: int, detail: str | None = None) -> None:
        super().__init__(detail or f"{self.default_detail} (HTTP {status_code})")
        self.status_code = status_code


class DialUnreachable(BridgeError):
    default_detail = "Agent endpoint unreachable"


class TranslationDropped(BridgeError):
    default_detail = "Message dropped"


class PeerUnresponsive(BridgeError):
    default_detail = "Peer missed a liveness probe"


class PeerClosed(BridgeError):
    default_detail = "Peer closed the connection"

    def __init__(self, code: int | None = None, reason: str = "") -> None:
        label = " ".join(str(part) for part in (code, reason) if part)
        super().__init__(f"{self.default_detail} ({label})" if label else None)
        self.code = code
        self.reason = reason


@dataclass(frozen=True, slots=True)
class DialFailure:
    """One failed candidate attempt."""

    candidate: ConnectionCandidate
    error: DialRejected | DialUnreachable

    @property
    def status_code(self) -> int | None:
        return getattr(self.error, "status_code", None)

    def describe(self) -> str:
        return f"{self.candidate.endpoint} [{self.candidate.auth_mode}]: {self.error.detail}"


class DialError(BridgeError):
    """Every candidate failed."""

    default_detail = "All agent dial attempts failed"

    def __init__(self, failures: list[DialFailure]) -> None:
        super().__init__(f"{self.default_detail} ({len(failures)} attempts)")
        self.failures = list(failures)
