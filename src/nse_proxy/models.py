"""Value objects passed between the fetcher, orchestrator and compiler."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Union

from nse_proxy.errors import ErrorCode

if TYPE_CHECKING:
    from nse_proxy.upstream.endpoints import EndpointSpec


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso_timestamp(moment: datetime | None = None) -> str:
    """Render ``moment`` (default: now) as UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""

    moment = moment or _utcnow()
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class FetchRequest:
    symbol: str
    endpoint: EndpointSpec


@dataclass(frozen=True)
class FetchSuccess:
    symbol: str
    payload: Any
    fetched_at: datetime = field(default_factory=_utcnow)

    ok = True


@dataclass(frozen=True)
class FetchFailure:
    """A per-symbol failure.

    ``title`` is the short label shown to callers (``error`` on the wire),
    ``detail`` the longer explanation and ``status`` the upstream HTTP code
    when there was one.
    """

    symbol: str
    kind: ErrorCode
    title: str
    detail: str | None = None
    status: int | None = None
    suggestion: str | None = None
    fetched_at: datetime = field(default_factory=_utcnow)

    ok = False

    def to_payload(self, *, with_timestamp: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.title, "kind": self.kind.value}
        if self.status is not None:
            payload["status"] = self.status
        if self.detail:
            payload["details"] = self.detail
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if with_timestamp:
            payload["timestamp"] = iso_timestamp(self.fetched_at)
        return payload


FetchOutcome = Union[FetchSuccess, FetchFailure]


class BatchStatus(str, Enum):
    COMPLETE_SUCCESS = "complete_success"
    PARTIAL_SUCCESS = "partial_success"
    TOTAL_FAILURE = "total_failure"


class SessionState(str, Enum):
    ESTABLISHED = "established"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class BatchMeta:
    requested: tuple[str, ...]
    succeeded: int
    failed: int
    elapsed: float
    source: str
    endpoint: str
    status: BatchStatus
    session: SessionState
    started_at: datetime = field(default_factory=_utcnow)

    def to_payload(self) -> Dict[str, Any]:
        elapsed_ms = int(round(self.elapsed * 1000))
        if self.failed == 0:
            note = "All requests successful"
        elif self.session is SessionState.UNAVAILABLE:
            note = "NSE session could not be established; no data requests were made"
        else:
            note = "Some requests failed - NSE may be blocking automated access"
        return {
            "totalSymbols": len(self.requested),
            "successful": self.succeeded,
            "failed": self.failed,
            "duration": f"{elapsed_ms}ms",
            "durationMs": elapsed_ms,
            "timestamp": iso_timestamp(self.started_at),
            "source": self.source,
            "endpoint": self.endpoint,
            "status": self.status.value,
            "session": self.session.value,
            "note": note,
        }


@dataclass(frozen=True)
class BatchResult:
    meta: BatchMeta
    successes: Mapping[str, Any]
    errors: Mapping[str, FetchFailure]

    @property
    def status(self) -> BatchStatus:
        return self.meta.status

    def to_payload(self) -> Dict[str, Any]:
        return {
            "meta": self.meta.to_payload(),
            "data": dict(self.successes),
            "errors": {symbol: failure.to_payload() for symbol, failure in self.errors.items()},
        }

    def content_payload(self) -> Dict[str, Any]:
        """The payload minus timing fields, so identical upstream answers compare equal."""

        return {
            "endpoint": self.meta.endpoint,
            "data": dict(self.successes),
            "errors": {
                symbol: failure.to_payload(with_timestamp=False)
                for symbol, failure in self.errors.items()
            },
        }


__all__ = [
    "BatchMeta",
    "BatchResult",
    "BatchStatus",
    "FetchFailure",
    "FetchOutcome",
    "FetchRequest",
    "FetchSuccess",
    "SessionState",
    "iso_timestamp",
]
