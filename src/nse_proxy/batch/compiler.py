"""Reduce per-symbol outcomes into a single batch result."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

from nse_proxy.errors import ErrorCode
from nse_proxy.models import (
    BatchMeta,
    BatchResult,
    BatchStatus,
    FetchFailure,
    FetchOutcome,
    SessionState,
)


@dataclass(frozen=True)
class RequestMeta:
    """What the caller asked for and how the run went, minus the outcomes."""

    requested: tuple[str, ...]
    endpoint: str
    source: str
    elapsed: float
    session: SessionState = SessionState.ESTABLISHED
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def select_status(succeeded: int, failed: int) -> BatchStatus:
    """Classify a batch from its counts alone.

    An empty batch counts as a complete success; callers reject empty
    requests long before this point.
    """

    if failed == 0:
        return BatchStatus.COMPLETE_SUCCESS
    if succeeded == 0:
        return BatchStatus.TOTAL_FAILURE
    return BatchStatus.PARTIAL_SUCCESS


def compile_outcomes(outcomes: Iterable[FetchOutcome], request: RequestMeta) -> BatchResult:
    """Re-key ``outcomes`` by symbol and build the :class:`BatchResult`.

    Only requested symbols are kept, the first outcome per symbol wins and a
    requested symbol without any outcome is reported as an ``unknown``
    failure, so the success and error maps always partition the request.
    """

    requested = set(request.requested)
    successes: Dict[str, Any] = {}
    errors: Dict[str, FetchFailure] = {}
    for outcome in outcomes:
        symbol = outcome.symbol
        if symbol not in requested or symbol in successes or symbol in errors:
            continue
        if isinstance(outcome, FetchFailure):
            errors[symbol] = outcome
        else:
            successes[symbol] = outcome.payload

    for symbol in request.requested:
        if symbol not in successes and symbol not in errors:
            errors[symbol] = FetchFailure(
                symbol=symbol,
                kind=ErrorCode.UNKNOWN,
                title="No result recorded",
                detail="The symbol was requested but no outcome was produced",
            )

    meta = BatchMeta(
        requested=request.requested,
        succeeded=len(successes),
        failed=len(errors),
        elapsed=request.elapsed,
        source=request.source,
        endpoint=request.endpoint,
        status=select_status(len(successes), len(errors)),
        session=request.session,
        started_at=request.started_at,
    )
    return BatchResult(meta=meta, successes=successes, errors=errors)


_STATUS_CODES = {
    BatchStatus.COMPLETE_SUCCESS: 200,
    BatchStatus.PARTIAL_SUCCESS: 207,
    BatchStatus.TOTAL_FAILURE: 502,
}


def http_status_for(result: BatchResult) -> int:
    """Map a batch result onto the HTTP status returned to the caller.

    A total failure caused by an unavailable upstream session is a 503; any
    other total failure is a 502.
    """

    if (
        result.status is BatchStatus.TOTAL_FAILURE
        and result.meta.session is SessionState.UNAVAILABLE
    ):
        return 503
    return _STATUS_CODES[result.status]


__all__ = ["RequestMeta", "compile_outcomes", "http_status_for", "select_status"]
