"""Windowed, deadline-bounded batch fetching.

A batch moves through ``idle -> session_pending -> windowing -> done``:

* ``session_pending`` asks the :class:`SessionProvider` for credentials once.
* ``windowing`` fetches at most ``window_size`` symbols at a time, waits for
  the whole window, then pauses ``window_delay`` seconds before the next one.
  The processing deadline is checked once per window boundary; symbols that
  were never dispatched are reported as ``processing_timeout``.
* ``done`` hands every outcome to the compiler.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterable, List, Sequence

import aiohttp

from nse_proxy.batch.compiler import RequestMeta, compile_outcomes
from nse_proxy.config.settings import ProxySettings
from nse_proxy.errors import ErrorCode, InputError, SessionError, record_failure_kind
from nse_proxy.logging import get_logger, log_exception
from nse_proxy.models import (
    BatchResult,
    FetchFailure,
    FetchOutcome,
    FetchRequest,
    SessionState,
)
from nse_proxy.security.validation import USAGE_HINT
from nse_proxy.upstream.endpoints import EndpointKind, EndpointSpec, resolve_endpoint
from nse_proxy.upstream.fetcher import SymbolFetcher
from nse_proxy.upstream.session import SessionContext, SessionProvider

logger = get_logger(__name__, component="batch_orchestrator")

HttpFactory = Callable[[], aiohttp.ClientSession]


class BatchState(str, Enum):
    IDLE = "idle"
    SESSION_PENDING = "session_pending"
    WINDOWING = "windowing"
    DONE = "done"


def dedupe_symbols(symbols: Iterable[str]) -> tuple[str, ...]:
    """Trim, drop blanks and de-duplicate ``symbols`` keeping first-seen order."""

    seen: dict[str, None] = {}
    for raw in symbols:
        if not isinstance(raw, str):
            continue
        symbol = raw.strip()
        if symbol:
            seen.setdefault(symbol, None)
    return tuple(seen)


def partition_windows(symbols: Sequence[str], size: int) -> List[tuple[str, ...]]:
    if size < 1:
        raise ValueError("window size must be at least 1")
    return [tuple(symbols[i : i + size]) for i in range(0, len(symbols), size)]


def _default_http_factory() -> aiohttp.ClientSession:
    # Credentials travel in an explicit Cookie header, so the jar stays empty.
    return aiohttp.ClientSession(cookie_jar=aiohttp.DummyCookieJar())


class BatchRun:
    """State of one :meth:`BatchOrchestrator.run_batch` call."""

    def __init__(
        self,
        orchestrator: "BatchOrchestrator",
        symbols: tuple[str, ...],
        endpoint: EndpointSpec,
    ) -> None:
        self.orchestrator = orchestrator
        self.settings = orchestrator.settings
        self.symbols = symbols
        self.endpoint = endpoint
        self.state = BatchState.IDLE
        self.history: List[BatchState] = [BatchState.IDLE]
        self.outcomes: List[FetchOutcome] = []
        self.session_state = SessionState.ESTABLISHED
        self.session_error: SessionError | None = None
        self.started = orchestrator.clock()
        self.started_at = datetime.now(timezone.utc)

    def _advance(self, state: BatchState) -> None:
        self.state = state
        self.history.append(state)

    def elapsed(self) -> float:
        return self.orchestrator.clock() - self.started

    async def execute(self, http: aiohttp.ClientSession) -> List[FetchOutcome]:
        self._advance(BatchState.SESSION_PENDING)
        session = await self._acquire_session(http)

        if session is None:
            self.outcomes.extend(self._session_failures())
        else:
            self._advance(BatchState.WINDOWING)
            await self._run_windows(http, session)

        self._advance(BatchState.DONE)
        return self.outcomes

    async def _acquire_session(self, http: aiohttp.ClientSession) -> SessionContext | None:
        try:
            return await self.orchestrator.session_provider.acquire(
                http, landing_path=self.endpoint.landing_path
            )
        except SessionError as error:
            if self.endpoint.requires_session:
                self.session_state = SessionState.UNAVAILABLE
                log_exception(
                    logger, error, event="session_unavailable", endpoint=self.endpoint.kind.value
                )
                self.session_error = error
                return None
            self.session_state = SessionState.DEGRADED
            log_exception(
                logger,
                error,
                event="session_degraded",
                endpoint=self.endpoint.kind.value,
                level=logging.WARNING,
            )
            return SessionContext.empty()

    def _session_failures(self) -> List[FetchFailure]:
        error = self.session_error
        message = error.user_message if error is not None else "NSE session unavailable"
        failures = []
        for symbol in self.symbols:
            record_failure_kind(ErrorCode.SESSION)
            failures.append(
                FetchFailure(
                    symbol=symbol,
                    kind=ErrorCode.SESSION,
                    title="Session unavailable",
                    detail=(
                        f"{message}; the '{self.endpoint.kind.value}' endpoint "
                        "cannot be queried without one"
                    ),
                    suggestion="Retry shortly or use an alternative data source",
                )
            )
        return failures

    async def _run_windows(self, http: aiohttp.ClientSession, session: SessionContext) -> None:
        windows = partition_windows(self.symbols, self.settings.window_size)
        for index, window in enumerate(windows):
            elapsed = self.elapsed()
            if elapsed > self.settings.processing_deadline:
                remaining = [symbol for pending in windows[index:] for symbol in pending]
                logger.warning(
                    {
                        "event": "deadline_exceeded",
                        "elapsed": round(elapsed, 3),
                        "deadline": self.settings.processing_deadline,
                        "completed": len(self.outcomes),
                        "abandoned": len(remaining),
                    }
                )
                self.outcomes.extend(self._timeout_failures(remaining, elapsed))
                return

            window_started = self.orchestrator.clock()
            self.outcomes.extend(await self._run_window(http, session, window))
            logger.info(
                {
                    "event": "window_completed",
                    "window": index + 1,
                    "windows": len(windows),
                    "symbols": list(window),
                    "duration": round(self.orchestrator.clock() - window_started, 3),
                }
            )
            is_last = index == len(windows) - 1
            if not is_last and self.settings.window_delay > 0:
                await asyncio.sleep(self.settings.window_delay)

    async def _run_window(
        self,
        http: aiohttp.ClientSession,
        session: SessionContext,
        window: tuple[str, ...],
    ) -> List[FetchOutcome]:
        fetcher = self.orchestrator.fetcher
        results = await asyncio.gather(
            *(
                fetcher.fetch_one(http, FetchRequest(symbol=symbol, endpoint=self.endpoint), session)
                for symbol in window
            ),
            return_exceptions=True,
        )
        outcomes: List[FetchOutcome] = []
        for symbol, result in zip(window, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                record_failure_kind(ErrorCode.UNKNOWN)
                logger.error(
                    {
                        "event": "window_item_crashed",
                        "symbol": symbol,
                        "error": f"{type(result).__name__}: {result}",
                    }
                )
                outcomes.append(
                    FetchFailure(
                        symbol=symbol,
                        kind=ErrorCode.UNKNOWN,
                        title="Window processing failed",
                        detail=str(result) or type(result).__name__,
                    )
                )
            else:
                outcomes.append(result)
        return outcomes

    def _timeout_failures(self, symbols: Sequence[str], elapsed: float) -> List[FetchFailure]:
        failures = []
        for symbol in symbols:
            record_failure_kind(ErrorCode.PROCESSING_TIMEOUT)
            failures.append(
                FetchFailure(
                    symbol=symbol,
                    kind=ErrorCode.PROCESSING_TIMEOUT,
                    title="Processing timeout",
                    detail=(
                        f"Request cancelled after {elapsed:.1f}s to stay within the "
                        f"{self.settings.processing_deadline:g}s processing deadline"
                    ),
                )
            )
        return failures


class BatchOrchestrator:
    """Fetch a set of symbols for one endpoint kind and compile the result."""

    def __init__(
        self,
        settings: ProxySettings,
        *,
        session_provider: SessionProvider | None = None,
        fetcher: SymbolFetcher | None = None,
        http_factory: HttpFactory | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.session_provider = session_provider or SessionProvider.from_settings(settings)
        self.fetcher = fetcher or SymbolFetcher(settings)
        self.http_factory = http_factory or _default_http_factory
        self.clock = clock

    def prepare(
        self, symbols: Iterable[str], endpoint: str | EndpointKind | None
    ) -> tuple[tuple[str, ...], EndpointSpec]:
        """Validate caller input without touching the network."""

        spec = resolve_endpoint(endpoint)
        requested = dedupe_symbols(symbols)
        if not requested:
            raise InputError(
                "Symbols parameter is required",
                hint={"usage": USAGE_HINT},
            )
        return requested, spec

    async def run_batch(
        self,
        symbols: Iterable[str],
        endpoint: str | EndpointKind | None = EndpointKind.QUOTE,
    ) -> BatchResult:
        requested, spec = self.prepare(symbols, endpoint)
        run = BatchRun(self, requested, spec)
        logger.info(
            {
                "event": "batch_started",
                "endpoint": spec.kind.value,
                "symbols": len(requested),
                "window_size": self.settings.window_size,
            }
        )
        async with self.http_factory() as http:
            outcomes = await run.execute(http)

        result = compile_outcomes(
            outcomes,
            RequestMeta(
                requested=requested,
                endpoint=spec.kind.value,
                source=self.settings.source_label,
                elapsed=run.elapsed(),
                session=run.session_state,
                started_at=run.started_at,
            ),
        )
        logger.info(
            {
                "event": "batch_completed",
                "endpoint": spec.kind.value,
                "status": result.status.value,
                "successful": result.meta.succeeded,
                "failed": result.meta.failed,
                "duration": round(result.meta.elapsed, 3),
                "session": run.session_state.value,
            }
        )
        return result


__all__ = [
    "BatchOrchestrator",
    "BatchRun",
    "BatchState",
    "dedupe_symbols",
    "partition_windows",
]
