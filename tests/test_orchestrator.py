from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import aiohttp
import pytest

from nse_proxy.batch import orchestrator as orchestrator_module
from nse_proxy.batch.compiler import http_status_for
from nse_proxy.batch.orchestrator import (
    BatchOrchestrator,
    BatchRun,
    BatchState,
    dedupe_symbols,
    partition_windows,
)
from nse_proxy.errors import ErrorCode, InputError, get_error_metrics
from nse_proxy.models import BatchStatus, FetchSuccess, SessionState
from nse_proxy.upstream.endpoints import ENDPOINTS, EndpointKind
from nse_proxy.upstream.fetcher import SymbolFetcher

from upstream_fakes import FakeHTTP, FakeResponse, nse_handler, symbol_of

SYMBOLS = ["RELIANCE", "TCS", "HDFCBANK", "INFY", "ITC", "SBIN", "LT"]


def _quote(url: str, headers: Dict[str, str]) -> FakeResponse:
    return FakeResponse(200, f'{{"symbol": "{symbol_of(url)}"}}')


def _build(settings, handler, **kwargs: Any) -> tuple[BatchOrchestrator, FakeHTTP]:
    http = FakeHTTP(handler)
    return BatchOrchestrator(settings, http_factory=lambda: http, **kwargs), http


def test_dedupe_symbols_trims_and_keeps_first_seen_order() -> None:
    assert dedupe_symbols([" TCS ", "INFY", "TCS", "", "  ", None, "infy"]) == (  # type: ignore[list-item]
        "TCS",
        "INFY",
        "infy",
    )


def test_partition_windows() -> None:
    assert partition_windows(["a", "b", "c", "d", "e"], 2) == [("a", "b"), ("c", "d"), ("e",)]
    assert partition_windows([], 3) == []
    with pytest.raises(ValueError):
        partition_windows(["a"], 0)


@pytest.mark.asyncio
async def test_every_symbol_is_fetched_once_with_bounded_concurrency(proxy_settings) -> None:
    async def slow_quote(url, headers):
        await asyncio.sleep(0.01)
        return _quote(url, headers)

    orchestrator, http = _build(proxy_settings, nse_handler(slow_quote))

    result = await orchestrator.run_batch(SYMBOLS)

    assert result.status is BatchStatus.COMPLETE_SUCCESS
    assert http_status_for(result) == 200
    assert set(result.successes) == set(SYMBOLS)
    assert result.errors == {}
    assert result.successes["TCS"] == {"symbol": "TCS"}
    assert sorted(symbol_of(call.url) for call in http.data_calls) == sorted(SYMBOLS)
    assert http.max_in_flight == proxy_settings.window_size
    assert http.closed


@pytest.mark.asyncio
async def test_session_is_established_once_per_batch(proxy_settings) -> None:
    orchestrator, http = _build(proxy_settings, nse_handler(_quote))

    await orchestrator.run_batch(SYMBOLS)

    assert len(http.navigation_calls) == 3
    assert http.calls.index(http.data_calls[0]) == 3
    for call in http.data_calls:
        assert call.headers["Cookie"] == "nsit=abc; nseappid=xyz"


@pytest.mark.asyncio
async def test_partial_failure_reports_each_symbol_once(proxy_settings) -> None:
    def data(url, headers):
        if symbol_of(url) == "TCS":
            return FakeResponse(401, "", reason="Unauthorized")
        return _quote(url, headers)

    orchestrator, _ = _build(proxy_settings, nse_handler(data))

    result = await orchestrator.run_batch(["RELIANCE", "TCS"])

    assert result.status is BatchStatus.PARTIAL_SUCCESS
    assert http_status_for(result) == 207
    assert list(result.successes) == ["RELIANCE"]
    assert result.errors["TCS"].title == "NSE API Access Denied"
    assert result.meta.session is SessionState.ESTABLISHED


@pytest.mark.asyncio
async def test_duplicates_are_fetched_once(proxy_settings) -> None:
    orchestrator, http = _build(proxy_settings, nse_handler(_quote))

    result = await orchestrator.run_batch(["TCS", " TCS", "INFY", "TCS "])

    assert result.meta.requested == ("TCS", "INFY")
    assert len(http.data_calls) == 2


@pytest.mark.asyncio
async def test_deadline_marks_undispatched_symbols_as_timed_out(proxy_settings) -> None:
    now = {"value": 0.0}

    def data(url, headers):
        now["value"] += 5
        return _quote(url, headers)

    settings = proxy_settings.model_copy(update={"window_size": 2, "processing_deadline": 12.0})
    http = FakeHTTP(nse_handler(data))
    orchestrator = BatchOrchestrator(
        settings, http_factory=lambda: http, clock=lambda: now["value"]
    )

    result = await orchestrator.run_batch(["A", "B", "C", "D", "E", "F"])

    assert set(result.successes) == {"A", "B", "C", "D"}
    assert set(result.errors) == {"E", "F"}
    for failure in result.errors.values():
        assert failure.kind is ErrorCode.PROCESSING_TIMEOUT
    assert result.status is BatchStatus.PARTIAL_SUCCESS
    assert len(http.data_calls) == 4
    assert get_error_metrics()[ErrorCode.PROCESSING_TIMEOUT.value] == 2


@pytest.mark.asyncio
async def test_session_failure_degrades_for_optional_endpoints(proxy_settings) -> None:
    orchestrator, http = _build(proxy_settings, nse_handler(_quote, navigation_status=403))

    result = await orchestrator.run_batch(["RELIANCE", "TCS"])

    assert len(http.navigation_calls) == proxy_settings.session_max_attempts
    assert len(http.data_calls) == 2
    assert all("Cookie" not in call.headers for call in http.data_calls)
    assert result.status is BatchStatus.COMPLETE_SUCCESS
    assert result.meta.session is SessionState.DEGRADED
    assert result.to_payload()["meta"]["session"] == "degraded"


@pytest.mark.asyncio
async def test_session_failure_is_fatal_for_session_only_endpoints(proxy_settings) -> None:
    orchestrator, http = _build(proxy_settings, nse_handler(_quote, navigation_status=403))

    result = await orchestrator.run_batch(["NIFTY", "BANKNIFTY"], "optionChain")

    assert http.data_calls == []
    assert result.status is BatchStatus.TOTAL_FAILURE
    assert http_status_for(result) == 503
    assert result.meta.session is SessionState.UNAVAILABLE
    for failure in result.errors.values():
        assert failure.kind is ErrorCode.SESSION
        assert "optionChain" in failure.detail


@pytest.mark.asyncio
async def test_all_network_failures_yield_total_failure(proxy_settings) -> None:
    def data(url, headers):
        raise asyncio.TimeoutError()

    orchestrator, _ = _build(proxy_settings, nse_handler(data))

    result = await orchestrator.run_batch(["A", "B", "C", "D"])

    assert result.status is BatchStatus.TOTAL_FAILURE
    assert http_status_for(result) == 502
    assert {failure.kind for failure in result.errors.values()} == {ErrorCode.NETWORK}
    assert result.successes == {}


@pytest.mark.asyncio
async def test_empty_input_is_rejected_before_any_request(proxy_settings) -> None:
    factory_calls: List[int] = []

    def factory():
        factory_calls.append(1)
        return FakeHTTP(nse_handler())

    orchestrator = BatchOrchestrator(proxy_settings, http_factory=factory)

    with pytest.raises(InputError) as excinfo:
        await orchestrator.run_batch(["", "  "])

    assert excinfo.value.user_message == "Symbols parameter is required"
    assert "usage" in excinfo.value.hint
    with pytest.raises(InputError):
        await orchestrator.run_batch(["TCS"], "bogus")
    assert factory_calls == []


@pytest.mark.asyncio
async def test_state_history_for_normal_and_fatal_runs(proxy_settings) -> None:
    orchestrator, http = _build(proxy_settings, nse_handler(_quote))
    run = BatchRun(orchestrator, ("TCS",), ENDPOINTS[EndpointKind.QUOTE])

    await run.execute(http)

    assert run.history == [
        BatchState.IDLE,
        BatchState.SESSION_PENDING,
        BatchState.WINDOWING,
        BatchState.DONE,
    ]

    failing, failing_http = _build(proxy_settings, nse_handler(navigation_status=500))
    fatal = BatchRun(failing, ("NIFTY",), ENDPOINTS[EndpointKind.CHART])

    await fatal.execute(failing_http)

    assert fatal.history == [BatchState.IDLE, BatchState.SESSION_PENDING, BatchState.DONE]
    assert fatal.state is BatchState.DONE


class ExplodingFetcher(SymbolFetcher):
    async def fetch_one(self, http, request, session):
        if request.symbol == "BOOM":
            raise RuntimeError("unexpected parser bug")
        return FetchSuccess(symbol=request.symbol, payload={"ok": True})


@pytest.mark.asyncio
async def test_crashing_fetch_is_contained_to_its_symbol(proxy_settings) -> None:
    orchestrator, _ = _build(
        proxy_settings, nse_handler(), fetcher=ExplodingFetcher(proxy_settings)
    )

    result = await orchestrator.run_batch(["TCS", "BOOM", "INFY"])

    assert set(result.successes) == {"TCS", "INFY"}
    failure = result.errors["BOOM"]
    assert failure.kind is ErrorCode.UNKNOWN
    assert failure.title == "Window processing failed"
    assert failure.detail == "unexpected parser bug"


@pytest.mark.asyncio
async def test_window_delay_is_skipped_after_last_window(
    proxy_settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    delays: List[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    settings = proxy_settings.model_copy(update={"window_delay": 0.5})
    orchestrator, _ = _build(settings, nse_handler(_quote))
    monkeypatch.setattr(orchestrator_module.asyncio, "sleep", fake_sleep)

    await orchestrator.run_batch(SYMBOLS)

    # 7 symbols in windows of 3 means 3 windows and 2 pauses.
    assert delays == [0.5, 0.5]


@pytest.mark.asyncio
async def test_default_http_factory_disables_cookie_jar(monkeypatch: pytest.MonkeyPatch) -> None:
    created: Dict[str, Any] = {}

    def fake_client_session(**kwargs: Any) -> FakeHTTP:
        created.update(kwargs)
        return FakeHTTP(nse_handler())

    monkeypatch.setattr(orchestrator_module.aiohttp, "ClientSession", fake_client_session)

    http = orchestrator_module._default_http_factory()

    assert isinstance(http, FakeHTTP)
    assert isinstance(created["cookie_jar"], aiohttp.DummyCookieJar)
