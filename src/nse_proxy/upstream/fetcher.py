"""Single-symbol fetches against the NSE JSON API."""

from __future__ import annotations

import asyncio
import json
import logging

import aiohttp

from nse_proxy.config.settings import ProxySettings
from nse_proxy.errors import ErrorCode, record_failure_kind
from nse_proxy.logging import get_logger
from nse_proxy.models import FetchFailure, FetchOutcome, FetchRequest, FetchSuccess
from nse_proxy.upstream.headers import RequestPhase, render_headers
from nse_proxy.upstream.session import SessionContext

logger = get_logger(__name__, component="symbol_fetcher")

ACCESS_DENIED_TITLE = "NSE API Access Denied"
ACCESS_DENIED_DETAIL = (
    "NSE is blocking automated access. Consider using demo data or alternative data sources."
)
ACCESS_DENIED_SUGGESTION = (
    "Try the demo data button or use alternative financial data APIs like "
    "Alpha Vantage or Yahoo Finance"
)
_PREVIEW_CHARS = 200


class SymbolFetcher:
    """Issue one upstream data request per symbol and classify the result.

    :meth:`fetch_one` never raises for upstream problems; every failure is
    folded into a :class:`~nse_proxy.models.FetchFailure`. Retrying is left to
    the caller.
    """

    def __init__(self, settings: ProxySettings) -> None:
        self.settings = settings
        self._timeout = aiohttp.ClientTimeout(total=settings.item_timeout)

    def build_headers(self, request: FetchRequest, session: SessionContext) -> dict[str, str]:
        return render_headers(
            RequestPhase.DATA,
            user_agent=self.settings.user_agent,
            origin=self.settings.base_url,
            referer=request.endpoint.referer(self.settings.base_url),
            cookie=session.cookie_header(),
        )

    async def fetch_one(
        self,
        http: aiohttp.ClientSession,
        request: FetchRequest,
        session: SessionContext,
    ) -> FetchOutcome:
        symbol = request.symbol
        url = request.endpoint.build_url(self.settings.base_url, symbol)
        headers = self.build_headers(request, session)
        try:
            async with http.get(url, headers=headers, timeout=self._timeout) as resp:
                status = resp.status
                reason = resp.reason or ""
                body = await resp.text(errors="replace")
        except asyncio.TimeoutError:
            return self._failure(
                symbol,
                ErrorCode.NETWORK,
                "Network error",
                detail=f"Request timeout after {self.settings.item_timeout:g}s",
            )
        except (aiohttp.ClientError, OSError) as exc:
            return self._failure(
                symbol,
                ErrorCode.NETWORK,
                "Network error",
                detail=str(exc) or type(exc).__name__,
            )

        if not 200 <= status < 300:
            if status == 401:
                return self._failure(
                    symbol,
                    ErrorCode.HTTP_STATUS,
                    ACCESS_DENIED_TITLE,
                    detail=ACCESS_DENIED_DETAIL,
                    status=status,
                    suggestion=ACCESS_DENIED_SUGGESTION,
                )
            return self._failure(
                symbol,
                ErrorCode.HTTP_STATUS,
                f"HTTP {status}: {reason}".rstrip(": "),
                detail=body[:_PREVIEW_CHARS] or None,
                status=status,
            )

        try:
            payload = json.loads(body)
        except ValueError:
            return self._failure(
                symbol,
                ErrorCode.MALFORMED_RESPONSE,
                "Malformed upstream response",
                detail=body[:_PREVIEW_CHARS] or "Empty response body",
                status=status,
            )
        logger.debug({"event": "fetch_succeeded", "symbol": symbol, "status": status})
        return FetchSuccess(symbol=symbol, payload=payload)

    def _failure(
        self,
        symbol: str,
        kind: ErrorCode,
        title: str,
        *,
        detail: str | None = None,
        status: int | None = None,
        suggestion: str | None = None,
    ) -> FetchFailure:
        record_failure_kind(kind)
        logger.log(
            logging.WARNING,
            {
                "event": "fetch_failed",
                "symbol": symbol,
                "kind": kind.value,
                "status": status,
                "detail": detail,
            },
        )
        return FetchFailure(
            symbol=symbol,
            kind=kind,
            title=title,
            detail=detail,
            status=status,
            suggestion=suggestion,
        )


__all__ = [
    "ACCESS_DENIED_DETAIL",
    "ACCESS_DENIED_SUGGESTION",
    "ACCESS_DENIED_TITLE",
    "SymbolFetcher",
]
