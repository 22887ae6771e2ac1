"""Catalogue of upstream NSE endpoints the proxy knows how to call."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict
from urllib.parse import quote

from nse_proxy.errors import InputError


class EndpointKind(str, Enum):
    QUOTE = "quote"
    TRADE_INFO = "tradeInfo"
    INDICES = "indices"
    PREOPEN = "preopen"
    MARKET_STATUS = "marketStatus"
    OPTION_CHAIN = "optionChain"
    EQUITY_OPTION_CHAIN = "equityOptionChain"
    CHART = "chart"


@dataclass(frozen=True)
class EndpointSpec:
    """How one endpoint kind maps onto the upstream API.

    ``param`` is the query parameter carrying the symbol; ``None`` means the
    endpoint ignores the symbol (market status). ``landing_path`` is the page
    a browser would be on when the data request fires; it doubles as the
    referer and as the last navigation step of the session sequence.
    """

    kind: EndpointKind
    path: str
    param: str | None
    landing_path: str
    requires_session: bool = False
    extra_params: tuple[tuple[str, str], ...] = ()

    def build_url(self, base_url: str, symbol: str) -> str:
        params: list[tuple[str, str]] = []
        if self.param is not None:
            params.append((self.param, symbol))
        params.extend(self.extra_params)
        url = f"{base_url}{self.path}"
        if params:
            query = "&".join(f"{key}={quote(value, safe='')}" for key, value in params)
            url = f"{url}?{query}"
        return url

    def referer(self, base_url: str) -> str:
        return f"{base_url}{self.landing_path}"


ENDPOINTS: Dict[EndpointKind, EndpointSpec] = {
    EndpointKind.QUOTE: EndpointSpec(
        EndpointKind.QUOTE, "/api/quote-equity", "symbol", "/get-quotes/equity"
    ),
    EndpointKind.TRADE_INFO: EndpointSpec(
        EndpointKind.TRADE_INFO,
        "/api/quote-equity",
        "symbol",
        "/get-quotes/equity",
        extra_params=(("section", "trade_info"),),
    ),
    EndpointKind.INDICES: EndpointSpec(
        EndpointKind.INDICES,
        "/api/equity-stockIndices",
        "index",
        "/market-data/live-equity-market",
    ),
    EndpointKind.PREOPEN: EndpointSpec(
        EndpointKind.PREOPEN,
        "/api/market-data-pre-open",
        "key",
        "/market-data/pre-open-market-cm-and-emerge-market",
    ),
    EndpointKind.MARKET_STATUS: EndpointSpec(
        EndpointKind.MARKET_STATUS, "/api/marketStatus", None, "/"
    ),
    EndpointKind.OPTION_CHAIN: EndpointSpec(
        EndpointKind.OPTION_CHAIN,
        "/api/option-chain-indices",
        "symbol",
        "/option-chain",
        requires_session=True,
    ),
    EndpointKind.EQUITY_OPTION_CHAIN: EndpointSpec(
        EndpointKind.EQUITY_OPTION_CHAIN,
        "/api/option-chain-equities",
        "symbol",
        "/option-chain",
        requires_session=True,
    ),
    EndpointKind.CHART: EndpointSpec(
        EndpointKind.CHART,
        "/api/chart-databyindex",
        "index",
        "/get-quotes/equity",
        requires_session=True,
    ),
}


def valid_endpoint_names() -> list[str]:
    return [kind.value for kind in EndpointKind]


def resolve_endpoint(name: str | EndpointKind | None) -> EndpointSpec:
    """Return the :class:`EndpointSpec` for ``name`` or raise :class:`InputError`.

    ``None`` and blank strings fall back to ``quote``. Matching is exact on
    the wire name but tolerant of surrounding whitespace.
    """

    if isinstance(name, EndpointKind):
        return ENDPOINTS[name]
    normalized = (name or "").strip() or EndpointKind.QUOTE.value
    try:
        kind = EndpointKind(normalized)
    except ValueError:
        raise InputError(
            f"Unknown endpoint '{normalized}'",
            context={"endpoint": normalized},
            hint={"validEndpoints": valid_endpoint_names()},
        ) from None
    return ENDPOINTS[kind]


__all__ = [
    "ENDPOINTS",
    "EndpointKind",
    "EndpointSpec",
    "resolve_endpoint",
    "valid_endpoint_names",
]
