"""Input validation helpers for the proxy's HTTP boundary."""

from __future__ import annotations

import re
from typing import Any, Iterable, List

from nse_proxy.errors import InputError
from nse_proxy.upstream.endpoints import EndpointSpec, resolve_endpoint

SYMBOL_PATTERN = re.compile(r"^[A-Za-z0-9&.\-_ ]{1,40}$")

USAGE_HINT = {
    "single": "/api/nse-proxy?symbol=RELIANCE&endpoint=quote",
    "batch_get": "/api/nse-proxy?symbols=RELIANCE,TCS,HDFCBANK&endpoint=quote",
    "batch_post": (
        'POST /api/nse-proxy with body: {"symbols": ["RELIANCE", "TCS"], "endpoint": "quote"}'
    ),
}


class SanitizationError(InputError):
    """Raised when user supplied data fails validation."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        hint: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            context={"field": field} if field else None,
            hint=hint,
        )


def parse_symbol_list(raw: str | None) -> List[str]:
    """Split a comma-separated parameter, trimming and dropping empty entries."""

    if not raw:
        return []
    return [part.strip() for part in raw.split(",") if part.strip()]


def sanitize_symbol(symbol: Any) -> str:
    if not isinstance(symbol, str):
        raise SanitizationError("Symbols must be strings.", field="symbols")
    normalized = symbol.strip()
    if not normalized or not SYMBOL_PATTERN.fullmatch(normalized):
        raise SanitizationError("Symbol contains invalid characters.", field="symbols")
    return normalized


def sanitize_symbols(values: Iterable[Any], *, max_symbols: int | None = None) -> List[str]:
    """Validate ``values`` and return them de-duplicated in first-seen order.

    Blank entries are dropped before validation. An empty result is an error
    carrying the usage hint.
    """

    symbols: List[str] = []
    seen: set[str] = set()
    for value in values:
        if isinstance(value, str) and not value.strip():
            continue
        symbol = sanitize_symbol(value)
        if symbol not in seen:
            seen.add(symbol)
            symbols.append(symbol)
    if not symbols:
        raise SanitizationError(
            "Symbols parameter is required",
            field="symbols",
            hint={"usage": USAGE_HINT},
        )
    if max_symbols is not None and len(symbols) > max_symbols:
        raise SanitizationError(
            f"Too many symbols supplied (maximum {max_symbols}).",
            field="symbols",
        )
    return symbols


def sanitize_endpoint(name: str | None) -> EndpointSpec:
    try:
        return resolve_endpoint(name)
    except InputError as exc:
        raise SanitizationError(str(exc), field="endpoint", hint=exc.hint) from None


__all__ = [
    "SYMBOL_PATTERN",
    "SanitizationError",
    "USAGE_HINT",
    "parse_symbol_list",
    "sanitize_endpoint",
    "sanitize_symbol",
    "sanitize_symbols",
]
