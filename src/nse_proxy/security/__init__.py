"""Security utilities for the NSE proxy."""

from .validation import (
    SYMBOL_PATTERN,
    USAGE_HINT,
    SanitizationError,
    parse_symbol_list,
    sanitize_endpoint,
    sanitize_symbol,
    sanitize_symbols,
)

__all__ = [
    "SYMBOL_PATTERN",
    "USAGE_HINT",
    "SanitizationError",
    "parse_symbol_list",
    "sanitize_endpoint",
    "sanitize_symbol",
    "sanitize_symbols",
]
