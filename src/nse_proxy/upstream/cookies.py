"""Pure helpers for collecting upstream credentials.

None of these functions raise on unexpected input; anything that cannot be
parsed is skipped and an empty result is returned.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Dict, Iterable, Mapping


def parse_set_cookie(values: Iterable[str]) -> Dict[str, str]:
    """Return ``name -> value`` pairs from raw ``Set-Cookie`` header values.

    Only the leading ``name=value`` pair of each header matters; attributes
    such as ``Path`` or ``Expires`` are dropped. Later headers win when a
    name repeats.
    """

    cookies: Dict[str, str] = {}
    for raw in values:
        if not isinstance(raw, str):
            continue
        pair = raw.split(";", 1)[0]
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            continue
        cookies[name] = value.strip().strip('"')
    return cookies


@lru_cache(maxsize=16)
def _token_pattern(names: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(name) for name in names)
    return re.compile(
        rf"""["']?\b(?P<name>{alternatives})\b["']?\s*[:=]\s*["'](?P<value>[^"'\s]{{1,4096}})["']"""
    )


def extract_embedded_tokens(body: object, names: Iterable[str]) -> Dict[str, str]:
    """Find ``name: "value"`` style tokens for ``names`` inside ``body``.

    Returns an empty dict when ``body`` is not text, ``names`` is empty or
    nothing matches. The last occurrence of a name wins.
    """

    if not isinstance(body, str) or not body:
        return {}
    wanted = tuple(sorted({name for name in names if name}))
    if not wanted:
        return {}
    tokens: Dict[str, str] = {}
    for match in _token_pattern(wanted).finditer(body):
        tokens[match.group("name")] = match.group("value")
    return tokens


def format_cookie_header(credentials: Mapping[str, str]) -> str:
    return "; ".join(f"{name}={value}" for name, value in credentials.items())


__all__ = ["extract_embedded_tokens", "format_cookie_header", "parse_set_cookie"]
