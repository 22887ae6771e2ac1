"""Browser-like header templates for upstream requests.

Templates are keyed by :class:`RequestPhase`. ``{user_agent}`` and
``{origin}`` placeholders are substituted when headers are rendered, and the
per-request ``Referer`` and ``Cookie`` values are layered on top.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Mapping


class RequestPhase(str, Enum):
    NAVIGATION = "navigation"
    DATA = "data"


_CLIENT_HINTS = {
    "Sec-Ch-Ua": '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"',
    "Sec-Ch-Ua-Mobile": "?0",
    "Sec-Ch-Ua-Platform": '"Windows"',
}

HEADER_TEMPLATES: Mapping[RequestPhase, Mapping[str, str]] = {
    RequestPhase.NAVIGATION: {
        "User-Agent": "{user_agent}",
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "same-origin",
        "Sec-Fetch-User": "?1",
        **_CLIENT_HINTS,
    },
    RequestPhase.DATA: {
        "User-Agent": "{user_agent}",
        "Accept": "application/json, text/plain, */*",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
        "Origin": "{origin}",
        "X-Requested-With": "XMLHttpRequest",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
        "Connection": "keep-alive",
        "Sec-Fetch-Dest": "empty",
        "Sec-Fetch-Mode": "cors",
        "Sec-Fetch-Site": "same-origin",
        **_CLIENT_HINTS,
    },
}


def render_headers(
    phase: RequestPhase,
    *,
    user_agent: str,
    origin: str,
    referer: str | None = None,
    cookie: str | None = None,
) -> Dict[str, str]:
    """Return a fresh header dict for ``phase``.

    ``Referer`` and ``Cookie`` are only set when given and non-empty, so the
    very first navigation request looks like a typed-in URL.
    """

    values = {"user_agent": user_agent, "origin": origin}
    headers = {name: value.format(**values) for name, value in HEADER_TEMPLATES[phase].items()}
    if referer:
        headers["Referer"] = referer
        if phase is RequestPhase.NAVIGATION:
            headers["Sec-Fetch-Site"] = "same-origin"
    elif phase is RequestPhase.NAVIGATION:
        headers["Sec-Fetch-Site"] = "none"
    if cookie:
        headers["Cookie"] = cookie
    return headers


__all__ = ["HEADER_TEMPLATES", "RequestPhase", "render_headers"]
