"""Upstream session acquisition.

NSE only answers its JSON API for clients that look like a browser which has
already visited the site: the landing pages hand out a rotating set of
cookies (``nsit``, ``nseappid``, Akamai ``bm_*`` cookies, ...) that every data
request must present. :class:`SessionEstablisher` walks those pages in order
and collects the credentials into an immutable :class:`SessionContext`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Callable, Dict, Mapping

import aiohttp

from nse_proxy.config.settings import ProxySettings, SessionPolicy
from nse_proxy.errors import SessionError, wrap_error
from nse_proxy.logging import get_logger, log_exception
from nse_proxy.upstream.cookies import (
    extract_embedded_tokens,
    format_cookie_header,
    parse_set_cookie,
)
from nse_proxy.upstream.headers import RequestPhase, render_headers

logger = get_logger(__name__, component="session_establisher")


@dataclass(frozen=True)
class SessionContext:
    """Read-only credential bundle shared by every fetch of one batch."""

    credentials: Mapping[str, str] = field(default_factory=dict)
    established_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    established_monotonic: float = field(default_factory=time.monotonic)
    attempts: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "credentials", MappingProxyType(dict(self.credentials)))

    @classmethod
    def empty(cls) -> "SessionContext":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.credentials

    def cookie_header(self) -> str:
        return format_cookie_header(self.credentials)

    def age(self, now: float | None = None) -> float:
        return (time.monotonic() if now is None else now) - self.established_monotonic


class SessionEstablisher:
    """Replay the browser navigation sequence and collect credentials."""

    def __init__(self, settings: ProxySettings) -> None:
        self.settings = settings
        self._timeout = aiohttp.ClientTimeout(total=settings.navigation_timeout)

    def navigation_urls(self, landing_path: str | None = None) -> list[str]:
        paths = list(self.settings.navigation_paths)
        if landing_path and landing_path not in paths:
            paths.append(landing_path)
        return [f"{self.settings.base_url}{path}" for path in paths]

    async def establish(
        self,
        http: aiohttp.ClientSession,
        *,
        landing_path: str | None = None,
    ) -> SessionContext:
        """Return a fresh :class:`SessionContext` or raise :class:`SessionError`.

        The whole navigation sequence is retried up to
        ``session_max_attempts`` times with a fixed delay in between. A
        failing step only aborts the current attempt.
        """

        max_attempts = self.settings.session_max_attempts
        urls = self.navigation_urls(landing_path)
        last_error: BaseException | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                credentials = await self._navigate(http, urls)
            except Exception as exc:
                last_error = exc
                error = wrap_error(
                    exc,
                    SessionError,
                    message="Session navigation attempt failed",
                    context={"attempt": attempt, "max_attempts": max_attempts},
                )
                log_exception(
                    logger,
                    error,
                    event="session_attempt_failed",
                    attempt=attempt,
                    level=logging.WARNING,
                )
                if attempt < max_attempts and self.settings.session_retry_delay > 0:
                    await asyncio.sleep(self.settings.session_retry_delay)
                continue
            logger.info(
                {
                    "event": "session_established",
                    "attempt": attempt,
                    "issued": sorted(credentials),
                }
            )
            return SessionContext(credentials=credentials, attempts=attempt)

        raise SessionError(
            f"Could not establish upstream session after {max_attempts} attempts",
            user_message="NSE session could not be established",
            context={"attempts": max_attempts, "landing_path": landing_path},
            cause=last_error,
        )

    async def _navigate(self, http: aiohttp.ClientSession, urls: list[str]) -> Dict[str, str]:
        credentials: Dict[str, str] = {}
        referer: str | None = None
        for url in urls:
            headers = render_headers(
                RequestPhase.NAVIGATION,
                user_agent=self.settings.user_agent,
                origin=self.settings.base_url,
                referer=referer,
                cookie=format_cookie_header(credentials),
            )
            async with http.get(url, headers=headers, timeout=self._timeout) as resp:
                for previous in getattr(resp, "history", ()) or ():
                    credentials.update(parse_set_cookie(previous.headers.getall("Set-Cookie", [])))
                credentials.update(parse_set_cookie(resp.headers.getall("Set-Cookie", [])))
                if not 200 <= resp.status < 300:
                    raise SessionError(
                        f"Navigation to {url} returned HTTP {resp.status}",
                        context={"url": url, "status": resp.status},
                    )
                body = await resp.text(errors="replace")
            credentials.update(
                extract_embedded_tokens(body, self.settings.embedded_token_names)
            )
            referer = url

        if self.settings.session_require_credentials and not credentials:
            raise SessionError(
                "Navigation completed without any credentials being issued",
                context={"steps": len(urls)},
            )
        return credentials


class SessionProvider:
    """Hand out sessions according to the configured :class:`SessionPolicy`.

    ``per_batch`` establishes a new session for every call. ``reuse`` keeps
    the last successful context per landing page for ``ttl`` seconds.
    Failures are never cached.
    """

    def __init__(
        self,
        establisher: SessionEstablisher,
        *,
        policy: SessionPolicy = SessionPolicy.PER_BATCH,
        ttl: float = 240.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.establisher = establisher
        self.policy = SessionPolicy(policy)
        self.ttl = ttl
        self._clock = clock
        self._cached: Dict[str | None, SessionContext] = {}
        self._locks: Dict[str | None, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: ProxySettings) -> "SessionProvider":
        return cls(
            SessionEstablisher(settings),
            policy=settings.session_policy,
            ttl=settings.session_ttl,
        )

    def _fresh(self, landing_path: str | None) -> SessionContext | None:
        context = self._cached.get(landing_path)
        if context is None:
            return None
        if context.age(self._clock()) >= self.ttl:
            self._cached.pop(landing_path, None)
            return None
        return context

    async def acquire(
        self,
        http: aiohttp.ClientSession,
        *,
        landing_path: str | None = None,
    ) -> SessionContext:
        if self.policy is SessionPolicy.PER_BATCH:
            return await self.establisher.establish(http, landing_path=landing_path)

        cached = self._fresh(landing_path)
        if cached is not None:
            return cached
        # At most one navigation walk in flight per landing page.
        async with self._locks.setdefault(landing_path, asyncio.Lock()):
            cached = self._fresh(landing_path)
            if cached is not None:
                return cached
            context = await self.establisher.establish(http, landing_path=landing_path)
            # Stamp with the provider clock so TTL checks stay consistent.
            context = SessionContext(
                credentials=context.credentials,
                established_at=context.established_at,
                established_monotonic=self._clock(),
                attempts=context.attempts,
            )
            self._cached[landing_path] = context
            return context

    def invalidate(self) -> None:
        self._cached.clear()


__all__ = ["SessionContext", "SessionEstablisher", "SessionProvider"]
