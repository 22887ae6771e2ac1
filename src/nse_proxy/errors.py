"""Error taxonomy for the NSE proxy.

:class:`ErrorCode` is shared by two families: request-level errors raised as
:class:`ProxyError` subclasses (bad input, configuration, no session) and the
per-symbol failure kinds that only ever appear inside a batch result. Both are
tallied by :data:`failure_counters`, which ``/healthz`` reports.
"""

from __future__ import annotations

import threading
from collections import Counter
from enum import Enum
from typing import Any, Iterable, Mapping, Type


class ErrorCode(str, Enum):
    SESSION = "session_error"
    HTTP_STATUS = "http_status"
    NETWORK = "network_error"
    MALFORMED_RESPONSE = "malformed_response"
    PROCESSING_TIMEOUT = "processing_timeout"
    INPUT = "input"
    CONFIG = "config"
    UNKNOWN = "unknown"


# Key fragments whose values are masked; logging adds the configured token names.
SENSITIVE_KEYS = frozenset({"cookie", "token", "secret", "credential", "authorization", "password"})
REDACTED = "***REDACTED***"


def _exception_fields(err: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {"type": type(err).__name__, "message": str(err)}
    errno = getattr(err, "errno", None)
    if errno is not None:
        fields["errno"] = errno
    # aiohttp connector errors keep the socket error here.
    os_error = getattr(err, "os_error", None)
    if isinstance(os_error, BaseException):
        fields["os_error"] = _exception_fields(os_error)
    return fields


def _next_link(err: BaseException) -> tuple[str, BaseException | None]:
    if err.__cause__ is not None:
        return "cause", err.__cause__
    if err.__context__ is not None and not err.__suppress_context__:
        return "context", err.__context__
    return "", None


def describe_exception(exc: BaseException, *, max_depth: int = 3) -> dict[str, Any]:
    """Describe ``exc`` and up to ``max_depth`` links of its cause chain.

    Each link is nested under ``cause`` (explicit chaining) or ``context``
    (implicit chaining). A link seen twice is flagged with ``cycle``.
    """

    root: dict[str, Any] = {}
    node, current = root, exc
    visited: set[int] = set()
    for depth in range(max_depth + 1):
        node.update(_exception_fields(current))
        if id(current) in visited:
            node["cycle"] = True
            break
        visited.add(id(current))
        link, following = _next_link(current)
        if following is None or depth == max_depth:
            break
        node[link] = {}
        node, current = node[link], following
    return root


def _jsonable(value: Any, markers: tuple[str, ...]) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Mapping):
        return sanitize_context(value, sensitive=markers)
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item, markers) for item in value]
    return repr(value)


def sanitize_context(
    context: Mapping[str, Any] | None,
    *,
    sensitive: Iterable[str] = SENSITIVE_KEYS,
) -> dict[str, Any]:
    """Copy ``context`` into JSON-ready values, masking any key containing a ``sensitive`` fragment."""

    markers = tuple(marker.lower() for marker in sensitive)
    cleaned: dict[str, Any] = {}
    for key, value in (context or {}).items():
        name = str(key)
        if any(marker in name.lower() for marker in markers):
            cleaned[name] = REDACTED
        else:
            cleaned[name] = _jsonable(value, markers)
    return cleaned


class ProxyError(Exception):
    """Request-level failure with a stable code and a message safe to show callers."""

    default_code = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | str | None = None,
        user_message: str | None = None,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = ErrorCode(code or self.default_code)
        self.user_message = user_message or message
        self.context: dict[str, Any] = dict(context or {})
        if cause is not None:
            self.__cause__ = cause

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__

    def add_context(self, **fields: Any) -> "ProxyError":
        self.context.update({key: value for key, value in fields.items() if value is not None})
        return self

    def to_dict(self, *, sensitive: Iterable[str] = SENSITIVE_KEYS) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": type(self).__name__,
            "code": self.code.value,
            "message": self.user_message,
        }
        if self.context:
            payload["context"] = sanitize_context(self.context, sensitive=sensitive)
        if self.__cause__ is not None:
            payload["cause"] = describe_exception(self.__cause__)
        return payload


class SessionError(ProxyError):
    """The upstream session could not be established within the retry budget."""

    default_code = ErrorCode.SESSION


class InputError(ProxyError):
    """Bad caller input, rejected before any upstream request.

    ``hint`` holds extra keys merged into the 400 response body (usage
    examples, the list of valid endpoints).
    """

    default_code = ErrorCode.INPUT

    def __init__(self, message: str, *, hint: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.hint = dict(hint or {})


class ConfigurationError(ProxyError):
    default_code = ErrorCode.CONFIG


def wrap_error(
    exc: BaseException,
    error_cls: Type[ProxyError] = ProxyError,
    *,
    message: str,
    context: Mapping[str, Any] | None = None,
    user_message: str | None = None,
) -> ProxyError:
    """Return ``exc`` as a :class:`ProxyError`, enriching it in place when it already is one."""

    if not isinstance(exc, ProxyError):
        return error_cls(message, context=context, user_message=user_message, cause=exc)
    exc.add_context(**dict(context or {}))
    if user_message:
        exc.user_message = user_message
    return exc


class FailureCounters:
    """Thread-safe tally of failures keyed by :class:`ErrorCode` value."""

    def __init__(self) -> None:
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def add(self, code: ErrorCode | str) -> None:
        with self._lock:
            self._counts[ErrorCode(code).value] += 1

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def clear(self) -> None:
        with self._lock:
            self._counts.clear()


failure_counters = FailureCounters()


def record_failure_kind(code: ErrorCode | str) -> None:
    failure_counters.add(code)


def get_error_metrics() -> dict[str, int]:
    return failure_counters.snapshot()


def reset_error_metrics() -> None:
    failure_counters.clear()


__all__ = [
    "REDACTED",
    "SENSITIVE_KEYS",
    "ConfigurationError",
    "ErrorCode",
    "FailureCounters",
    "InputError",
    "ProxyError",
    "SessionError",
    "describe_exception",
    "failure_counters",
    "get_error_metrics",
    "record_failure_kind",
    "reset_error_metrics",
    "sanitize_context",
    "wrap_error",
]
