"""One JSON object per log line.

Loggers are bound to a ``component`` at creation. Messages are mappings with
an ``event`` key; the fields the proxy groups failures by (``symbol``,
``endpoint``, ``attempt``) stay at the top level. Any key naming a session
credential is masked, including the configured ``embedded_token_names``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from nse_proxy.config.settings import settings
from nse_proxy.errors import SENSITIVE_KEYS, ProxyError, record_failure_kind, sanitize_context
from nse_proxy.models import iso_timestamp

CREDENTIAL_MARKERS = SENSITIVE_KEYS | {name.lower() for name in settings.embedded_token_names}


class JsonEventAdapter(logging.LoggerAdapter):
    """Serialise mapping messages, merged with the bound fields, as JSON."""

    def process(self, msg: Any, kwargs: Any):  # type: ignore[override]
        event = dict(msg) if isinstance(msg, Mapping) else {"message": str(msg)}
        line = {**(self.extra or {}), **sanitize_context(event, sensitive=CREDENTIAL_MARKERS)}
        line.setdefault("logger", self.logger.name)
        line.setdefault("timestamp", iso_timestamp())
        kwargs.setdefault("extra", {})["structured"] = line
        return json.dumps(line, default=repr), kwargs


def get_logger(name: str, **bound: Any) -> JsonEventAdapter:
    base = logging.getLogger(name)
    base.setLevel(logging.INFO)
    return JsonEventAdapter(base, sanitize_context(bound, sensitive=CREDENTIAL_MARKERS))


def log_exception(
    logger: logging.Logger | logging.LoggerAdapter,
    error: ProxyError,
    *,
    event: str,
    symbol: str | None = None,
    endpoint: str | None = None,
    attempt: int | None = None,
    level: int = logging.ERROR,
) -> None:
    """Log ``error`` as ``event`` and count it under its :class:`ErrorCode`."""

    line: dict[str, Any] = {"event": event}
    for key, value in (("symbol", symbol), ("endpoint", endpoint), ("attempt", attempt)):
        if value is not None:
            line[key] = value
    line["error"] = error.to_dict(sensitive=CREDENTIAL_MARKERS)
    record_failure_kind(error.code)
    logger.log(level, line)


__all__ = ["CREDENTIAL_MARKERS", "JsonEventAdapter", "get_logger", "log_exception"]
