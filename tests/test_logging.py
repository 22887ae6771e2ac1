from __future__ import annotations

import json
import logging

from nse_proxy.config.settings import settings
from nse_proxy.errors import REDACTED, ErrorCode, SessionError, get_error_metrics
from nse_proxy.logging import CREDENTIAL_MARKERS, get_logger, log_exception


def _lines(caplog) -> list[dict]:
    return [json.loads(rec.message) for rec in caplog.records]


def test_embedded_token_names_are_credential_markers() -> None:
    for name in settings.embedded_token_names:
        assert name.lower() in CREDENTIAL_MARKERS
    assert "cookie" in CREDENTIAL_MARKERS


def test_logger_masks_embedded_token_fields(caplog) -> None:
    caplog.set_level(logging.INFO)
    logger = get_logger("nse_proxy.tests", component="session")

    logger.info({"event": "session_established", "nsit": "secret-1", "issued": ["nsit"]})

    (line,) = _lines(caplog)
    assert line["component"] == "session"
    assert line["event"] == "session_established"
    assert line["nsit"] == REDACTED
    assert line["issued"] == ["nsit"]
    assert "timestamp" in line
    assert "secret-1" not in caplog.records[0].message


def test_plain_string_messages_are_wrapped(caplog) -> None:
    caplog.set_level(logging.INFO)

    get_logger("nse_proxy.tests").info("started")

    assert _lines(caplog)[0]["message"] == "started"


def test_log_exception_lifts_grouping_fields_and_counts(caplog) -> None:
    caplog.set_level(logging.WARNING)
    logger = get_logger("nse_proxy.tests", component="batch")
    error = SessionError("Navigation failed", context={"nseappid": "xyz", "status": 403})

    log_exception(
        logger,
        error,
        event="session_attempt_failed",
        symbol="RELIANCE",
        endpoint="quote",
        attempt=2,
        level=logging.WARNING,
    )

    (line,) = _lines(caplog)
    assert caplog.records[0].levelno == logging.WARNING
    assert line["event"] == "session_attempt_failed"
    assert (line["symbol"], line["endpoint"], line["attempt"]) == ("RELIANCE", "quote", 2)
    assert line["error"]["code"] == "session_error"
    assert line["error"]["context"] == {"nseappid": REDACTED, "status": 403}
    assert get_error_metrics() == {ErrorCode.SESSION.value: 1}


def test_log_exception_omits_unset_grouping_fields(caplog) -> None:
    caplog.set_level(logging.ERROR)

    log_exception(get_logger("nse_proxy.tests"), SessionError("down"), event="session_unavailable")

    line = _lines(caplog)[0]
    assert not {"symbol", "endpoint", "attempt"} & set(line)
