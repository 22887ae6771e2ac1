import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))


@pytest.fixture(scope="session", autouse=True)
def _disable_rate_limit() -> None:
    from nse_proxy.app import api

    api.limiter.enabled = False


@pytest.fixture(autouse=True)
def _reset_error_metrics() -> None:
    from nse_proxy.errors import reset_error_metrics

    reset_error_metrics()


@pytest.fixture
def proxy_settings():
    """Settings with pacing delays removed so tests run instantly."""

    from nse_proxy.config.settings import load_settings

    return load_settings(
        window_delay=0,
        session_retry_delay=0,
        window_size=3,
        processing_deadline=45.0,
        session_max_attempts=3,
    )
