# =============================================================================
# Shared Test Fixtures
# =============================================================================
#
# Every test runs without network, API keys or real backoff delays: the
# retry module's sleep is replaced with an AsyncMock that records delays.
# =============================================================================

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from research_team.services import retry


@pytest.fixture(autouse=True)
def no_backoff_sleep(monkeypatch):
    """Record retry delays instead of waiting them out."""
    sleep = AsyncMock()
    monkeypatch.setattr(retry, "_sleep", sleep)
    return sleep
