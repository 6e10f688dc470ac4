"""Shared test helpers."""

from datetime import datetime

import pytest


def utc(value: str) -> datetime:
    """Parse an ISO 8601 UTC timestamp such as '2026-02-16T12:00:00Z'."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.fixture
def now() -> datetime:
    return utc("2026-02-16T12:00:00Z")
