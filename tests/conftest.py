"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import pytest

from bookmark_sync.core.logging_utils import clear_log_history


@pytest.fixture(autouse=True)
def _clean_log_history():
    clear_log_history()
    yield
    clear_log_history()
