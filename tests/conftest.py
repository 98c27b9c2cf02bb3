"""Shared fixtures for the activerun tests."""

from __future__ import annotations

import pytest

from activerun.config import reset_config
from activerun.config.secrets import clear_secret_cache


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keep host environment and cached config out of every test."""
    monkeypatch.delenv("ACTIVERUN_LOG", raising=False)
    monkeypatch.delenv("ACTIVERUN_MAX_ITERATIONS", raising=False)
    reset_config()
    clear_secret_cache()
    yield
    reset_config()
    clear_secret_cache()
