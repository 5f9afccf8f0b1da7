"""Shared test fixtures for the portfolio chat relay tests."""

import json
from pathlib import Path
from typing import Dict, Optional

import pytest

from portfolio_chat.config import AppConfig, load_config


def _make_config(tmp_path: Path, overrides: Optional[Dict] = None) -> str:
    """Write a minimal test config and return its path."""
    config = {
        "provider": {
            "name": "test-provider",
            "base_url": "https://llm.example.com/v1beta",
            "api_key_env": "TEST_API_KEY",
            "model": "test-model",
        },
        "rate_limit": {
            "requests": 5,
            "window_seconds": 60,
            "backend": "memory",
        },
        "request_timeout_seconds": 10,
        "log_file": str(tmp_path / "test.log"),
    }
    if overrides:
        config.update(overrides)

    path = tmp_path / "test_config.json"
    path.write_text(json.dumps(config))
    return str(path)


@pytest.fixture()
def test_config_path(tmp_path: Path) -> str:
    """Return the path to a temporary test config file."""
    return _make_config(tmp_path)


@pytest.fixture()
def test_config(test_config_path: str) -> AppConfig:
    """Return a loaded test AppConfig."""
    return load_config(test_config_path)


@pytest.fixture(autouse=True)
def _clear_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep real credentials from the environment out of every test."""
    for name in (
        "TEST_API_KEY",
        "GOOGLE_GENERATIVE_AI_API_KEY",
        "GOOGLE_API_KEY",
        "UPSTASH_REDIS_REST_URL",
        "UPSTASH_REDIS_REST_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
