"""Shared fixtures."""

import os

import pytest

from skillpin import config


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the real user config and environment."""
    for key in list(os.environ):
        if key.startswith(config.ENV_PREFIX):
            monkeypatch.delenv(key)
    monkeypatch.setattr(config, "USER_CONFIG_FILE", tmp_path / "user-config" / "config.yml")
    monkeypatch.setattr(config, "DEFAULT_CACHE_DIR", tmp_path / "default-cache")
    config.reset_config()
    yield
    config.reset_config()
