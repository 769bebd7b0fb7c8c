"""
Root conftest - isolate timedebt environment variables so that Settings
tests are not affected by the developer's or CI environment, and drop the
cached Settings singleton between tests.
"""
import os

import pytest

_ENV_PREFIXES = ("LOOP__", "LOGGING__")
_ENV_VARS = ["TIMEDEBT_CONFIG"]


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch):
    """Remove config env vars for every test and disable .env file loading
    so a local .env never leaks into Settings()."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    for var in list(os.environ):
        if var.upper().startswith(_ENV_PREFIXES):
            monkeypatch.delenv(var, raising=False)

    import timedebt.config.settings as settings_module
    from pydantic_settings import SettingsConfigDict
    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)

    settings_module.reset_settings()
    yield
    settings_module.reset_settings()
