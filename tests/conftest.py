import os
import tempfile
from pathlib import Path

import pytest

from credhook_core.config import get_config

_TEST_CONTROL_ROOT: str | None = None


@pytest.fixture(autouse=True)
def _default_env(monkeypatch: pytest.MonkeyPatch):
    def set_default(name: str, value: str) -> None:
        if not os.getenv(name):
            monkeypatch.setenv(name, value)

    set_default("ENV", "test")
    set_default("LOG_LEVEL", "INFO")
    set_default("CONFIG_STORE", "json")
    set_default("LOCAL_CONTROL_ROOT", _ensure_test_control_root())
    set_default("MONITOR_ENABLED", "0")
    get_config.cache_clear()
    yield
    get_config.cache_clear()


def _ensure_test_control_root() -> str:
    global _TEST_CONTROL_ROOT
    if _TEST_CONTROL_ROOT and Path(_TEST_CONTROL_ROOT).exists():
        return _TEST_CONTROL_ROOT

    _TEST_CONTROL_ROOT = tempfile.mkdtemp(prefix="credhook_test_control_")
    return _TEST_CONTROL_ROOT
