from __future__ import annotations

import json
import logging

import pytest

from credhook_core.config import Config
from credhook_core.logging import BaseFieldFilter, JsonFormatter


@pytest.mark.core
def test_config_defaults(monkeypatch):
    monkeypatch.delenv("WEBHOOK_CONFIG_TTL_S", raising=False)
    monkeypatch.delenv("COLLECTION_PREFIX", raising=False)
    config = Config.from_env()

    assert config.config_store == "json"
    assert config.webhook_config_ttl_s == 300.0
    assert config.webhook_timeout_s == 10.0
    assert config.monitor_enabled is False
    assert config.monitor_reconnect_initial_s == 1.0
    assert config.monitor_reconnect_max_s == 60.0
    assert config.monitor_snapshot_max_entries == 0
    assert config.collection_prefix == ""
    assert config.monitor_session() is None


@pytest.mark.core
def test_config_monitor_session_and_prefix(monkeypatch):
    monkeypatch.setenv("COLLECTION_PREFIX", "staging_")
    monkeypatch.setenv("MONITOR_ENABLED", "true")
    monkeypatch.setenv("MONITOR_ACTOR_ID", "svc")
    monkeypatch.setenv("MONITOR_ACTOR_NAME", "Webhook monitor")
    monkeypatch.setenv("MONITOR_ACTOR_ROLE", "admin")
    config = Config.from_env()

    assert config.collection_prefix == "staging_"
    assert config.monitor_enabled is True
    session = config.monitor_session()
    assert session is not None
    assert session.actor() == {"id": "svc", "name": "Webhook monitor", "role": "admin"}


@pytest.mark.core
def test_config_rejects_unknown_store(monkeypatch):
    monkeypatch.setenv("CONFIG_STORE", "redis")
    with pytest.raises(ValueError, match="CONFIG_STORE"):
        Config.from_env()


@pytest.mark.core
def test_config_json_store_requires_root(monkeypatch):
    monkeypatch.setenv("CONFIG_STORE", "json")
    monkeypatch.setenv("LOCAL_CONTROL_ROOT", "")
    with pytest.raises(ValueError, match="LOCAL_CONTROL_ROOT"):
        Config.from_env()


@pytest.mark.core
def test_config_firestore_store_needs_no_root(monkeypatch):
    monkeypatch.setenv("CONFIG_STORE", "firestore")
    monkeypatch.delenv("LOCAL_CONTROL_ROOT", raising=False)
    config = Config.from_env()
    assert config.config_store == "firestore"


@pytest.mark.core
def test_config_invalid_numbers(monkeypatch):
    monkeypatch.setenv("WEBHOOK_TIMEOUT_S", "fast")
    with pytest.raises(ValueError, match="WEBHOOK_TIMEOUT_S"):
        Config.from_env()

    monkeypatch.setenv("WEBHOOK_TIMEOUT_S", "10")
    monkeypatch.setenv("MONITOR_RECONNECT_INITIAL_S", "30")
    monkeypatch.setenv("MONITOR_RECONNECT_MAX_S", "5")
    with pytest.raises(ValueError, match="MONITOR_RECONNECT_MAX_S"):
        Config.from_env()


@pytest.mark.core
def test_json_formatter_whitelists_extra_fields():
    record = logging.LogRecord(
        name="credhook_core.webhooks.delivery",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Webhook delivered",
        args=(),
        exc_info=None,
    )
    record.webhook_id = "wh-1"
    record.status_code = 200
    record.password = "nope"
    BaseFieldFilter(service="credhook-webhooks", env="test", version=None).filter(
        record
    )

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "Webhook delivered"
    assert payload["service"] == "credhook-webhooks"
    assert payload["env"] == "test"
    assert payload["webhook_id"] == "wh-1"
    assert payload["status_code"] == 200
    assert "password" not in payload
    assert "version" not in payload
