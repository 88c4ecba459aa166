import os
from dataclasses import dataclass
from functools import lru_cache

from credhook_core.auth.types import Session


@dataclass(frozen=True)
class Config:
    env: str
    log_level: str
    config_store: str
    local_control_root: str | None
    firestore_project: str | None
    collection_prefix: str
    webhooks_collection: str
    legacy_settings_collection: str
    legacy_settings_document: str
    clients_collection: str
    proposals_collection: str
    banks_collection: str
    webhook_config_ttl_s: float
    webhook_timeout_s: float
    webhook_log_uri: str | None
    monitor_enabled: bool
    monitor_actor_id: str | None
    monitor_actor_name: str | None
    monitor_actor_role: str | None
    monitor_reconnect_initial_s: float
    monitor_reconnect_max_s: float
    monitor_snapshot_max_entries: int
    monitor_healthcheck_s: float

    def monitor_session(self) -> Session | None:
        if not self.monitor_actor_role:
            return None
        return Session(
            id=self.monitor_actor_id,
            name=self.monitor_actor_name,
            role=self.monitor_actor_role,
        )

    @classmethod
    def from_env(cls) -> "Config":
        missing: list[str] = []

        def require(name: str) -> str:
            value = os.getenv(name)
            if value is None or value == "":
                missing.append(name)
                return ""
            return value

        config_store = os.getenv("CONFIG_STORE", "json").strip().lower()
        allowed_stores = {"json", "firestore"}
        if config_store not in allowed_stores:
            allowed = ", ".join(sorted(allowed_stores))
            raise ValueError(f"CONFIG_STORE must be one of: {allowed}")

        local_control_root = os.getenv("LOCAL_CONTROL_ROOT")
        if config_store == "json" and not local_control_root:
            missing.append("LOCAL_CONTROL_ROOT")
        env = require("ENV")
        log_level = require("LOG_LEVEL")

        webhook_config_ttl_s = _parse_float(
            "WEBHOOK_CONFIG_TTL_S", os.getenv("WEBHOOK_CONFIG_TTL_S", "300")
        )
        webhook_timeout_s = _parse_float(
            "WEBHOOK_TIMEOUT_S", os.getenv("WEBHOOK_TIMEOUT_S", "10")
        )
        reconnect_initial = _parse_float(
            "MONITOR_RECONNECT_INITIAL_S",
            os.getenv("MONITOR_RECONNECT_INITIAL_S", "1"),
        )
        reconnect_max = _parse_float(
            "MONITOR_RECONNECT_MAX_S",
            os.getenv("MONITOR_RECONNECT_MAX_S", "60"),
        )
        if reconnect_max < reconnect_initial:
            raise ValueError(
                "MONITOR_RECONNECT_MAX_S must be >= MONITOR_RECONNECT_INITIAL_S"
            )
        snapshot_max = _parse_int(
            "MONITOR_SNAPSHOT_MAX_ENTRIES",
            os.getenv("MONITOR_SNAPSHOT_MAX_ENTRIES", "0"),
        )
        healthcheck_s = _parse_float(
            "MONITOR_HEALTHCHECK_S", os.getenv("MONITOR_HEALTHCHECK_S", "5")
        )
        if webhook_config_ttl_s < 0 or webhook_timeout_s <= 0:
            raise ValueError(
                "WEBHOOK_CONFIG_TTL_S must be >= 0 and WEBHOOK_TIMEOUT_S > 0"
            )

        if missing:
            missing_str = ", ".join(missing)
            raise ValueError(f"Missing required env vars: {missing_str}")

        return cls(
            env=env,
            log_level=log_level,
            config_store=config_store,
            local_control_root=local_control_root,
            firestore_project=os.getenv("FIRESTORE_PROJECT") or None,
            collection_prefix=os.getenv("COLLECTION_PREFIX", "").strip(),
            webhooks_collection=os.getenv("WEBHOOKS_COLLECTION", "webhooks"),
            legacy_settings_collection=os.getenv(
                "LEGACY_SETTINGS_COLLECTION", "settings"
            ),
            legacy_settings_document=os.getenv(
                "LEGACY_SETTINGS_DOCUMENT", "webhook"
            ),
            clients_collection=os.getenv("CLIENTS_COLLECTION", "clients"),
            proposals_collection=os.getenv("PROPOSALS_COLLECTION", "proposals"),
            banks_collection=os.getenv("BANKS_COLLECTION", "banks"),
            webhook_config_ttl_s=webhook_config_ttl_s,
            webhook_timeout_s=webhook_timeout_s,
            webhook_log_uri=os.getenv("WEBHOOK_LOG_URI") or None,
            monitor_enabled=_parse_bool(os.getenv("MONITOR_ENABLED"), False),
            monitor_actor_id=os.getenv("MONITOR_ACTOR_ID") or None,
            monitor_actor_name=os.getenv("MONITOR_ACTOR_NAME") or None,
            monitor_actor_role=os.getenv("MONITOR_ACTOR_ROLE") or None,
            monitor_reconnect_initial_s=reconnect_initial,
            monitor_reconnect_max_s=reconnect_max,
            monitor_snapshot_max_entries=max(0, snapshot_max),
            monitor_healthcheck_s=healthcheck_s,
        )


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number") from exc


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.from_env()
