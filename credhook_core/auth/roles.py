from __future__ import annotations

from credhook_core.auth.types import Session

ROLE_CLIENT = "client"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"

KNOWN_ROLES: tuple[str, ...] = (ROLE_CLIENT, ROLE_MANAGER, ROLE_ADMIN)
MONITOR_ROLES: frozenset[str] = frozenset({ROLE_MANAGER, ROLE_ADMIN})


def normalize_role(role: str | None) -> str | None:
    if role is None:
        return None
    cleaned = role.strip().lower()
    return cleaned or None


def can_monitor(session: Session | None) -> bool:
    """Only back-office sessions may watch collections and emit webhooks."""
    if session is None:
        return False
    return normalize_role(session.role) in MONITOR_ROLES
