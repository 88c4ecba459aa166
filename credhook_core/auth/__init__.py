from credhook_core.auth.roles import (
    KNOWN_ROLES,
    MONITOR_ROLES,
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_MANAGER,
    can_monitor,
    normalize_role,
)
from credhook_core.auth.types import Session

__all__ = [
    "KNOWN_ROLES",
    "MONITOR_ROLES",
    "ROLE_ADMIN",
    "ROLE_CLIENT",
    "ROLE_MANAGER",
    "Session",
    "can_monitor",
    "normalize_role",
]
