from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Session:
    id: str | None
    name: str | None
    role: str | None

    def actor(self) -> dict[str, str | None]:
        return {"id": self.id, "name": self.name, "role": self.role}
