"""Registro de auditoría en `activity_log`."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from .base import SupabaseRepository


class ActivityRepository(SupabaseRepository):
    async def record(
        self,
        action: str,
        *,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any] | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "metadata": {
                **(metadata or {}),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
        if user_id:
            payload["user_id"] = user_id
        return await self._insert_one("activity_log", payload)
