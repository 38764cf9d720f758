"""Repositorio de mensajes vía Supabase REST."""

from __future__ import annotations

from typing import Any, Iterable

from .base import SupabaseRepository

MESSAGE_COLUMNS = (
    "id,conversation_id,direction,content,media_url,message_type,provider,"
    "provider_payload,sent_status,created_at"
)


class MessagesRepository(SupabaseRepository):
    """Lecturas y escrituras sobre la tabla `messages`."""

    async def insert_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._insert_one("messages", payload)

    async def find_by_provider_id(self, provider_message_id: str) -> dict[str, Any] | None:
        return await self._select_one(
            "messages",
            {
                "select": MESSAGE_COLUMNS,
                "provider_payload->key->>id": f"eq.{provider_message_id}",
            },
        )

    async def update_status(
        self,
        provider_message_id: str,
        status: str,
        *,
        allowed_from: Iterable[str],
    ) -> list[dict[str, Any]]:
        """Actualiza `sent_status` sólo si el estado actual está en `allowed_from`."""
        previous = ",".join(allowed_from)
        if not previous:
            return []
        return await self._update(
            "messages",
            {
                "provider_payload->key->>id": f"eq.{provider_message_id}",
                "sent_status": f"in.({previous})",
            },
            {"sent_status": status},
        )
