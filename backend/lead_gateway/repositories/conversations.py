"""Repositorio de conversaciones vía Supabase REST."""

from __future__ import annotations

from typing import Any

from .base import SupabaseRepository

CONVERSATION_COLUMNS = (
    "id,lead_id,channel,is_group,external_thread_id,group_name,last_message_at,"
    "last_message_preview,unread_count,archived"
)


class ConversationsRepository(SupabaseRepository):
    """Lecturas y escrituras sobre la tabla `conversations`."""

    async def find_open_for_lead(self, lead_id: str, channel: str) -> dict[str, Any] | None:
        return await self._select_one(
            "conversations",
            {
                "select": CONVERSATION_COLUMNS,
                "lead_id": f"eq.{lead_id}",
                "channel": f"eq.{channel}",
                "is_group": "eq.false",
                "archived": "eq.false",
                "order": "last_message_at.desc.nullslast",
            },
        )

    async def find_open_for_thread(
        self, external_thread_id: str, channel: str
    ) -> dict[str, Any] | None:
        return await self._select_one(
            "conversations",
            {
                "select": CONVERSATION_COLUMNS,
                "external_thread_id": f"eq.{external_thread_id}",
                "channel": f"eq.{channel}",
                "archived": "eq.false",
                "order": "last_message_at.desc.nullslast",
            },
        )

    async def find_latest_archived(
        self,
        *,
        channel: str,
        lead_id: str | None = None,
        external_thread_id: str | None = None,
    ) -> dict[str, Any] | None:
        params = {
            "select": CONVERSATION_COLUMNS,
            "channel": f"eq.{channel}",
            "archived": "eq.true",
            "order": "last_message_at.desc.nullslast",
        }
        if external_thread_id:
            params["external_thread_id"] = f"eq.{external_thread_id}"
        elif lead_id:
            params["lead_id"] = f"eq.{lead_id}"
            params["is_group"] = "eq.false"
        else:
            return None
        return await self._select_one("conversations", params)

    async def fetch_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        return await self._select_one(
            "conversations",
            {"select": CONVERSATION_COLUMNS, "id": f"eq.{conversation_id}"},
        )

    async def create_conversation(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._insert_one("conversations", payload)

    async def update_conversation(
        self, conversation_id: str, patch: dict[str, Any]
    ) -> dict[str, Any] | None:
        rows = await self._update("conversations", {"id": f"eq.{conversation_id}"}, patch)
        return rows[0] if rows else None

    async def update_conversation_if(
        self, conversation_id: str, patch: dict[str, Any], *, expected: dict[str, Any]
    ) -> dict[str, Any] | None:
        """PATCH condicionado: sólo aplica si las columnas de `expected` no cambiaron.

        Devuelve `None` cuando ninguna fila coincide, es decir, otro request
        escribió antes.
        """
        params = {"id": f"eq.{conversation_id}"}
        for column, value in expected.items():
            params[column] = "is.null" if value is None else f"eq.{value}"
        rows = await self._update("conversations", params, patch)
        return rows[0] if rows else None
