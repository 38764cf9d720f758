"""Hilos de conversación y mensajes sobre el almacén de datos."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from lead_gateway.core.config import Settings, settings
from lead_gateway.core.logging import get_logger
from lead_gateway.models.conversation import Channel, Direction, NewMessage
from lead_gateway.repositories.base import RepositoryError, UniqueViolation
from lead_gateway.repositories.store import DataStore

logger = get_logger(__name__)

UNREAD_ATTEMPTS = 5


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationStore:
    """Encuentra o crea conversaciones y registra mensajes.

    Nunca borra: las conversaciones sólo se archivan desde la consola.
    La unicidad de la conversación abierta la garantiza el almacén
    (`lead_id, channel` para hilos directos, `external_thread_id` para grupos);
    aquí sólo se resuelve la carrera reutilizando la fila ganadora.
    """

    def __init__(self, store: DataStore, *, config: Settings | None = None) -> None:
        self._store = store
        self._config = config or settings

    async def find_or_create(
        self,
        *,
        channel: Channel,
        lead_id: str | None = None,
        thread_key: str | None = None,
        is_group: bool = False,
        group_name: str | None = None,
        reopen_archived: bool = False,
        initial: NewMessage | None = None,
    ) -> dict[str, Any]:
        if is_group and not thread_key:
            raise ValueError("Group conversations require a thread key")
        if not is_group and not lead_id:
            raise ValueError("Direct conversations require a lead id")

        existing = await self._find_open(
            channel, lead_id=lead_id, thread_key=thread_key, is_group=is_group
        )
        if existing:
            return await self._refresh_group_name(existing, group_name)

        if reopen_archived:
            reopened = await self._reopen(
                channel, lead_id=lead_id, thread_key=thread_key, is_group=is_group
            )
            if reopened:
                return await self._refresh_group_name(reopened, group_name)

        preview_fields = self._preview_fields(initial)
        payload: dict[str, Any] = {
            "lead_id": lead_id,
            "channel": str(channel),
            "is_group": is_group,
            "external_thread_id": thread_key,
            "archived": False,
            "unread_count": 0,
            **preview_fields,
        }
        if group_name:
            payload["group_name"] = group_name

        try:
            created = await self._store.conversations.create_conversation(payload)
        except UniqueViolation:
            winner = await self._find_open(
                channel, lead_id=lead_id, thread_key=thread_key, is_group=is_group
            )
            if winner is None:
                raise
            logger.info(
                "conversation.create_race_resolved",
                extra={"conversation_id": winner.get("id"), "channel": str(channel)},
            )
            if preview_fields:
                updated = await self._store.conversations.update_conversation(
                    winner["id"], preview_fields
                )
                return updated or {**winner, **preview_fields}
            return winner

        logger.info(
            "conversation.created",
            extra={
                "conversation_id": created.get("id"),
                "lead_id": lead_id,
                "channel": str(channel),
                "is_group": is_group,
            },
        )
        return created

    async def append_message(
        self, conversation: dict[str, Any], message: NewMessage
    ) -> dict[str, Any]:
        """Persiste el mensaje y luego actualiza preview, timestamp y no leídos."""
        conversation_id = conversation["id"]
        row = await self._store.messages.insert_message(message.as_row(conversation_id))

        patch = self._preview_fields(message)
        if message.direction is Direction.INBOUND:
            updated = await self._increment_unread(conversation, patch)
        else:
            updated = await self._store.conversations.update_conversation(conversation_id, patch)
        conversation.update(updated or patch)

        logger.info(
            "conversation.message_appended",
            extra={
                "conversation_id": conversation_id,
                "message_id": row.get("id"),
                "direction": str(message.direction),
                "sent_status": str(message.sent_status),
            },
        )
        return row

    async def _increment_unread(
        self, conversation: dict[str, Any], patch: dict[str, Any]
    ) -> dict[str, Any]:
        """Suma uno a `unread_count` con compare-and-swap sobre el valor leído."""
        repo = self._store.conversations
        conversation_id = conversation["id"]
        current: dict[str, Any] | None = conversation if "unread_count" in conversation else None
        for attempt in range(UNREAD_ATTEMPTS):
            if current is None:
                current = await repo.fetch_conversation(conversation_id)
                if current is None:
                    raise RepositoryError(f"Conversation {conversation_id} not found")
            seen = current.get("unread_count")
            updated = await repo.update_conversation_if(
                conversation_id,
                {**patch, "unread_count": int(seen or 0) + 1},
                expected={"unread_count": seen},
            )
            if updated is not None:
                return updated
            logger.debug(
                "conversation.unread_conflict",
                extra={"conversation_id": conversation_id, "attempt": attempt + 1},
            )
            current = None
        raise RepositoryError(
            f"Could not increment unread_count for {conversation_id} after {UNREAD_ATTEMPTS} attempts"
        )

    async def _find_open(
        self,
        channel: Channel,
        *,
        lead_id: str | None,
        thread_key: str | None,
        is_group: bool,
    ) -> dict[str, Any] | None:
        repo = self._store.conversations
        if is_group:
            return await repo.find_open_for_thread(thread_key, str(channel))
        return await repo.find_open_for_lead(lead_id, str(channel))

    async def _reopen(
        self,
        channel: Channel,
        *,
        lead_id: str | None,
        thread_key: str | None,
        is_group: bool,
    ) -> dict[str, Any] | None:
        archived = await self._store.conversations.find_latest_archived(
            channel=str(channel),
            lead_id=None if is_group else lead_id,
            external_thread_id=thread_key if is_group else None,
        )
        if not archived:
            return None
        try:
            reopened = await self._store.conversations.update_conversation(
                archived["id"], {"archived": False}
            )
        except UniqueViolation:
            # Otro request abrió un hilo nuevo mientras tanto.
            return await self._find_open(
                channel, lead_id=lead_id, thread_key=thread_key, is_group=is_group
            )
        logger.info(
            "conversation.reopened",
            extra={"conversation_id": archived["id"], "channel": str(channel)},
        )
        return reopened or {**archived, "archived": False}

    async def _refresh_group_name(
        self, conversation: dict[str, Any], group_name: str | None
    ) -> dict[str, Any]:
        if not group_name or not conversation.get("is_group"):
            return conversation
        if conversation.get("group_name") == group_name:
            return conversation
        updated = await self._store.conversations.update_conversation(
            conversation["id"], {"group_name": group_name}
        )
        return updated or {**conversation, "group_name": group_name}

    def _preview_fields(self, message: NewMessage | None) -> dict[str, Any]:
        if message is None:
            return {}
        return {
            "last_message_at": _now_iso(),
            "last_message_preview": message.preview(self._config.preview_length),
        }
