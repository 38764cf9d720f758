"""Modelos base para conversaciones y mensajes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Channel(StrEnum):
    """Medio de comunicación de una conversación."""

    WHATSAPP = "whatsapp"
    OLX_CHAT = "olx_chat"
    INTERNAL = "internal"
    EMAIL = "email"


class Direction(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class SentStatus(StrEnum):
    """Estados de entrega; sólo avanzan en el orden declarado o caen a `failed`."""

    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


_STATUS_ORDER = (SentStatus.SENDING, SentStatus.SENT, SentStatus.DELIVERED, SentStatus.READ)


def statuses_before(target: SentStatus) -> tuple[SentStatus, ...]:
    """Estados desde los que es válido transicionar hacia `target`."""
    if target is SentStatus.FAILED:
        return (SentStatus.SENDING, SentStatus.SENT)
    index = _STATUS_ORDER.index(target)
    return _STATUS_ORDER[:index]


@dataclass(slots=True)
class NewMessage:
    """Mensaje por persistir dentro de una conversación."""

    direction: Direction
    content: str | None
    message_type: str = "text"
    sent_status: SentStatus = SentStatus.SENT
    provider: str | None = None
    media_url: str | None = None
    mime_type: str | None = None
    provider_payload: dict[str, Any] = field(default_factory=dict)

    def preview(self, length: int) -> str:
        text = (self.content or "").strip()
        return text[:length]

    def as_row(self, conversation_id: str) -> dict[str, Any]:
        """Fila de `messages`; el mime va dentro de `provider_payload`."""
        payload = dict(self.provider_payload)
        if self.mime_type:
            payload["mimetype"] = self.mime_type
        row: dict[str, Any] = {
            "conversation_id": conversation_id,
            "direction": str(self.direction),
            "content": self.content,
            "message_type": self.message_type,
            "sent_status": str(self.sent_status),
            "provider": self.provider,
            "provider_payload": payload,
        }
        if self.media_url:
            row["media_url"] = self.media_url
        return row
