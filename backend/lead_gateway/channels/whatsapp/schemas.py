"""Esquemas del canal WhatsApp (Evolution API)."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

MediaType = Literal["image", "document", "video", "audio"]


class SendRequest(BaseModel):
    """Payload de POST /whatsapp/send: texto o media, nunca ambos vacíos."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    phone: str = Field(..., min_length=1, description="Teléfono libre, JID de grupo o de contacto.")
    message: str | None = None
    media_url: str | None = Field(default=None, alias="mediaUrl")
    media_type: MediaType | None = Field(default=None, alias="mediaType")
    mime_type: str | None = Field(default=None, alias="mimeType")
    caption: str | None = None
    file_name: str | None = Field(default=None, alias="fileName")
    conversation_id: str | None = Field(default=None, alias="conversationId")

    @model_validator(mode="after")
    def _check_body(self) -> SendRequest:
        if self.media_url or self.media_type:
            missing = [
                alias
                for alias, value in (
                    ("mediaUrl", self.media_url),
                    ("mediaType", self.media_type),
                    ("mimeType", self.mime_type),
                )
                if not value
            ]
            if missing:
                raise ValueError(f"Missing media fields: {', '.join(missing)}")
        elif not self.message:
            raise ValueError("Phone and message are required")
        return self

    @property
    def is_media(self) -> bool:
        return bool(self.media_url)


class SendResponse(BaseModel):
    """Respuesta de POST /whatsapp/send."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message_id: str | None = Field(default=None, alias="messageId")
    phone: str
    conversation_id: str | None = Field(default=None, alias="conversationId")
    lead_id: str | None = Field(default=None, alias="leadId")
    persisted: bool = True


class MessageKey(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str | None = None
    remote_jid: str | None = Field(default=None, alias="remoteJid")
    remote_jid_alt: str | None = Field(default=None, alias="remoteJidAlt")
    from_me: bool = Field(default=False, alias="fromMe")
    participant: str | None = None
    participant_alt: str | None = Field(default=None, alias="participantAlt")


class MessageEventData(BaseModel):
    """`data` de `messages.upsert` y `messages.update`."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    key: MessageKey | None = None
    key_id: str | None = Field(default=None, alias="keyId")
    message: dict[str, Any] | None = None
    message_type: str | None = Field(default=None, alias="messageType")
    push_name: str | None = Field(default=None, alias="pushName")
    status: str | int | None = None
    message_timestamp: Any = Field(default=None, alias="messageTimestamp")
    group_metadata: dict[str, Any] | None = Field(default=None, alias="groupMetadata")

    @property
    def provider_id(self) -> str | None:
        if self.key and self.key.id:
            return self.key.id
        return self.key_id


class WebhookEvent(BaseModel):
    """Sobre de cualquier evento enviado por la instancia."""

    model_config = ConfigDict(extra="allow")

    event: str = ""
    instance: str | None = None
    data: Any = None

    @property
    def event_name(self) -> str:
        """Acepta `messages.upsert` y la variante `MESSAGES_UPSERT`."""
        return self.event.strip().lower().replace("_", ".")

    def data_items(self) -> list[dict[str, Any]]:
        if isinstance(self.data, list):
            return [item for item in self.data if isinstance(item, dict)]
        if isinstance(self.data, dict):
            return [self.data]
        return []


class WebhookResponse(BaseModel):
    success: bool = True
    processed: int = 0
    skipped: list[str] = Field(default_factory=list)
