"""Servicios del canal WhatsApp: envío autenticado y eventos de la instancia."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from lead_gateway.core.config import Settings, settings
from lead_gateway.core.errors import GatewayError
from lead_gateway.core.logging import get_logger, log_event
from lead_gateway.core.security import mask_phone
from lead_gateway.models.conversation import (
    Channel,
    Direction,
    NewMessage,
    SentStatus,
    statuses_before,
)
from lead_gateway.models.lead import LeadOrigin, LeadStatus
from lead_gateway.repositories.base import RepositoryError, UniqueViolation
from lead_gateway.repositories.store import DataStore
from lead_gateway.services.conversation_store import ConversationStore
from lead_gateway.services.dispatcher import DispatchResult, MediaPayload, OutboundDispatcher
from lead_gateway.services.evolution import (
    ANONYMIZED_SUFFIX,
    GROUP_SUFFIX,
    SUBSCRIBER_SUFFIX,
    EvolutionClient,
    EvolutionError,
)
from lead_gateway.services.phone import (
    digits_only,
    normalize_phone,
    phone_variants,
    strip_country_code,
)

from . import schemas

logger = get_logger("lead_gateway.channels.whatsapp")

PROVIDER = "evolution"
UNKNOWN_SENDER = "Desconhecido"

STATUS_MAP = {
    "SERVER_ACK": SentStatus.SENT,
    "DELIVERY_ACK": SentStatus.DELIVERED,
    "READ": SentStatus.READ,
    "PLAYED": SentStatus.READ,
    "ERROR": SentStatus.FAILED,
}


async def send(
    dispatcher: OutboundDispatcher, payload: schemas.SendRequest, *, user_id: str | None
) -> schemas.SendResponse:
    """Despacha texto o media según el payload recibido."""
    result: DispatchResult
    if payload.is_media:
        media = MediaPayload(
            media_url=payload.media_url or "",
            media_type=payload.media_type or "document",
            mime_type=payload.mime_type or "application/octet-stream",
            caption=payload.caption,
            file_name=payload.file_name,
        )
        result = await dispatcher.send_media(
            payload.phone, media, conversation_id=payload.conversation_id, user_id=user_id
        )
    else:
        result = await dispatcher.send_text(
            payload.phone,
            payload.message or "",
            conversation_id=payload.conversation_id,
            user_id=user_id,
        )
    return schemas.SendResponse(
        message_id=result.message_id,
        phone=result.phone,
        conversation_id=result.conversation_id,
        lead_id=result.lead_id,
        persisted=result.persisted,
    )


def extract_content(
    message: dict[str, Any] | None, message_type: str | None
) -> tuple[str, str, str | None]:
    """Devuelve `(contenido, tipo, mime)` según el tipo de mensaje de WhatsApp."""
    msg = message or {}
    kind = message_type or "text"

    if msg.get("conversation"):
        return str(msg["conversation"]), "text", None
    if isinstance(msg.get("extendedTextMessage"), dict):
        return str(msg["extendedTextMessage"].get("text") or ""), "text", None
    if isinstance(msg.get("imageMessage"), dict):
        node = msg["imageMessage"]
        return node.get("caption") or "📷 Imagem", "image", node.get("mimetype")
    if isinstance(msg.get("audioMessage"), dict):
        return "🎵 Áudio", "audio", msg["audioMessage"].get("mimetype")
    if isinstance(msg.get("videoMessage"), dict):
        node = msg["videoMessage"]
        return node.get("caption") or "🎬 Vídeo", "video", node.get("mimetype")
    if isinstance(msg.get("documentMessage"), dict):
        node = msg["documentMessage"]
        name = node.get("fileName") or node.get("title") or "Documento"
        return f"📎 {name}", "document", node.get("mimetype")
    if isinstance(msg.get("stickerMessage"), dict):
        return "🎨 Sticker", "sticker", msg["stickerMessage"].get("mimetype")
    if isinstance(msg.get("contactMessage"), dict):
        name = msg["contactMessage"].get("displayName") or UNKNOWN_SENDER
        return f"👤 Contato: {name}", "contact", None
    if isinstance(msg.get("locationMessage"), dict):
        return "📍 Localização", "location", None
    return "", kind, None


def sender_jid(key: schemas.MessageKey) -> str:
    """JID del interlocutor; prefiere los campos `*Alt`, que traen el número real."""
    remote = key.remote_jid or ""
    if remote.endswith(GROUP_SUFFIX):
        alt, fallback = key.participant_alt or "", key.participant or ""
    else:
        alt, fallback = key.remote_jid_alt or "", remote
    return alt if alt.endswith(SUBSCRIBER_SUFFIX) else fallback


class InboundChatProcessor:
    """Aplica los eventos de la instancia sobre leads, conversaciones y mensajes."""

    def __init__(
        self,
        store: DataStore,
        client: EvolutionClient | None = None,
        *,
        config: Settings | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._config = config or settings
        self._conversations = ConversationStore(store, config=self._config)

    async def handle(self, event: schemas.WebhookEvent) -> schemas.WebhookResponse:
        name = event.event_name
        if name == "messages.upsert":
            handler = self._handle_upsert
        elif name == "messages.update":
            handler = self._handle_update
        else:
            log_event(logger, "whatsapp.event_ignored", event=event.event, instance=event.instance)
            return schemas.WebhookResponse(skipped=[f"event:{event.event or 'unknown'}"])

        response = schemas.WebhookResponse()
        items = event.data_items()
        failures = 0
        for raw in items:
            try:
                data = schemas.MessageEventData.model_validate(raw)
            except PydanticValidationError as exc:
                response.skipped.append("invalid_data")
                logger.warning("whatsapp.invalid_event_data", extra={"event": name, "error": str(exc)})
                continue
            try:
                skipped = await handler(data)
            except RepositoryError as exc:
                failures += 1
                logger.exception(
                    "whatsapp.event_failed",
                    extra={"event": name, "provider_message_id": data.provider_id, "error": str(exc)},
                )
                continue
            if skipped:
                response.skipped.append(skipped)
            else:
                response.processed += 1

        if items and failures == len(items):
            # Sin ningún elemento aplicado se responde 500 para que el proveedor reintente.
            raise GatewayError("Could not persist webhook event", event=name)
        return response

    async def _handle_upsert(self, data: schemas.MessageEventData) -> str | None:
        key = data.key
        if key is None or not key.remote_jid:
            return "no_key"

        provider_id = key.id
        if provider_id and await self._store.messages.find_by_provider_id(provider_id):
            log_event(logger, "whatsapp.duplicate_event", provider_message_id=provider_id)
            return "duplicate"

        remote_jid = key.remote_jid
        is_group = remote_jid.endswith(GROUP_SUFFIX)
        from_me = key.from_me
        jid = sender_jid(key)
        anonymized = jid.endswith(ANONYMIZED_SUFFIX)
        local_phone = "" if anonymized else digits_only(jid.split("@", 1)[0])

        if not is_group and not local_phone:
            log_event(logger, "whatsapp.sender_unidentified", remote_jid=remote_jid)
            return "anonymized_sender"

        lead = None
        if local_phone:
            lead = await self._find_or_create_lead(local_phone, data.push_name, create=not from_me)
        if not is_group and lead is None:
            log_event(logger, "whatsapp.outgoing_without_lead", phone=mask_phone(local_phone))
            return "no_lead_for_outgoing"

        content, message_type, mime_type = extract_content(data.message, data.message_type)
        message = NewMessage(
            direction=Direction.OUTBOUND if from_me else Direction.INBOUND,
            content=content,
            message_type=message_type,
            sent_status=SentStatus.SENT if from_me else SentStatus.DELIVERED,
            provider=PROVIDER,
            mime_type=mime_type,
            provider_payload={
                "key": {"id": provider_id, "remoteJid": remote_jid, "fromMe": from_me},
                "pushName": data.push_name,
                "messageType": message_type,
            },
        )

        lead_id = lead["id"] if lead else None
        if is_group:
            group_name = (data.group_metadata or {}).get("subject")
            conversation = await self._conversations.find_or_create(
                channel=Channel.WHATSAPP,
                lead_id=lead_id,
                thread_key=remote_jid,
                is_group=True,
                group_name=group_name,
                reopen_archived=not from_me,
                initial=message,
            )
            if not conversation.get("group_name"):
                await self._backfill_group_name(conversation, remote_jid)
        else:
            conversation = await self._conversations.find_or_create(
                channel=Channel.WHATSAPP,
                lead_id=lead_id,
                reopen_archived=not from_me,
                initial=message,
            )

        try:
            row = await self._conversations.append_message(conversation, message)
        except UniqueViolation:
            # Reentrega concurrente: el índice único sobre el id del proveedor decide.
            log_event(logger, "whatsapp.duplicate_event", provider_message_id=provider_id)
            return "duplicate"
        log_event(
            logger,
            "whatsapp.message_recorded",
            conversation_id=conversation.get("id"),
            message_id=row.get("id"),
            provider_message_id=provider_id,
            direction=str(message.direction),
            message_type=message_type,
            is_group=is_group,
        )
        return None

    async def _handle_update(self, data: schemas.MessageEventData) -> str | None:
        provider_id = data.provider_id
        raw_status = str(data.status or "").upper()
        status = STATUS_MAP.get(raw_status)
        if not provider_id or status is None:
            return "unmapped_status"
        rows = await self._store.messages.update_status(
            provider_id, str(status), allowed_from=[str(item) for item in statuses_before(status)]
        )
        log_event(
            logger,
            "whatsapp.status_updated" if rows else "whatsapp.status_not_applied",
            provider_message_id=provider_id,
            status=str(status),
            provider_status=raw_status,
        )
        return None if rows else "stale_status"

    async def _find_or_create_lead(
        self, local_phone: str, push_name: str | None, *, create: bool
    ) -> dict[str, Any] | None:
        code = self._config.country_code
        lead = await self._store.leads.find_by_phone_variants(
            phone_variants(local_phone, country_code=code)
        )
        if lead is not None or not create:
            return lead

        national = strip_country_code(local_phone, country_code=code)
        phone_normalized = normalize_phone(national, country_code=code)
        payload = {
            "name": push_name or UNKNOWN_SENDER,
            "phone": national,
            "phone_normalized": phone_normalized,
            "origin": str(LeadOrigin.WHATSAPP),
            "status": str(LeadStatus.FIRST_CONTACT),
        }
        try:
            created = await self._store.leads.create_lead(payload)
        except UniqueViolation:
            existing = await self._store.leads.find_by_normalized_phone(phone_normalized)
            if existing is None:
                raise
            return existing
        log_event(
            logger,
            "whatsapp.lead_created",
            lead_id=created.get("id"),
            phone=mask_phone(phone_normalized),
        )
        return created

    async def _backfill_group_name(self, conversation: dict[str, Any], group_jid: str) -> None:
        if self._client is None:
            return
        try:
            name = await self._client.find_group_name(group_jid)
        except EvolutionError as exc:
            logger.warning(
                "whatsapp.group_lookup_failed",
                extra={"group_jid": group_jid, "error": str(exc)},
            )
            return
        if not name:
            return
        await self._store.conversations.update_conversation(conversation["id"], {"group_name": name})
        conversation["group_name"] = name
