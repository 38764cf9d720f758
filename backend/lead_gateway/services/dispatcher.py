"""Envío de mensajes salientes por WhatsApp y su registro en la conversación."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from lead_gateway.core.config import Settings, settings
from lead_gateway.core.errors import AddresseeUnresolved, DeliveryFailed
from lead_gateway.core.logging import get_logger
from lead_gateway.core.security import mask_phone
from lead_gateway.models.conversation import Channel, Direction, NewMessage, SentStatus
from lead_gateway.models.lead import LeadOrigin, LeadStatus
from lead_gateway.repositories.base import RepositoryError, UniqueViolation
from lead_gateway.repositories.store import DataStore

from .conversation_store import ConversationStore
from .evolution import SUBSCRIBER_SUFFIX, EvolutionClient, EvolutionError, extract_message_id
from .phone import phone_variants
from .resolver import PhoneResolver, ResolvedAddress

logger = get_logger(__name__)

PROVIDER = "evolution"


@dataclass(slots=True)
class MediaPayload:
    media_url: str
    media_type: str
    mime_type: str
    caption: str | None = None
    file_name: str | None = None


@dataclass(slots=True)
class DispatchResult:
    """Resultado de un envío aceptado por el proveedor."""

    message_id: str | None
    phone: str
    conversation_id: str | None = None
    lead_id: str | None = None
    persisted: bool = True


class OutboundDispatcher:
    """Resuelve el destino, espera el intervalo de pacing, envía y registra.

    El envío es la operación que importa: si el proveedor lo aceptó, un fallo
    posterior del almacén se registra en logs y se informa con
    `persisted=False`, nunca como error del envío.
    """

    def __init__(
        self,
        store: DataStore,
        client: EvolutionClient,
        resolver: PhoneResolver,
        *,
        config: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self._client = client
        self._resolver = resolver
        self._config = config or settings
        self._conversations = ConversationStore(store, config=self._config)
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def send_text(
        self,
        phone: str,
        text: str,
        *,
        conversation_id: str | None = None,
        user_id: str | None = None,
    ) -> DispatchResult:
        resolved = await self._resolve(phone)

        async def _send() -> dict[str, Any]:
            return await self._client.send_text(resolved.target, text)

        message = NewMessage(direction=Direction.OUTBOUND, content=text)
        return await self._dispatch(
            phone,
            resolved,
            _send,
            message,
            action="whatsapp_sent",
            conversation_id=conversation_id,
            user_id=user_id,
            metadata={"message_length": len(text)},
        )

    async def send_media(
        self,
        phone: str,
        media: MediaPayload,
        *,
        conversation_id: str | None = None,
        user_id: str | None = None,
    ) -> DispatchResult:
        resolved = await self._resolve(phone)

        async def _send() -> dict[str, Any]:
            return await self._client.send_media(
                resolved.target,
                media_url=media.media_url,
                media_type=media.media_type,
                mime_type=media.mime_type,
                caption=media.caption,
                file_name=media.file_name,
            )

        message = NewMessage(
            direction=Direction.OUTBOUND,
            content=media.caption or media.file_name or "",
            message_type=media.media_type,
            media_url=media.media_url,
            mime_type=media.mime_type,
        )
        return await self._dispatch(
            phone,
            resolved,
            _send,
            message,
            action="whatsapp_media_sent",
            conversation_id=conversation_id,
            user_id=user_id,
            metadata={"media_type": media.media_type, "mime_type": media.mime_type},
        )

    async def _resolve(self, phone: str) -> ResolvedAddress:
        resolved = await self._resolver.resolve(phone)
        if resolved is None:
            logger.info("dispatcher.addressee_unresolved", extra={"phone": mask_phone(phone)})
            raise AddresseeUnresolved(phone)
        return resolved

    async def _pace(self) -> None:
        delay = self._rng.uniform(self._config.pacing_min_seconds, self._config.pacing_max_seconds)
        logger.debug("dispatcher.pacing", extra={"delay_seconds": round(delay, 2)})
        await self._sleep(delay)

    async def _dispatch(
        self,
        raw_phone: str,
        resolved: ResolvedAddress,
        send: Callable[[], Awaitable[dict[str, Any]]],
        message: NewMessage,
        *,
        action: str,
        conversation_id: str | None,
        user_id: str | None,
        metadata: dict[str, Any],
    ) -> DispatchResult:
        await self._pace()
        try:
            response = await send()
        except EvolutionError as exc:
            logger.error(
                "dispatcher.delivery_failed",
                extra={"phone": mask_phone(resolved.target), "status": exc.status, "detail": exc.detail},
            )
            raise DeliveryFailed(resolved.target, detail=exc.detail or str(exc)) from exc

        message_id = extract_message_id(response)
        message.sent_status = SentStatus.SENT
        message.provider = PROVIDER
        message.provider_payload = {
            "key": {
                "id": message_id,
                "remoteJid": resolved.jid or self._default_jid(resolved),
                "fromMe": True,
            },
            "messageType": message.message_type,
        }
        logger.info(
            "dispatcher.sent",
            extra={
                "phone": mask_phone(resolved.target),
                "provider_message_id": message_id,
                "message_type": message.message_type,
                "corrected": resolved.corrected,
            },
        )

        result = DispatchResult(message_id=message_id, phone=resolved.target)
        try:
            conversation, lead_id, row = await self._persist(
                raw_phone, resolved, message, conversation_id=conversation_id
            )
            result.conversation_id = conversation.get("id")
            result.lead_id = lead_id
            await self._store.activity.record(
                action,
                entity_type="message",
                entity_id=row.get("id"),
                metadata={
                    **metadata,
                    "phone": resolved.target,
                    "conversation_id": result.conversation_id,
                    "lead_id": lead_id,
                    "provider_message_id": message_id,
                },
                user_id=user_id,
            )
        except RepositoryError as exc:
            result.persisted = False
            logger.exception(
                "dispatcher.persist_failed",
                extra={
                    "phone": mask_phone(resolved.target),
                    "provider_message_id": message_id,
                    "error": str(exc),
                },
            )
        return result

    async def _persist(
        self,
        raw_phone: str,
        resolved: ResolvedAddress,
        message: NewMessage,
        *,
        conversation_id: str | None,
    ) -> tuple[dict[str, Any], str | None, dict[str, Any]]:
        conversation: dict[str, Any] | None = None
        if conversation_id:
            conversation = await self._store.conversations.fetch_conversation(conversation_id)
            if conversation is None:
                logger.warning(
                    "dispatcher.conversation_not_found",
                    extra={"conversation_id": conversation_id},
                )

        if conversation is not None:
            lead_id = conversation.get("lead_id")
            if lead_id and resolved.corrected and not resolved.is_group:
                lead = await self._store.leads.fetch_lead(lead_id)
                if lead:
                    await self._correct_lead_phone(lead, resolved)
        elif resolved.is_group:
            lead_id = None
            conversation = await self._conversations.find_or_create(
                channel=Channel.WHATSAPP,
                thread_key=resolved.target,
                is_group=True,
                initial=message,
            )
        else:
            lead = await self._locate_lead(raw_phone, resolved)
            if resolved.corrected:
                lead = await self._correct_lead_phone(lead, resolved)
            lead_id = lead["id"]
            conversation = await self._conversations.find_or_create(
                channel=Channel.WHATSAPP,
                lead_id=lead_id,
                initial=message,
            )

        try:
            row = await self._conversations.append_message(conversation, message)
        except UniqueViolation:
            # El eco `fromMe` del webhook llegó antes y ya registró el mensaje.
            provider_id = message.provider_payload.get("key", {}).get("id")
            existing = None
            if provider_id:
                existing = await self._store.messages.find_by_provider_id(provider_id)
            if existing is None:
                raise
            logger.info(
                "dispatcher.already_recorded",
                extra={"provider_message_id": provider_id, "message_id": existing.get("id")},
            )
            row = existing
        return conversation, lead_id, row

    async def _locate_lead(self, raw_phone: str, resolved: ResolvedAddress) -> dict[str, Any]:
        leads = self._store.leads
        code = self._config.country_code
        lead = await leads.find_by_phone_variants(phone_variants(raw_phone, country_code=code))
        if lead is None:
            lead = await leads.find_by_phone_variants(
                phone_variants(resolved.target, country_code=code)
            )
        if lead is not None:
            return lead

        payload = {
            "name": resolved.phone_normalized,
            "phone": resolved.phone_normalized,
            "phone_normalized": resolved.phone_normalized,
            "origin": str(LeadOrigin.MANUAL),
            "status": str(LeadStatus.FIRST_CONTACT),
        }
        try:
            created = await leads.create_lead(payload)
        except UniqueViolation:
            existing = await leads.find_by_normalized_phone(resolved.phone_normalized)
            if existing is None:
                raise
            return existing
        logger.info(
            "dispatcher.lead_created",
            extra={"lead_id": created.get("id"), "phone": mask_phone(resolved.phone_normalized)},
        )
        return created

    async def _correct_lead_phone(
        self, lead: dict[str, Any], resolved: ResolvedAddress
    ) -> dict[str, Any]:
        """Actualiza el teléfono del lead con el número confirmado.

        Si otro lead ya tiene ese número, se omite la corrección y se devuelve
        ese lead para que el mensaje quede en su hilo.
        """
        target = resolved.phone_normalized
        if not target or lead.get("phone_normalized") == target:
            return lead
        try:
            updated = await self._store.leads.update_lead(
                lead["id"], {"phone": target, "phone_normalized": target}
            )
        except UniqueViolation:
            owner = await self._store.leads.find_by_normalized_phone(target)
            logger.info(
                "dispatcher.phone_correction_skipped",
                extra={
                    "lead_id": lead.get("id"),
                    "owner_lead_id": owner.get("id") if owner else None,
                    "phone": mask_phone(target),
                },
            )
            return owner or lead
        logger.info(
            "dispatcher.phone_corrected",
            extra={"lead_id": lead.get("id"), "phone": mask_phone(target)},
        )
        return updated or {**lead, "phone": target, "phone_normalized": target}

    @staticmethod
    def _default_jid(resolved: ResolvedAddress) -> str:
        if resolved.is_group:
            return resolved.target
        return f"{resolved.target}{SUBSCRIBER_SUFFIX}"
