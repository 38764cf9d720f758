"""Contacto iniciado desde el sitio: lead, hilo de WhatsApp y bienvenida."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from lead_gateway.channels.capture.adapters import SiteContactAdapter
from lead_gateway.channels.capture.schemas import SiteContactInquiry
from lead_gateway.channels.capture.service import LeadIngestionProcessor
from lead_gateway.core.config import Settings, settings
from lead_gateway.core.errors import AddresseeUnresolved, DeliveryFailed, GatewayError
from lead_gateway.core.logging import get_logger
from lead_gateway.core.security import mask_phone
from lead_gateway.models.conversation import Channel, Direction, NewMessage, SentStatus
from lead_gateway.repositories.base import RepositoryError
from lead_gateway.repositories.store import DataStore
from lead_gateway.services.conversation_store import ConversationStore
from lead_gateway.services.dispatcher import PROVIDER, OutboundDispatcher

from . import schemas

logger = get_logger("lead_gateway.channels.contact")

CLOSING_LINE = "Em breve um de nossos corretores entrará em contato para te ajudar!"


def format_price(value: str | None) -> str | None:
    """`2500` -> `R$ 2.500`; los centavos sólo aparecen cuando existen.

    Un valor que no es número se devuelve tal cual.
    """
    if not value:
        return None
    try:
        amount = Decimal(value)
    except InvalidOperation:
        return value
    if not amount.is_finite():
        return value
    pattern = ",.0f" if amount == amount.to_integral_value() else ",.2f"
    text = format(amount, pattern)
    return "R$ " + text.replace(",", "_").replace(".", ",").replace("_", ".")


def welcome_message(inquiry: SiteContactInquiry, *, signature: str | None = None) -> str:
    details = []
    if inquiry.property_title:
        details.append(f"🏠 *{inquiry.property_title}*")
    if inquiry.property_neighborhood:
        details.append(f"📍 {inquiry.property_neighborhood}")
    price = format_price(inquiry.property_price)
    if price:
        rent = inquiry.property_purpose == "rent"
        purpose = "aluguel" if rent else "venda"
        details.append(f"💰 {price}{'/mês' if rent else ''} ({purpose})")

    lines = [f"Olá {inquiry.name}! 👋", "", "Obrigado pelo interesse no imóvel:"]
    if details:
        lines += ["", *details]
    lines += ["", CLOSING_LINE]
    if signature:
        lines += ["", signature]
    return "\n".join(lines)


class ContactInitiator:
    """Registra el interés del visitante y le escribe primero por WhatsApp.

    El lead y la conversación son obligatorios: si no se pueden escribir la
    respuesta es 500. La bienvenida no: si el número no se resuelve o el
    proveedor la rechaza, el mensaje queda registrado como `failed` y la
    respuesta informa `messageSent: false`.
    """

    def __init__(
        self,
        store: DataStore,
        dispatcher: OutboundDispatcher,
        *,
        config: Settings | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._config = config or settings
        self._leads = LeadIngestionProcessor(store, config=self._config)
        self._conversations = ConversationStore(store, config=self._config)
        self._adapter = SiteContactAdapter()

    async def initiate(self, inquiry: SiteContactInquiry) -> schemas.ContactResponse:
        logger.info(
            "contact.received",
            extra={"phone": mask_phone(inquiry.phone), "property_id": inquiry.property_id},
        )
        try:
            lead, created, property_id = await self._leads.upsert_lead(self._adapter, inquiry)
        except RepositoryError as exc:
            logger.exception("contact.lead_write_failed", extra={"error": str(exc)})
            raise GatewayError("Failed to register contact") from exc

        lead_id = lead["id"]
        try:
            conversation = await self._conversations.find_or_create(
                channel=Channel.WHATSAPP, lead_id=lead_id, reopen_archived=True
            )
        except RepositoryError as exc:
            logger.exception(
                "contact.conversation_write_failed", extra={"lead_id": lead_id, "error": str(exc)}
            )
            raise GatewayError("Failed to create conversation", lead_id=lead_id) from exc

        text = welcome_message(inquiry, signature=self._config.contact_signature)
        sent = await self._send_welcome(inquiry.phone, text, conversation)

        await self._record(
            lead_id,
            {
                "phone": inquiry.phone,
                "property_id": property_id or inquiry.property_id,
                "property_title": inquiry.property_title,
                "conversation_id": conversation["id"],
                "message_sent": sent,
                "lead_created": created,
            },
        )
        logger.info(
            "contact.initiated",
            extra={
                "lead_id": lead_id,
                "conversation_id": conversation["id"],
                "created": created,
                "message_sent": sent,
            },
        )
        return schemas.ContactResponse(
            lead_id=lead_id,
            conversation_id=conversation["id"],
            message_sent=sent,
            created=created,
        )

    async def _send_welcome(self, phone: str, text: str, conversation: dict[str, Any]) -> bool:
        try:
            await self._dispatcher.send_text(phone, text, conversation_id=conversation["id"])
        except (AddresseeUnresolved, DeliveryFailed) as exc:
            logger.warning(
                "contact.welcome_not_sent",
                extra={"phone": mask_phone(phone), "code": exc.code, "error": exc.message},
            )
            failed = NewMessage(
                direction=Direction.OUTBOUND,
                content=text,
                sent_status=SentStatus.FAILED,
                provider=PROVIDER,
                provider_payload={"error": exc.message, "code": exc.code},
            )
            try:
                await self._conversations.append_message(conversation, failed)
            except RepositoryError as write_exc:
                logger.exception(
                    "contact.failed_message_not_recorded",
                    extra={"conversation_id": conversation["id"], "error": str(write_exc)},
                )
            return False
        return True

    async def _record(self, lead_id: str, metadata: dict[str, Any]) -> None:
        try:
            await self._store.activity.record(
                "whatsapp_initiated", entity_type="lead", entity_id=lead_id, metadata=metadata
            )
        except RepositoryError as exc:
            logger.warning(
                "contact.activity_not_recorded", extra={"lead_id": lead_id, "error": str(exc)}
            )
