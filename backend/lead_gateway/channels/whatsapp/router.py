"""Endpoints del canal WhatsApp (Evolution API)."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError

from lead_gateway.core.errors import ValidationError
from lead_gateway.core.logging import get_logger
from lead_gateway.services.dispatcher import OutboundDispatcher

from . import schemas, service
from .deps import (
    AuthenticatedUser,
    get_dispatcher,
    get_inbound_processor,
    require_user,
    verify_webhook_secret,
)

logger = get_logger("lead_gateway.channels.whatsapp")

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])


@router.post(
    "/send",
    response_model=schemas.SendResponse,
    summary="Envía texto o media a un contacto o grupo",
)
async def send_message(
    payload: schemas.SendRequest,
    user: AuthenticatedUser = Depends(require_user),
    dispatcher: OutboundDispatcher = Depends(get_dispatcher),
) -> schemas.SendResponse:
    """Resuelve el número, aplica el intervalo de pacing y registra el mensaje enviado."""
    return await service.send(dispatcher, payload, user_id=user.id)


@router.get("/webhook", summary="Verificación del webhook por la instancia")
async def webhook_probe() -> dict[str, str]:
    return {"status": "ok", "webhook": "whatsapp"}


@router.post(
    "/webhook",
    response_model=schemas.WebhookResponse,
    summary="Eventos de mensajes de la instancia",
)
async def whatsapp_webhook(
    request: Request,
    _: None = Depends(verify_webhook_secret),
    processor: service.InboundChatProcessor = Depends(get_inbound_processor),
) -> schemas.WebhookResponse:
    """Procesa `messages.upsert` y `messages.update`; el resto se confirma sin efecto."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise ValidationError("Webhook payload must be a JSON object")
    try:
        event = schemas.WebhookEvent.model_validate(body)
    except PydanticValidationError as exc:
        raise ValidationError("Invalid webhook payload") from exc
    logger.debug(
        "whatsapp.webhook_received",
        extra={"event": event.event, "instance": event.instance},
    )
    return await processor.handle(event)
