"""Endpoint público con el que el sitio inicia la conversación por WhatsApp."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError

from lead_gateway.channels.capture.schemas import SiteContactInquiry
from lead_gateway.core.errors import ValidationError
from lead_gateway.core.logging import get_logger

from . import schemas
from .deps import get_contact_initiator
from .service import ContactInitiator

logger = get_logger("lead_gateway.channels.contact")

router = APIRouter(tags=["contact"])


@router.post(
    "/initiate-whatsapp-contact",
    response_model=schemas.ContactResponse,
    response_model_exclude_none=True,
    summary="Registra el interés en un inmueble y envía la bienvenida por WhatsApp",
)
async def initiate_whatsapp_contact(
    request: Request,
    initiator: ContactInitiator = Depends(get_contact_initiator),
) -> schemas.ContactResponse:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Payload must be a JSON object")

    try:
        inquiry = SiteContactInquiry.model_validate(payload)
    except PydanticValidationError as exc:
        fields = sorted({str(error["loc"][0]) for error in exc.errors() if error.get("loc")})
        logger.info("contact.rejected", extra={"fields": fields})
        raise ValidationError("Name, phone and property are required", fields=fields) from exc
    return await initiator.initiate(inquiry)
