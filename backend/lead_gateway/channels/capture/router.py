"""Endpoint de captación de leads desde portales y formulario del sitio."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, Request

from lead_gateway.core.errors import ValidationError
from lead_gateway.core.logging import get_logger

from . import schemas, service
from .deps import get_ingestion_processor, resolve_source, verify_capture_secret

logger = get_logger("lead_gateway.channels.capture")

router = APIRouter(tags=["capture"])


@router.post(
    "/capture-lead",
    response_model=schemas.CaptureResponse,
    response_model_exclude_none=True,
    summary="Recibe uno o varios contactos de una fuente externa",
)
async def capture_lead(
    request: Request,
    source: schemas.LeadSource = Depends(resolve_source),
    _: None = Depends(verify_capture_secret),
    processor: service.LeadIngestionProcessor = Depends(get_ingestion_processor),
) -> schemas.CaptureResponse:
    """Acepta un objeto o un arreglo; cada elemento se procesa por separado."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Invalid JSON body") from exc
    if not isinstance(payload, (dict, list)):
        raise ValidationError("Payload must be a JSON object or array")

    logger.info(
        "capture.received",
        extra={
            "source": str(source),
            "items": len(payload) if isinstance(payload, list) else 1,
        },
    )
    outcomes = await processor.ingest(source, payload)
    return service.summarize(source, outcomes)
