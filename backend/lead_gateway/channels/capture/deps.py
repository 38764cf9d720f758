"""Dependencias del webhook de captación."""

from __future__ import annotations

from fastapi import Depends, Header, Query

from lead_gateway.api.deps import get_data_store, get_settings
from lead_gateway.core.config import Settings
from lead_gateway.core.errors import Unauthorized, ValidationError
from lead_gateway.core.logging import get_logger
from lead_gateway.core.security import SignatureError, verify_shared_secret
from lead_gateway.repositories.store import DataStore

from .schemas import LeadSource
from .service import LeadIngestionProcessor

logger = get_logger("lead_gateway.channels.capture")


async def resolve_source(
    source: str | None = Query(default=None, description="portal-a, portal-b o web-form."),
) -> LeadSource:
    parsed = LeadSource.parse(source)
    if parsed is None:
        raise ValidationError(f"Unknown source: {source}", source=source)
    return parsed


async def verify_capture_secret(
    source: LeadSource = Depends(resolve_source),
    x_webhook_secret: str | None = Header(default=None),
    config: Settings = Depends(get_settings),
) -> None:
    """Los portales deben enviar `x-webhook-secret` cuando hay secreto configurado."""
    expected = config.capture_webhook_secret
    if not source.requires_secret or not expected:
        return
    try:
        verify_shared_secret(expected, x_webhook_secret)
    except SignatureError as exc:
        logger.warning(
            "capture.invalid_secret",
            extra={"source": str(source), "header_present": bool(x_webhook_secret)},
        )
        raise Unauthorized("Unauthorized") from exc


def get_ingestion_processor(
    store: DataStore = Depends(get_data_store),
    config: Settings = Depends(get_settings),
) -> LeadIngestionProcessor:
    return LeadIngestionProcessor(store, config=config)
