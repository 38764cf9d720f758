"""Dependencias reutilizables para rutas de WhatsApp."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi import Depends, Header

from lead_gateway.api.deps import get_data_store, get_evolution_client, get_settings
from lead_gateway.core.config import Settings
from lead_gateway.core.errors import Unauthorized
from lead_gateway.core.logging import get_logger
from lead_gateway.core.security import (
    SignatureError,
    decode_jwt_claims,
    parse_bearer,
    verify_shared_secret,
)
from lead_gateway.repositories.store import DataStore
from lead_gateway.services import evolution
from lead_gateway.services.dispatcher import OutboundDispatcher
from lead_gateway.services.resolver import PhoneResolver

from .service import InboundChatProcessor

logger = get_logger("lead_gateway.channels.whatsapp")


@dataclass(slots=True)
class AuthenticatedUser:
    id: str
    claims: dict[str, Any] = field(default_factory=dict)


async def require_user(
    authorization: str | None = Header(default=None),
    config: Settings = Depends(get_settings),
) -> AuthenticatedUser:
    """Valida el bearer JWT de Supabase emitido para la consola."""
    token = parse_bearer(authorization)
    if not token:
        raise Unauthorized("Unauthorized")
    if not config.supabase_jwt_secret and config.environment == "production":
        logger.error("auth.jwt_secret_missing")
        raise Unauthorized("Unauthorized")
    try:
        claims = decode_jwt_claims(token, secret=config.supabase_jwt_secret)
    except SignatureError as exc:
        logger.info("auth.token_rejected", extra={"reason": str(exc)})
        raise Unauthorized("Unauthorized") from exc
    subject = claims.get("sub")
    if not subject:
        raise Unauthorized("Unauthorized")
    return AuthenticatedUser(id=str(subject), claims=claims)


async def verify_webhook_secret(
    x_webhook_secret: str | None = Header(default=None),
    config: Settings = Depends(get_settings),
) -> None:
    """Sólo se exige cuando `evolution_webhook_secret` está configurado."""
    if not config.evolution_webhook_secret:
        return
    try:
        verify_shared_secret(config.evolution_webhook_secret, x_webhook_secret)
    except SignatureError as exc:
        logger.warning(
            "whatsapp.invalid_webhook_secret",
            extra={"header_present": bool(x_webhook_secret)},
        )
        raise Unauthorized("Unauthorized") from exc


def get_optional_evolution_client() -> evolution.EvolutionClient | None:
    try:
        return evolution.get_evolution_client()
    except RuntimeError:
        return None


def get_resolver(
    client: evolution.EvolutionClient = Depends(get_evolution_client),
    config: Settings = Depends(get_settings),
) -> PhoneResolver:
    return PhoneResolver(client, config=config)


def get_dispatcher(
    store: DataStore = Depends(get_data_store),
    client: evolution.EvolutionClient = Depends(get_evolution_client),
    resolver: PhoneResolver = Depends(get_resolver),
    config: Settings = Depends(get_settings),
) -> OutboundDispatcher:
    return OutboundDispatcher(store, client, resolver, config=config)


def get_inbound_processor(
    store: DataStore = Depends(get_data_store),
    client: evolution.EvolutionClient | None = Depends(get_optional_evolution_client),
    config: Settings = Depends(get_settings),
) -> InboundChatProcessor:
    return InboundChatProcessor(store, client, config=config)
