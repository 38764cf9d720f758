"""Dependencias compartidas: configuración, almacén y cliente del proveedor."""

from __future__ import annotations

from fastapi import Depends

from lead_gateway.core.config import Settings, settings
from lead_gateway.core.errors import GatewayError
from lead_gateway.core.logging import get_logger
from lead_gateway.repositories.base import RepositoryError
from lead_gateway.repositories.store import DataStore
from lead_gateway.services import evolution

logger = get_logger(__name__)


def get_settings() -> Settings:
    return settings


def get_data_store(config: Settings = Depends(get_settings)) -> DataStore:
    """Un juego de repositorios por request."""
    try:
        return DataStore.from_settings(config)
    except RepositoryError as exc:
        logger.error("datastore.not_configured", extra={"error": str(exc)})
        raise GatewayError("Data store not configured") from exc


def get_evolution_client() -> evolution.EvolutionClient:
    try:
        return evolution.get_evolution_client()
    except RuntimeError as exc:
        logger.error("evolution.not_configured", extra={"error": str(exc)})
        raise GatewayError("WhatsApp integration not configured") from exc
