"""Endpoint de salud mínimo para validaciones rápidas."""
from fastapi import APIRouter, Depends

from lead_gateway.api.deps import get_settings
from lead_gateway.core.config import Settings

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", summary="Estado del servicio")
def healthcheck(config: Settings = Depends(get_settings)) -> dict[str, str | bool]:
    """Indica que la API está viva y si el proveedor de WhatsApp está configurado."""
    return {
        "status": "ok",
        "environment": config.environment,
        "whatsapp_configured": config.evolution_configured,
    }
