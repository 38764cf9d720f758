"""Cliente centralizado para la Evolution API (instancia de WhatsApp)."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx

from lead_gateway.core.config import Settings, settings
from lead_gateway.core.logging import get_logger
from lead_gateway.core.security import mask_phone

logger = get_logger(__name__)

GROUP_SUFFIX = "@g.us"
ANONYMIZED_SUFFIX = "@lid"
SUBSCRIBER_SUFFIX = "@s.whatsapp.net"


class EvolutionError(RuntimeError):
    """Falla de red o respuesta de error del proveedor."""

    def __init__(self, message: str, *, status: int | None = None, detail: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.detail = detail


@dataclass(slots=True)
class NumberCheck:
    number: str
    exists: bool
    jid: str | None = None


def extract_message_id(data: Any) -> str | None:
    """El proveedor devuelve el id en `key.id` o, en versiones antiguas, en `id`."""
    if not isinstance(data, dict):
        return None
    key = data.get("key")
    if isinstance(key, dict) and key.get("id"):
        return str(key["id"])
    if data.get("id"):
        return str(data["id"])
    return None


class EvolutionClient:
    """Wrapper mínimo sobre los endpoints usados por el gateway."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        instance: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._instance = instance
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(
        cls, config: Settings, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> EvolutionClient:
        if not config.evolution_configured:
            msg = "Evolution API credentials are not configured"
            raise RuntimeError(msg)
        return cls(
            base_url=config.evolution_api_url or "",
            api_key=config.evolution_api_key or "",
            instance=config.evolution_instance_name or "",
            timeout=config.evolution_timeout_seconds,
            transport=transport,
        )

    async def check_number(self, phone: str) -> NumberCheck:
        """Consulta si el número tiene cuenta activa.

        Raises:
            EvolutionError: ante error HTTP, timeout o cuerpo inesperado.
        """
        data = await self._post(f"/chat/whatsappNumbers/{self._instance}", {"numbers": [phone]})
        if not isinstance(data, list):
            raise EvolutionError("Unexpected whatsappNumbers payload", detail=data)
        if not data or not isinstance(data[0], dict):
            return NumberCheck(number=phone, exists=False)
        row = data[0]
        return NumberCheck(number=phone, exists=row.get("exists") is True, jid=row.get("jid"))

    async def send_text(self, number: str, text: str) -> dict[str, Any]:
        data = await self._post(
            f"/message/sendText/{self._instance}", {"number": number, "text": text}
        )
        return data if isinstance(data, dict) else {"response": data}

    async def send_media(
        self,
        number: str,
        *,
        media_url: str,
        media_type: str,
        mime_type: str,
        caption: str | None = None,
        file_name: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "number": number,
            "mediatype": media_type,
            "mimetype": mime_type,
            "media": media_url,
        }
        if caption:
            body["caption"] = caption
        if file_name and media_type == "document":
            body["fileName"] = file_name
        data = await self._post(f"/message/sendMedia/{self._instance}", body)
        return data if isinstance(data, dict) else {"response": data}

    async def find_group_name(self, group_jid: str) -> str | None:
        data = await self._post(f"/group/findGroupInfos/{self._instance}", {"groupJid": group_jid})
        if not isinstance(data, dict):
            return None
        metadata = data.get("groupMetadata") if isinstance(data.get("groupMetadata"), dict) else {}
        name = data.get("subject") or metadata.get("subject") or data.get("name")
        return str(name) if name else None

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        headers = {"Content-Type": "application/json", "apikey": self._api_key}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=payload)
        except httpx.RequestError as exc:
            logger.warning(
                "evolution.request_failed",
                extra={"path": path, "error": str(exc), "number": mask_phone(payload.get("number"))},
            )
            raise EvolutionError(f"Error de red con Evolution API: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = response.text

        if response.status_code >= 400:
            detail = data.get("message") if isinstance(data, dict) and data.get("message") else data
            logger.error(
                "evolution.response_error",
                extra={"path": path, "status": response.status_code, "detail": detail},
            )
            raise EvolutionError(
                f"Evolution API respondió {response.status_code}",
                status=response.status_code,
                detail=detail,
            )
        return data


@lru_cache(maxsize=1)
def get_evolution_client() -> EvolutionClient:
    """Retorna el cliente reutilizable de la Evolution API."""
    return EvolutionClient.from_settings(settings)
