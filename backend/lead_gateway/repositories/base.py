"""Acceso común a Supabase REST (PostgREST) para los repositorios del gateway."""

from __future__ import annotations

from typing import Any

import httpx

from lead_gateway.core.config import Settings, settings as default_settings
from lead_gateway.core.logging import get_logger

logger = get_logger(__name__)

_UNIQUE_VIOLATION = "23505"


class RepositoryError(RuntimeError):
    """Errores derivados de llamadas a Supabase."""

    def __init__(self, message: str, *, status: int | None = None, code: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class UniqueViolation(RepositoryError):
    """Una restricción de unicidad rechazó el insert/update."""


class SupabaseRepository:
    """Pequeña capa de acceso a Supabase REST con la service role."""

    def __init__(
        self,
        *,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        config = config or default_settings
        if not config.supabase_url:
            raise RepositoryError("Supabase URL no configurada")
        if not config.supabase_service_role:
            raise RepositoryError("Falta SUPABASE_SERVICE_ROLE para realizar la operación")
        self._base_url = config.supabase_url.rstrip("/")
        self._service_role = config.supabase_service_role
        self._timeout = config.datastore_timeout_seconds
        self._transport = transport

    async def _select(self, table: str, params: dict[str, str]) -> list[dict[str, Any]]:
        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        return self._json_list(response)

    async def _select_one(self, table: str, params: dict[str, str]) -> dict[str, Any] | None:
        rows = await self._select(table, {**params, "limit": "1"})
        return rows[0] if rows else None

    async def _insert_one(self, table: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=[payload],
            prefer="return=representation",
        )
        rows = self._json_list(response)
        if not rows:
            raise RepositoryError(f"Supabase no devolvió la fila creada en {table}")
        return rows[0]

    async def _update(
        self, table: str, params: dict[str, str], patch: dict[str, Any]
    ) -> list[dict[str, Any]]:
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=params,
            json=patch,
            prefer="return=representation",
        )
        return self._json_list(response)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        headers = self._headers(prefer, has_body=json is not None)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=headers,
                )
        except httpx.RequestError as exc:
            logger.exception("supabase.request_failed", extra={"path": path, "error": str(exc)})
            raise RepositoryError(f"Error al conectar a Supabase: {exc}") from exc
        if response.status_code >= 400:
            code = self._error_code(response)
            if response.status_code == 409 or code == _UNIQUE_VIOLATION:
                logger.info(
                    "supabase.unique_violation",
                    extra={"path": path, "status": response.status_code},
                )
                raise UniqueViolation(
                    f"Supabase rechazó duplicado en {path}",
                    status=response.status_code,
                    code=code,
                )
            logger.error(
                "supabase.response_error",
                extra={"path": path, "status": response.status_code, "body": response.text},
            )
            raise RepositoryError(
                f"Supabase respondió {response.status_code}: {response.text}",
                status=response.status_code,
                code=code,
            )
        return response

    def _headers(self, prefer: str | None, *, has_body: bool) -> dict[str, str]:
        headers: dict[str, str] = {
            "Accept": "application/json",
            "apikey": self._service_role,
            "Authorization": f"Bearer {self._service_role}",
        }
        if prefer:
            headers["Prefer"] = prefer
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    @staticmethod
    def _error_code(response: httpx.Response) -> str | None:
        try:
            payload = response.json()
        except ValueError:
            return None
        if isinstance(payload, dict) and payload.get("code") is not None:
            return str(payload["code"])
        return None

    @staticmethod
    def _json_list(response: httpx.Response) -> list[dict[str, Any]]:
        if not response.content:
            return []
        payload = response.json() or []
        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list):
            raise RepositoryError("Respuesta inesperada de Supabase")
        return [row for row in payload if isinstance(row, dict)]
