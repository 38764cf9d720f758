"""Consultas de sólo lectura sobre `properties`."""

from __future__ import annotations

from typing import Any

from .base import SupabaseRepository

PROPERTY_COLUMNS = "id,origin,origin_id,slug,title"


class PropertiesRepository(SupabaseRepository):
    """Ubica inmuebles por código externo o slug; nunca escribe."""

    async def find_by_code(self, code: str, *, origin: str | None = None) -> dict[str, Any] | None:
        """Coincidencia exacta de `origin_id` y, si no hay, coincidencia parcial."""
        params = {"select": PROPERTY_COLUMNS, "origin_id": f"eq.{code}"}
        if origin:
            params["origin"] = f"eq.{origin}"
            return await self._select_one("properties", params)
        exact = await self._select_one("properties", params)
        if exact:
            return exact
        return await self._select_one(
            "properties",
            {"select": PROPERTY_COLUMNS, "origin_id": f"ilike.*{code}*"},
        )

    async def find_by_slug(self, slug: str) -> dict[str, Any] | None:
        return await self._select_one("properties", {"select": PROPERTY_COLUMNS, "slug": f"eq.{slug}"})

    async def fetch_property(self, property_id: str) -> dict[str, Any] | None:
        return await self._select_one(
            "properties", {"select": PROPERTY_COLUMNS, "id": f"eq.{property_id}"}
        )
