"""Repositorio de leads vía Supabase REST."""

from __future__ import annotations

from typing import Any, Iterable

from .base import SupabaseRepository

LEAD_COLUMNS = (
    "id,name,phone,phone_normalized,email,origin,property_id,notes,status,created_at,updated_at"
)


def _or_filter(variants: Iterable[str]) -> str:
    clauses: list[str] = []
    for variant in variants:
        clauses.append(f"phone.eq.{variant}")
        clauses.append(f"phone_normalized.eq.{variant}")
    return f"({','.join(clauses)})"


class LeadsRepository(SupabaseRepository):
    """Lecturas y escrituras sobre la tabla `leads`."""

    async def find_by_normalized_phone(self, phone_normalized: str) -> dict[str, Any] | None:
        return await self._select_one(
            "leads",
            {"select": LEAD_COLUMNS, "phone_normalized": f"eq.{phone_normalized}"},
        )

    async def find_by_phone_variants(self, variants: list[str]) -> dict[str, Any] | None:
        """Busca un lead cuyo `phone` o `phone_normalized` coincida con alguna variante."""
        if not variants:
            return None
        return await self._select_one(
            "leads",
            {
                "select": LEAD_COLUMNS,
                "or": _or_filter(variants),
                "order": "created_at.asc",
            },
        )

    async def fetch_lead(self, lead_id: str) -> dict[str, Any] | None:
        return await self._select_one("leads", {"select": LEAD_COLUMNS, "id": f"eq.{lead_id}"})

    async def create_lead(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._insert_one("leads", payload)

    async def update_lead(self, lead_id: str, patch: dict[str, Any]) -> dict[str, Any] | None:
        rows = await self._update("leads", {"id": f"eq.{lead_id}"}, patch)
        return rows[0] if rows else None
