"""Normalización de teléfonos para deduplicar leads y direccionar mensajes."""

from __future__ import annotations

import re

from lead_gateway.core.config import settings

_NON_DIGITS = re.compile(r"\D")

DOMESTIC_LENGTHS = (10, 11)
INTERNATIONAL_LENGTHS = (12, 13)


def digits_only(raw: str | None) -> str:
    if not raw:
        return ""
    return _NON_DIGITS.sub("", raw)


def normalize_phone(raw: str | None, *, country_code: str | None = None) -> str | None:
    """Convierte un teléfono libre en su forma internacional canónica (`+5521...`).

    Nunca falla: entradas sin dígitos devuelven `None`.
    """
    digits = digits_only(raw)
    if not digits:
        return None
    if len(digits) in DOMESTIC_LENGTHS:
        return f"+{country_code or settings.country_code}{digits}"
    return f"+{digits}"


def strip_country_code(digits: str, *, country_code: str | None = None) -> str:
    """Quita el código de país sólo de números con longitud internacional."""
    code = country_code or settings.country_code
    if digits.startswith(code) and len(digits) >= INTERNATIONAL_LENGTHS[0]:
        return digits[len(code) :]
    return digits


def phone_variants(raw: str | None, *, country_code: str | None = None) -> list[str]:
    """Grafías con las que un mismo teléfono puede estar guardado en `leads`."""
    code = country_code or settings.country_code
    digits = digits_only(raw)
    if not digits:
        return []
    local = strip_country_code(digits, country_code=code)
    candidates = [
        digits,
        local,
        f"{code}{local}",
        f"+{code}{local}",
        normalize_phone(digits, country_code=code),
    ]
    variants: list[str] = []
    for candidate in candidates:
        if candidate and candidate not in variants:
            variants.append(candidate)
    return variants
