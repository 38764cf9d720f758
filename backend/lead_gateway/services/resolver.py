"""Resolución de identificadores de contacto a destinos enviables."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from lead_gateway.core.config import Settings, settings
from lead_gateway.core.logging import get_logger
from lead_gateway.core.security import mask_phone

from .evolution import (
    ANONYMIZED_SUFFIX,
    GROUP_SUFFIX,
    SUBSCRIBER_SUFFIX,
    EvolutionClient,
    EvolutionError,
)
from .phone import DOMESTIC_LENGTHS, INTERNATIONAL_LENGTHS, digits_only, strip_country_code

logger = get_logger(__name__)

LOCAL_LENGTHS = (8, 9)


@dataclass(slots=True, frozen=True)
class ResolvedAddress:
    """Destino confirmado por la red de mensajería."""

    target: str
    jid: str | None
    phone_normalized: str | None
    is_group: bool = False
    corrected: bool = False


class PhoneResolver:
    """Convierte un teléfono crudo en un destino válido.

    Los grupos pasan sin consulta; los identificadores anónimos (`@lid`) nunca
    se resuelven. Para el resto se consulta `whatsappNumbers` en orden:
    número completo, número con código de país y, si falta el DDD, cada código
    de área configurado hasta el primero que exista.

    Una instancia por request: los resultados quedan en memoria sólo durante
    esa unidad de trabajo.
    """

    def __init__(
        self,
        client: EvolutionClient,
        *,
        config: Settings | None = None,
        area_codes: Sequence[str] | None = None,
    ) -> None:
        self._client = client
        self._config = config or settings
        self._area_codes = tuple(area_codes or self._config.fallback_area_codes)
        self._cache: dict[str, ResolvedAddress | None] = {}
        self.probe_count = 0

    async def resolve(self, identifier: str) -> ResolvedAddress | None:
        raw = (identifier or "").strip()
        if not raw:
            return None
        if raw in self._cache:
            return self._cache[raw]
        resolved = await self._resolve(raw)
        self._cache[raw] = resolved
        return resolved

    async def _resolve(self, raw: str) -> ResolvedAddress | None:
        if raw.endswith(GROUP_SUFFIX):
            return ResolvedAddress(target=raw, jid=raw, phone_normalized=None, is_group=True)
        if raw.endswith(ANONYMIZED_SUFFIX):
            logger.info("resolver.anonymized_identifier", extra={"identifier": raw})
            return None
        if raw.endswith(SUBSCRIBER_SUFFIX):
            raw = raw[: -len(SUBSCRIBER_SUFFIX)]
        elif "@" in raw:
            logger.info("resolver.unsupported_suffix", extra={"identifier": raw})
            return None

        code = self._config.country_code
        digits = digits_only(raw)
        if not digits:
            return None

        if digits.startswith(code) and len(digits) in INTERNATIONAL_LENGTHS:
            found = await self._probe(digits)
            if found:
                return found

        local = strip_country_code(digits, country_code=code)
        if len(local) in DOMESTIC_LENGTHS:
            candidate = f"{code}{local}"
            if candidate != digits:
                found = await self._probe(candidate, corrected=True)
                if found:
                    return found
        elif len(local) in LOCAL_LENGTHS:
            for area in self._area_codes:
                found = await self._probe(f"{code}{area}{local}", corrected=True)
                if found:
                    logger.info(
                        "resolver.area_code_inferred",
                        extra={"area_code": area, "phone": mask_phone(found.target)},
                    )
                    return found

        logger.info(
            "resolver.unresolved",
            extra={"phone": mask_phone(digits), "probes": self.probe_count},
        )
        return None

    async def _probe(self, candidate: str, *, corrected: bool = False) -> ResolvedAddress | None:
        self.probe_count += 1
        try:
            check = await self._client.check_number(candidate)
        except EvolutionError as exc:
            # Se trata como inexistente, pero con evento propio.
            logger.warning(
                "resolver.probe_failed",
                extra={"phone": mask_phone(candidate), "error": str(exc), "status": exc.status},
            )
            return None
        if not check.exists:
            return None
        return ResolvedAddress(
            target=candidate,
            jid=check.jid,
            phone_normalized=f"+{candidate}",
            corrected=corrected,
        )
