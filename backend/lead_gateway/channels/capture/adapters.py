"""Adaptadores por fuente: validan el payload y lo llevan a un candidato común."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, ClassVar

from lead_gateway.models.conversation import Channel
from lead_gateway.models.lead import LeadOrigin
from lead_gateway.repositories.properties import PropertiesRepository
from lead_gateway.services.phone import normalize_phone

from .schemas import (
    ImovelWebInquiry,
    Inquiry,
    LeadSource,
    OlxInquiry,
    SiteContactInquiry,
    WebsiteInquiry,
)

_LISTING_CODE = re.compile(r"Código do anúncio:\s*([A-Z]{2}\d{4}[A-Z]?)", re.IGNORECASE)
_FORM_CODE = re.compile(r"Código:\s*([A-Z]{2}\d{4}[A-Z]?)", re.IGNORECASE)
_URL_ID = re.compile(r"id-(\d+)")


def extract_listing_code(message: str | None) -> str | None:
    """Busca el código del anuncio dentro del texto libre del portal."""
    if not message:
        return None
    match = _LISTING_CODE.search(message)
    if match:
        return match.group(1).upper()
    match = _URL_ID.search(message)
    if match:
        return match.group(1)
    return None


def extract_form_code(message: str | None) -> str | None:
    if not message:
        return None
    match = _FORM_CODE.search(message)
    return match.group(1).upper() if match else None


@dataclass(slots=True)
class LeadCandidate:
    """Datos de un contacto ya validados, independientes de la fuente."""

    name: str
    phone: str | None
    phone_normalized: str | None
    email: str | None
    message: str | None
    reference: dict[str, Any] = field(default_factory=dict)


class SourceAdapter:
    """Contrato de cada fuente: esquema, origen, canal y resolución del inmueble."""

    source: ClassVar[LeadSource]
    schema: ClassVar[type[Inquiry]]
    origin: ClassVar[LeadOrigin]
    channel: ClassVar[Channel]
    note_prefix: ClassVar[str]

    def parse(self, raw: dict[str, Any]) -> Inquiry:
        return self.schema.model_validate(raw)

    def candidate(self, inquiry: Inquiry, *, country_code: str | None = None) -> LeadCandidate:
        phone = inquiry.contact_phone()
        return LeadCandidate(
            name=inquiry.name,
            phone=phone,
            phone_normalized=normalize_phone(phone, country_code=country_code),
            email=inquiry.email,
            message=inquiry.message,
            reference=self.reference(inquiry),
        )

    def reference(self, inquiry: Inquiry) -> dict[str, Any]:
        return {}

    def note(self, message: str) -> str:
        return f"{self.note_prefix}: {message}"

    def initial_note(self, message: str | None) -> str | None:
        """Notas de un lead recién creado; por defecto el texto tal como llegó."""
        return message

    async def resolve_property(
        self, properties: PropertiesRepository, inquiry: Inquiry
    ) -> str | None:
        raise NotImplementedError


class OlxAdapter(SourceAdapter):
    source = LeadSource.PORTAL_A
    schema = OlxInquiry
    origin = LeadOrigin.OLX
    channel = Channel.OLX_CHAT
    note_prefix = "OLX"

    def property_code(self, inquiry: OlxInquiry) -> str | None:
        return inquiry.client_listing_id or inquiry.ad_id or extract_listing_code(inquiry.message)

    def reference(self, inquiry: OlxInquiry) -> dict[str, Any]:
        data = {
            "property_code": self.property_code(inquiry),
            "origin_lead_id": inquiry.origin_lead_id,
            "origin_listing_id": inquiry.origin_listing_id,
            "lead_origin": inquiry.lead_origin,
        }
        return {key: value for key, value in data.items() if value}

    async def resolve_property(
        self, properties: PropertiesRepository, inquiry: OlxInquiry
    ) -> str | None:
        code = self.property_code(inquiry)
        if not code:
            return None
        found = await properties.find_by_code(code)
        return found["id"] if found else None


class ImovelWebAdapter(SourceAdapter):
    source = LeadSource.PORTAL_B
    schema = ImovelWebInquiry
    origin = LeadOrigin.IMOVELWEB
    channel = Channel.INTERNAL
    note_prefix = "ImovelWeb"

    def reference(self, inquiry: ImovelWebInquiry) -> dict[str, Any]:
        return {"property_code": inquiry.listing_id} if inquiry.listing_id else {}

    async def resolve_property(
        self, properties: PropertiesRepository, inquiry: ImovelWebInquiry
    ) -> str | None:
        if not inquiry.listing_id:
            return None
        found = await properties.find_by_code(inquiry.listing_id, origin=str(LeadOrigin.IMOVELWEB))
        return found["id"] if found else None


class WebsiteAdapter(SourceAdapter):
    source = LeadSource.WEB_FORM
    schema = WebsiteInquiry
    origin = LeadOrigin.WEBSITE
    channel = Channel.WHATSAPP
    note_prefix = "Site"

    def reference(self, inquiry: WebsiteInquiry) -> dict[str, Any]:
        data = {
            "property_id": inquiry.property_id,
            "property_slug": inquiry.property_slug,
            "property_code": inquiry.property_code or extract_form_code(inquiry.message),
        }
        return {key: value for key, value in data.items() if value}

    async def resolve_property(
        self, properties: PropertiesRepository, inquiry: WebsiteInquiry
    ) -> str | None:
        if inquiry.property_id:
            found = await properties.fetch_property(inquiry.property_id)
            if found:
                return found["id"]
        if inquiry.property_slug:
            found = await properties.find_by_slug(inquiry.property_slug)
            if found:
                return found["id"]
        code = inquiry.property_code or extract_form_code(inquiry.message)
        if code:
            found = await properties.find_by_code(code)
            if found:
                return found["id"]
        return None


class SiteContactAdapter(SourceAdapter):
    """Contacto iniciado desde la ficha del inmueble; no pasa por `/capture-lead`."""

    source = LeadSource.SITE_CONTACT
    schema = SiteContactInquiry
    origin = LeadOrigin.SITE_WHATSAPP
    channel = Channel.WHATSAPP
    note_prefix = "Interessado em"

    def reference(self, inquiry: SiteContactInquiry) -> dict[str, Any]:
        return {"property_id": inquiry.property_id}

    def initial_note(self, message: str | None) -> str | None:
        return self.note(message) if message else None

    async def resolve_property(
        self, properties: PropertiesRepository, inquiry: SiteContactInquiry
    ) -> str | None:
        found = await properties.fetch_property(inquiry.property_id)
        return found["id"] if found else None


ADAPTERS: dict[LeadSource, SourceAdapter] = {
    adapter.source: adapter for adapter in (OlxAdapter(), ImovelWebAdapter(), WebsiteAdapter())
}


def adapter_for(source: LeadSource) -> SourceAdapter:
    return ADAPTERS[source]
