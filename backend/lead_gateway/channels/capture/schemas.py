"""Esquemas de los webhooks de captación de leads."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lead_gateway.services.phone import digits_only


class LeadSource(StrEnum):
    """Fuentes de leads; `?source=` acepta también los nombres históricos.

    `site-contact` sólo llega por `/initiate-whatsapp-contact`.
    """

    PORTAL_A = "portal-a"
    PORTAL_B = "portal-b"
    WEB_FORM = "web-form"
    SITE_CONTACT = "site-contact"

    @classmethod
    def parse(cls, value: str | None) -> LeadSource | None:
        if value is None or not value.strip():
            return cls.WEB_FORM
        key = value.strip().lower()
        return _SOURCE_ALIASES.get(key)

    @property
    def requires_secret(self) -> bool:
        return self in (LeadSource.PORTAL_A, LeadSource.PORTAL_B)


_SOURCE_ALIASES = {
    "portal-a": LeadSource.PORTAL_A,
    "olx": LeadSource.PORTAL_A,
    "portal-b": LeadSource.PORTAL_B,
    "imovelweb": LeadSource.PORTAL_B,
    "web-form": LeadSource.WEB_FORM,
    "website": LeadSource.WEB_FORM,
}


class _Inquiry(BaseModel):
    """Base común: los portales mandan ids numéricos o con espacios."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, str_strip_whitespace=True)

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def contact_phone(self) -> str | None:
        return getattr(self, "phone", None)

    @model_validator(mode="after")
    def _require_contact(self) -> _Inquiry:
        if not digits_only(self.contact_phone()) and not getattr(self, "email", None):
            raise ValueError("phone or email is required")
        return self


class OlxInquiry(_Inquiry):
    """Contacto recibido del portal A (Grupo ZAP / OLX Pro)."""

    name: str = Field(..., min_length=1)
    phone: str | None = None
    ddd: str | None = None
    email: str | None = None
    message: str | None = None
    ad_id: str | None = None
    contact_id: str | None = None
    created_at: str | None = None
    client_listing_id: str | None = Field(default=None, alias="clientListingId")
    origin_listing_id: str | None = Field(default=None, alias="originListingId")
    origin_lead_id: str | None = Field(default=None, alias="originLeadId")
    lead_origin: str | None = Field(default=None, alias="leadOrigin")
    timestamp: str | None = None

    def contact_phone(self) -> str | None:
        if self.ddd and self.phone:
            return f"{self.ddd}{self.phone}"
        return self.phone


class ImovelWebInquiry(_Inquiry):
    """Contacto recibido del portal B; los campos llegan en portugués."""

    name: str = Field(..., min_length=1, alias="nome")
    phone: str | None = Field(default=None, alias="telefone")
    email: str | None = None
    message: str | None = Field(default=None, alias="mensagem")
    listing_id: str | None = Field(default=None, alias="imovel_id")
    sent_at: str | None = Field(default=None, alias="data")


class WebsiteInquiry(_Inquiry):
    """Formulario de interés del sitio público."""

    name: str = Field(..., min_length=1)
    phone: str | None = None
    email: str | None = None
    message: str | None = None
    property_id: str | None = None
    property_slug: str | None = None
    property_code: str | None = None


class SiteContactInquiry(_Inquiry):
    """Pedido de contacto por WhatsApp desde la ficha de un inmueble del sitio."""

    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: str | None = None
    property_id: str = Field(..., min_length=1, alias="propertyId")
    property_title: str | None = Field(default=None, alias="propertyTitle")
    property_neighborhood: str | None = Field(default=None, alias="propertyNeighborhood")
    property_price: str | None = Field(default=None, alias="propertyPrice")
    property_purpose: Literal["rent", "sale"] | None = Field(default=None, alias="propertyPurpose")

    @property
    def message(self) -> str:
        return self.property_title or self.property_id


Inquiry = OlxInquiry | ImovelWebInquiry | WebsiteInquiry | SiteContactInquiry


class ItemResult(BaseModel):
    """Resultado de un elemento del lote."""

    index: int
    state: str
    lead_id: str | None = None
    conversation_id: str | None = None
    created: bool | None = None
    error: str | None = None


class CaptureResponse(BaseModel):
    """Respuesta de POST /capture-lead."""

    success: bool
    source: str
    lead_id: str | None = None
    partial: bool | None = None
    error: str | None = None
    results: list[ItemResult] = Field(default_factory=list)
