"""Valores de dominio para leads."""

from enum import StrEnum


class LeadOrigin(StrEnum):
    """Origen del lead tal como se guarda en `leads.origin`."""

    OLX = "olx"
    IMOVELWEB = "imovelweb"
    WEBSITE = "website"
    MANUAL = "manual"
    WHATSAPP = "whatsapp"
    SITE_WHATSAPP = "site_whatsapp"


class LeadStatus(StrEnum):
    """Etapas del pipeline que el gateway puede asignar."""

    FIRST_CONTACT = "entrou_em_contato"
