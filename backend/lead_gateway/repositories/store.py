"""Agrupa los repositorios que los componentes reciben por inyección."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from lead_gateway.core.config import Settings

from .activity import ActivityRepository
from .conversations import ConversationsRepository
from .leads import LeadsRepository
from .messages import MessagesRepository
from .properties import PropertiesRepository


@dataclass(slots=True)
class DataStore:
    """Handles de acceso al almacén de datos para una unidad de trabajo."""

    leads: LeadsRepository
    conversations: ConversationsRepository
    messages: MessagesRepository
    properties: PropertiesRepository
    activity: ActivityRepository

    @classmethod
    def from_settings(
        cls,
        config: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> DataStore:
        kwargs = {"config": config, "transport": transport}
        return cls(
            leads=LeadsRepository(**kwargs),
            conversations=ConversationsRepository(**kwargs),
            messages=MessagesRepository(**kwargs),
            properties=PropertiesRepository(**kwargs),
            activity=ActivityRepository(**kwargs),
        )
