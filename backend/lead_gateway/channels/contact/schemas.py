"""Esquemas de `/initiate-whatsapp-contact`."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ContactResponse(BaseModel):
    """Lead y conversación usados, y si el proveedor aceptó la bienvenida."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    lead_id: str = Field(serialization_alias="leadId")
    conversation_id: str = Field(serialization_alias="conversationId")
    message_sent: bool = Field(serialization_alias="messageSent")
    created: bool | None = None
