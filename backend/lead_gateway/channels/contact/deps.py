"""Dependencias de `/initiate-whatsapp-contact`."""

from __future__ import annotations

from fastapi import Depends

from lead_gateway.api.deps import get_data_store, get_settings
from lead_gateway.channels.whatsapp.deps import get_dispatcher
from lead_gateway.core.config import Settings
from lead_gateway.repositories.store import DataStore
from lead_gateway.services.dispatcher import OutboundDispatcher

from .service import ContactInitiator


def get_contact_initiator(
    store: DataStore = Depends(get_data_store),
    dispatcher: OutboundDispatcher = Depends(get_dispatcher),
    config: Settings = Depends(get_settings),
) -> ContactInitiator:
    return ContactInitiator(store, dispatcher, config=config)
