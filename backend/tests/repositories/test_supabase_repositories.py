"""Repositorios contra un PostgREST simulado con `httpx.MockTransport`."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from lead_gateway.core.config import Settings
from lead_gateway.repositories.base import RepositoryError, UniqueViolation
from lead_gateway.repositories.store import DataStore


def _store(
    handler: Callable[[httpx.Request], httpx.Response], test_settings: Settings
) -> DataStore:
    return DataStore.from_settings(test_settings, transport=httpx.MockTransport(handler))


async def test_select_sends_service_role_and_filters(test_settings: Settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "lead-1", "phone_normalized": "+5521988887777"}])

    store = _store(handler, test_settings)
    lead = await store.leads.find_by_normalized_phone("+5521988887777")

    assert lead == {"id": "lead-1", "phone_normalized": "+5521988887777"}
    [request] = seen
    assert request.url.path == "/rest/v1/leads"
    assert request.url.params["phone_normalized"] == "eq.+5521988887777"
    assert request.url.params["limit"] == "1"
    assert request.headers["apikey"] == "service-role"
    assert request.headers["Authorization"] == "Bearer service-role"


async def test_phone_variants_become_or_filter(test_settings: Settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    store = _store(handler, test_settings)

    assert await store.leads.find_by_phone_variants(["21988887777", "+5521988887777"]) is None
    assert seen[0].url.params["or"] == (
        "(phone.eq.21988887777,phone_normalized.eq.21988887777,"
        "phone.eq.+5521988887777,phone_normalized.eq.+5521988887777)"
    )
    assert await store.leads.find_by_phone_variants([]) is None
    assert len(seen) == 1


async def test_insert_returns_representation(test_settings: Settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = json.loads(request.content)
        return httpx.Response(201, json=[{"id": "conv-1", **body[0]}])

    store = _store(handler, test_settings)
    row = await store.conversations.create_conversation({"lead_id": "lead-1", "channel": "whatsapp"})

    assert row["id"] == "conv-1"
    assert seen[0].method == "POST"
    assert seen[0].headers["Prefer"] == "return=representation"


async def test_conflict_maps_to_unique_violation(test_settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            409, json={"code": "23505", "message": "duplicate key value violates unique constraint"}
        )

    store = _store(handler, test_settings)

    with pytest.raises(UniqueViolation) as exc_info:
        await store.leads.create_lead({"name": "Ana", "phone_normalized": "+5521988887777"})

    assert exc_info.value.code == "23505"
    assert exc_info.value.status == 409


async def test_server_error_maps_to_repository_error(test_settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    store = _store(handler, test_settings)

    with pytest.raises(RepositoryError) as exc_info:
        await store.messages.insert_message({"conversation_id": "conv-1"})

    assert not isinstance(exc_info.value, UniqueViolation)
    assert exc_info.value.status == 500


async def test_network_error_maps_to_repository_error(test_settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = _store(handler, test_settings)

    with pytest.raises(RepositoryError):
        await store.properties.find_by_slug("apto-copacabana")


async def test_status_update_filters_by_previous_states(test_settings: Settings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "msg-1", "sent_status": "read"}])

    store = _store(handler, test_settings)
    rows = await store.messages.update_status("WAMID1", "read", allowed_from=["sending", "sent"])

    assert rows == [{"id": "msg-1", "sent_status": "read"}]
    [request] = seen
    assert request.method == "PATCH"
    assert request.url.params["provider_payload->key->>id"] == "eq.WAMID1"
    assert request.url.params["sent_status"] == "in.(sending,sent)"
    assert json.loads(request.content) == {"sent_status": "read"}


async def test_conditional_update_matches_previous_value(test_settings: Settings) -> None:
    seen: list[httpx.Request] = []
    responses = [[], [{"id": "conv-1", "unread_count": 3}]]

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=responses[len(seen) - 1])

    store = _store(handler, test_settings)
    stale = await store.conversations.update_conversation_if(
        "conv-1", {"unread_count": 1}, expected={"unread_count": None}
    )
    row = await store.conversations.update_conversation_if(
        "conv-1", {"unread_count": 3}, expected={"unread_count": 2}
    )

    assert stale is None
    assert row == {"id": "conv-1", "unread_count": 3}
    assert seen[0].url.params["unread_count"] == "is.null"
    assert seen[1].url.params["unread_count"] == "eq.2"
    assert seen[1].url.params["id"] == "eq.conv-1"
    assert json.loads(seen[1].content) == {"unread_count": 3}


async def test_property_code_falls_back_to_partial_match(test_settings: Settings) -> None:
    filters: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        filters.append(request.url.params["origin_id"])
        if request.url.params["origin_id"].startswith("ilike."):
            return httpx.Response(200, json=[{"id": "prop-1", "origin_id": "AP0001A"}])
        return httpx.Response(200, json=[])

    store = _store(handler, test_settings)
    row = await store.properties.find_by_code("AP0001")

    assert row == {"id": "prop-1", "origin_id": "AP0001A"}
    assert filters == ["eq.AP0001", "ilike.*AP0001*"]


async def test_activity_record_includes_user_and_timestamp(test_settings: Settings) -> None:
    bodies: list[Any] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json=[{"id": "act-1"}])

    store = _store(handler, test_settings)
    await store.activity.record(
        "whatsapp_sent", entity_type="message", entity_id="msg-1", user_id="user-1"
    )

    [[payload]] = bodies
    assert payload["user_id"] == "user-1"
    assert payload["entity_type"] == "message"
    assert "timestamp" in payload["metadata"]


def test_missing_configuration_raises() -> None:
    config = Settings(_env_file=None, supabase_url=None, supabase_service_role=None)

    with pytest.raises(RepositoryError):
        DataStore.from_settings(config)
