"""Cliente de la Evolution API contra un transporte simulado."""

from __future__ import annotations

import json

import httpx
import pytest

from lead_gateway.core.config import Settings
from lead_gateway.services.evolution import EvolutionClient, EvolutionError, extract_message_id


def _client(handler) -> EvolutionClient:
    return EvolutionClient(
        base_url="https://evolution.test/",
        api_key="evo-key",
        instance="imobiliaria",
        transport=httpx.MockTransport(handler),
    )


async def test_check_number_posts_to_instance_path() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200, json=[{"exists": True, "jid": "5521988887777@s.whatsapp.net", "number": "5521988887777"}]
        )

    check = await _client(handler).check_number("5521988887777")

    assert check.exists is True
    assert check.jid == "5521988887777@s.whatsapp.net"
    [request] = seen
    assert request.url.path == "/chat/whatsappNumbers/imobiliaria"
    assert request.headers["apikey"] == "evo-key"
    assert json.loads(request.content) == {"numbers": ["5521988887777"]}


async def test_check_number_empty_list_means_missing() -> None:
    check = await _client(lambda request: httpx.Response(200, json=[])).check_number("5521900000000")
    assert check.exists is False


async def test_check_number_unexpected_payload_raises() -> None:
    with pytest.raises(EvolutionError):
        await _client(lambda request: httpx.Response(200, json={"error": "x"})).check_number("55")


async def test_send_media_omits_file_name_for_images() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json={"key": {"id": "WAMID1"}})

    client = _client(handler)
    await client.send_media(
        "5521988887777",
        media_url="https://cdn.test/foto.jpg",
        media_type="image",
        mime_type="image/jpeg",
        file_name="foto.jpg",
    )
    await client.send_media(
        "5521988887777",
        media_url="https://cdn.test/contrato.pdf",
        media_type="document",
        mime_type="application/pdf",
        caption="Contrato",
        file_name="contrato.pdf",
    )

    assert "fileName" not in bodies[0]
    assert "caption" not in bodies[0]
    assert bodies[1]["fileName"] == "contrato.pdf"
    assert bodies[1]["caption"] == "Contrato"
    assert bodies[1]["mediatype"] == "document"


async def test_error_response_carries_provider_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"status": 400, "message": ["number not exists"]})

    with pytest.raises(EvolutionError) as exc_info:
        await _client(handler).send_text("5521900000000", "Olá")

    assert exc_info.value.status == 400
    assert exc_info.value.detail == ["number not exists"]


async def test_network_error_is_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(EvolutionError) as exc_info:
        await _client(handler).send_text("5521988887777", "Olá")

    assert exc_info.value.status is None


async def test_find_group_name_reads_subject() -> None:
    client = _client(lambda request: httpx.Response(200, json={"id": "1@g.us", "subject": "Corretores"}))
    assert await client.find_group_name("1@g.us") == "Corretores"


def test_extract_message_id_variants() -> None:
    assert extract_message_id({"key": {"id": "A"}}) == "A"
    assert extract_message_id({"id": "B"}) == "B"
    assert extract_message_id({"status": "PENDING"}) is None
    assert extract_message_id(None) is None


def test_from_settings_requires_credentials() -> None:
    with pytest.raises(RuntimeError):
        EvolutionClient.from_settings(Settings(_env_file=None, evolution_api_url=None))
