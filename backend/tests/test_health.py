"""Pruebas del endpoint `/health`."""

from httpx import AsyncClient


async def test_health_returns_ok(async_client: AsyncClient) -> None:
    response = await async_client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["whatsapp_configured"] is True


async def test_health_echoes_request_id(async_client: AsyncClient) -> None:
    response = await async_client.get("/health", headers={"x-request-id": "req-123"})
    assert response.headers["x-request-id"] == "req-123"
