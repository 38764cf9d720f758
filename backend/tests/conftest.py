"""Fixtures compartidas para las pruebas."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import itertools
import json
import time
from typing import Any, Iterable

import pytest
from httpx import ASGITransport, AsyncClient

from lead_gateway.api.deps import get_data_store, get_evolution_client, get_settings
from lead_gateway.channels.whatsapp.deps import get_optional_evolution_client
from lead_gateway.core.config import Settings
from lead_gateway.main import app
from lead_gateway.repositories.base import RepositoryError, UniqueViolation
from lead_gateway.repositories.store import DataStore
from lead_gateway.services.evolution import EvolutionError, NumberCheck

JWT_SECRET = "test-jwt-secret"
CAPTURE_SECRET = "portal-secret"

MESSAGE_COLUMNS = frozenset(
    {
        "id",
        "conversation_id",
        "created_at",
        "direction",
        "content",
        "media_url",
        "message_type",
        "provider",
        "provider_payload",
        "sent_status",
    }
)

_ids = itertools.count(1)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{next(_ids)}"


def _duplicate() -> UniqueViolation:
    return UniqueViolation("duplicate key value", status=409, code="23505")


class FakeLeads:
    """`leads` en memoria con la unicidad de `phone_normalized`."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.fail_writes = False

    def add(self, **fields: Any) -> dict[str, Any]:
        row = {"id": _new_id("lead"), "notes": None, "email": None, "property_id": None, **fields}
        self.rows[row["id"]] = row
        return row

    async def find_by_normalized_phone(self, phone_normalized: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        for row in self.rows.values():
            if row.get("phone_normalized") == phone_normalized:
                return dict(row)
        return None

    async def find_by_phone_variants(self, variants: list[str]) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        for row in self.rows.values():
            if row.get("phone") in variants or row.get("phone_normalized") in variants:
                return dict(row)
        return None

    async def fetch_lead(self, lead_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        row = self.rows.get(lead_id)
        return dict(row) if row else None

    async def create_lead(self, payload: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise RepositoryError("Supabase respondió 500", status=500)
        self._check_unique(payload.get("phone_normalized"))
        return dict(self.add(**payload))

    async def update_lead(self, lead_id: str, patch: dict[str, Any]) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise RepositoryError("Supabase respondió 500", status=500)
        if "phone_normalized" in patch:
            self._check_unique(patch["phone_normalized"], exclude=lead_id)
        row = self.rows.get(lead_id)
        if row is None:
            return None
        row.update(patch)
        return dict(row)

    def _check_unique(self, phone_normalized: str | None, exclude: str | None = None) -> None:
        if not phone_normalized:
            return
        for row in self.rows.values():
            if row["id"] != exclude and row.get("phone_normalized") == phone_normalized:
                raise _duplicate()


class FakeConversations:
    """`conversations` en memoria: un hilo abierto por (lead, canal) o por hilo externo."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, Any]] = {}
        self.fail_writes = False

    def add(self, **fields: Any) -> dict[str, Any]:
        row = {
            "id": _new_id("conv"),
            "is_group": False,
            "external_thread_id": None,
            "group_name": None,
            "archived": False,
            "unread_count": 0,
            "last_message_at": None,
            "last_message_preview": None,
            **fields,
        }
        self.rows[row["id"]] = row
        return row

    def open_rows(self) -> list[dict[str, Any]]:
        return [row for row in self.rows.values() if not row["archived"]]

    async def find_open_for_lead(self, lead_id: str, channel: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        return self._first(
            row
            for row in self.open_rows()
            if row["lead_id"] == lead_id and row["channel"] == channel and not row["is_group"]
        )

    async def find_open_for_thread(self, external_thread_id: str, channel: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        return self._first(
            row
            for row in self.open_rows()
            if row["external_thread_id"] == external_thread_id and row["channel"] == channel
        )

    async def find_latest_archived(
        self,
        *,
        channel: str,
        lead_id: str | None = None,
        external_thread_id: str | None = None,
    ) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        candidates = [
            row
            for row in self.rows.values()
            if row["archived"]
            and row["channel"] == channel
            and (
                row["external_thread_id"] == external_thread_id
                if external_thread_id
                else row["lead_id"] == lead_id and not row["is_group"]
            )
        ]
        return dict(candidates[-1]) if candidates else None

    async def fetch_conversation(self, conversation_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        row = self.rows.get(conversation_id)
        return dict(row) if row else None

    async def create_conversation(self, payload: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise RepositoryError("Supabase respondió 500", status=500)
        self._check_unique({**payload, "archived": False})
        return dict(self.add(**payload))

    async def update_conversation(
        self, conversation_id: str, patch: dict[str, Any]
    ) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise RepositoryError("Supabase respondió 500", status=500)
        row = self.rows.get(conversation_id)
        if row is None:
            return None
        if patch.get("archived") is False and row["archived"]:
            self._check_unique({**row, **patch}, exclude=conversation_id)
        row.update(patch)
        return dict(row)

    async def update_conversation_if(
        self, conversation_id: str, patch: dict[str, Any], *, expected: dict[str, Any]
    ) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise RepositoryError("Supabase respondió 500", status=500)
        row = self.rows.get(conversation_id)
        if row is None or any(row.get(column) != value for column, value in expected.items()):
            return None
        row.update(patch)
        return dict(row)

    def _check_unique(self, candidate: dict[str, Any], exclude: str | None = None) -> None:
        for row in self.open_rows():
            if row["id"] == exclude or row["channel"] != candidate["channel"]:
                continue
            if candidate.get("is_group"):
                if row["external_thread_id"] == candidate.get("external_thread_id"):
                    raise _duplicate()
            elif not row["is_group"] and row["lead_id"] == candidate.get("lead_id"):
                raise _duplicate()

    @staticmethod
    def _first(rows: Iterable[dict[str, Any]]) -> dict[str, Any] | None:
        for row in rows:
            return dict(row)
        return None


class FakeMessages:
    """`messages` con las columnas reales y el índice único sobre el id del proveedor."""

    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []
        self.fail_writes = False

    def add(self, **fields: Any) -> dict[str, Any]:
        row = {"id": _new_id("msg"), **fields}
        self.rows.append(row)
        return row

    async def insert_message(self, payload: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise RepositoryError("Supabase respondió 500", status=500)
        unknown = set(payload) - MESSAGE_COLUMNS
        if unknown:
            raise RepositoryError(
                f"Supabase respondió 400: unknown columns {sorted(unknown)}", status=400, code="PGRST204"
            )
        provider_id = _provider_id(payload)
        if provider_id and any(_provider_id(row) == provider_id for row in self.rows):
            raise _duplicate()
        return dict(self.add(**payload))

    async def find_by_provider_id(self, provider_message_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        for row in self.rows:
            if _provider_id(row) == provider_message_id:
                return dict(row)
        return None

    async def update_status(
        self, provider_message_id: str, status: str, *, allowed_from: Iterable[str]
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        allowed = set(allowed_from)
        updated = []
        for row in self.rows:
            if _provider_id(row) == provider_message_id and row.get("sent_status") in allowed:
                row["sent_status"] = status
                updated.append(dict(row))
        return updated


def _provider_id(row: dict[str, Any]) -> str | None:
    payload = row.get("provider_payload") or {}
    key = payload.get("key") or {}
    return key.get("id")


class FakeProperties:
    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []

    def add(self, **fields: Any) -> dict[str, Any]:
        row = {"id": _new_id("prop"), "origin": None, "origin_id": None, "slug": None, **fields}
        self.rows.append(row)
        return row

    async def find_by_code(self, code: str, *, origin: str | None = None) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        for row in self.rows:
            if row["origin_id"] == code and (origin is None or row["origin"] == origin):
                return dict(row)
        if origin:
            return None
        for row in self.rows:
            if row["origin_id"] and code.lower() in row["origin_id"].lower():
                return dict(row)
        return None

    async def find_by_slug(self, slug: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        return next((dict(row) for row in self.rows if row["slug"] == slug), None)

    async def fetch_property(self, property_id: str) -> dict[str, Any] | None:
        await asyncio.sleep(0)
        return next((dict(row) for row in self.rows if row["id"] == property_id), None)


class FakeActivity:
    def __init__(self) -> None:
        self.entries: list[dict[str, Any]] = []
        self.fail_writes = False

    async def record(
        self,
        action: str,
        *,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any] | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        await asyncio.sleep(0)
        if self.fail_writes:
            raise RepositoryError("Supabase respondió 500", status=500)
        entry = {
            "id": _new_id("act"),
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "metadata": metadata or {},
            "user_id": user_id,
        }
        self.entries.append(entry)
        return entry


class FakeEvolutionClient:
    """Instancia de WhatsApp simulada: números existentes, fallos y envíos."""

    def __init__(self) -> None:
        self.existing: set[str] = set()
        self.failing: set[str] = set()
        self.probes: list[str] = []
        self.sent: list[dict[str, Any]] = []
        self.group_names: dict[str, str] = {}
        self.group_lookups: list[str] = []
        self.send_error: EvolutionError | None = None

    async def check_number(self, phone: str) -> NumberCheck:
        self.probes.append(phone)
        if phone in self.failing:
            raise EvolutionError("Evolution API respondió 503", status=503)
        exists = phone in self.existing
        return NumberCheck(
            number=phone, exists=exists, jid=f"{phone}@s.whatsapp.net" if exists else None
        )

    async def send_text(self, number: str, text: str) -> dict[str, Any]:
        return self._send({"number": number, "text": text})

    async def send_media(self, number: str, **media: Any) -> dict[str, Any]:
        return self._send({"number": number, **media})

    async def find_group_name(self, group_jid: str) -> str | None:
        self.group_lookups.append(group_jid)
        return self.group_names.get(group_jid)

    def _send(self, body: dict[str, Any]) -> dict[str, Any]:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(body)
        return {"key": {"id": f"WAMID{len(self.sent)}", "fromMe": True}, "status": "PENDING"}


def make_store() -> DataStore:
    return DataStore(
        leads=FakeLeads(),
        conversations=FakeConversations(),
        messages=FakeMessages(),
        properties=FakeProperties(),
        activity=FakeActivity(),
    )


def make_token(
    sub: str = "user-1", *, secret: str = JWT_SECRET, expires_in: int = 3600
) -> str:
    def _segment(data: dict[str, Any]) -> str:
        raw = json.dumps(data, separators=(",", ":")).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    header = _segment({"alg": "HS256", "typ": "JWT"})
    payload = _segment({"sub": sub, "exp": int(time.time()) + expires_in, "role": "authenticated"})
    signature = hmac.new(secret.encode(), f"{header}.{payload}".encode(), hashlib.sha256).digest()
    return f"{header}.{payload}.{base64.urlsafe_b64encode(signature).rstrip(b'=').decode()}"


@pytest.fixture(name="test_settings")
def fixture_test_settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        supabase_url="https://supabase.test",
        supabase_service_role="service-role",
        supabase_jwt_secret=JWT_SECRET,
        evolution_api_url="https://evolution.test",
        evolution_api_key="evo-key",
        evolution_instance_name="imobiliaria",
        evolution_webhook_secret=None,
        capture_webhook_secret=CAPTURE_SECRET,
        pacing_min_seconds=0.0,
        pacing_max_seconds=0.0,
    )


@pytest.fixture(name="store")
def fixture_store() -> DataStore:
    return make_store()


@pytest.fixture(name="evolution")
def fixture_evolution() -> FakeEvolutionClient:
    return FakeEvolutionClient()


@pytest.fixture(name="auth_headers")
def fixture_auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture(name="async_client")
async def fixture_async_client(
    test_settings: Settings, store: DataStore, evolution: FakeEvolutionClient
) -> AsyncClient:
    """Retorna un cliente asíncrono contra la app principal utilizando ASGITransport."""
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_data_store] = lambda: store
    app.dependency_overrides[get_evolution_client] = lambda: evolution
    app.dependency_overrides[get_optional_evolution_client] = lambda: evolution
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
