"""Procesamiento de webhooks de captación: dedupe, persistencia y primer hilo."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from lead_gateway.core.config import Settings, settings
from lead_gateway.core.errors import GatewayError, PartialIngestion, ValidationError
from lead_gateway.core.logging import get_logger
from lead_gateway.core.security import mask_phone
from lead_gateway.models.conversation import Direction, NewMessage, SentStatus
from lead_gateway.models.lead import LeadStatus
from lead_gateway.repositories.base import RepositoryError, UniqueViolation
from lead_gateway.repositories.store import DataStore
from lead_gateway.services.conversation_store import ConversationStore

from . import schemas
from .adapters import LeadCandidate, SourceAdapter, adapter_for

logger = get_logger("lead_gateway.channels.capture")


class IngestionState(StrEnum):
    RECEIVED = "received"
    VALIDATED = "validated"
    DEDUPLICATED = "deduplicated"
    PERSISTED = "persisted"
    THREADED = "threaded"
    LOGGED = "logged"
    REJECTED = "rejected"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(slots=True)
class ItemOutcome:
    """Estado final de un elemento del lote."""

    index: int
    state: IngestionState = IngestionState.RECEIVED
    lead_id: str | None = None
    conversation_id: str | None = None
    created: bool | None = None
    error: str | None = None

    @property
    def lead_persisted(self) -> bool:
        return self.state in (IngestionState.LOGGED, IngestionState.PARTIAL)


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        message = error.get("msg", "invalid")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "invalid payload"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LeadIngestionProcessor:
    """Lleva cada contacto recibido por webhook hasta lead, conversación y auditoría.

    Estados por elemento::

        received -> validated -> deduplicated -> persisted -> threaded -> logged

    con salidas `rejected` (payload inválido, sin escrituras), `failed` (la
    escritura del lead falló) y `partial` (lead guardado, hilo o auditoría no).
    Un elemento nunca interrumpe a los demás del lote.
    """

    def __init__(self, store: DataStore, *, config: Settings | None = None) -> None:
        self._store = store
        self._config = config or settings
        self._conversations = ConversationStore(store, config=self._config)

    async def ingest(self, source: schemas.LeadSource, payload: Any) -> list[ItemOutcome]:
        items = payload if isinstance(payload, list) else [payload]
        if not items:
            raise ValidationError("Empty payload")
        adapter = adapter_for(source)
        outcomes = []
        for index, raw in enumerate(items):
            outcomes.append(await self._ingest_item(adapter, index, raw))
        return outcomes

    async def _ingest_item(self, adapter: SourceAdapter, index: int, raw: Any) -> ItemOutcome:
        outcome = ItemOutcome(index=index)
        if not isinstance(raw, dict):
            return self._reject(adapter, outcome, "Payload item must be a JSON object")
        try:
            inquiry = adapter.parse(raw)
        except PydanticValidationError as exc:
            return self._reject(adapter, outcome, _describe(exc))
        candidate = adapter.candidate(inquiry, country_code=self._config.country_code)
        outcome.state = IngestionState.VALIDATED

        property_id = await self._resolve_property(adapter, inquiry)

        try:
            existing = None
            if candidate.phone_normalized:
                existing = await self._store.leads.find_by_normalized_phone(
                    candidate.phone_normalized
                )
            outcome.state = IngestionState.DEDUPLICATED
            lead, created = await self._persist_lead(adapter, candidate, existing, property_id)
        except RepositoryError as exc:
            outcome.state = IngestionState.FAILED
            outcome.error = str(exc)
            logger.exception(
                "capture.lead_write_failed",
                extra={"source": str(adapter.source), "item_index": index, "error": str(exc)},
            )
            return outcome

        outcome.lead_id = lead["id"]
        outcome.created = created
        outcome.state = IngestionState.PERSISTED

        try:
            await self._thread_and_log(adapter, candidate, lead, outcome, property_id)
        except PartialIngestion as exc:
            outcome.state = IngestionState.PARTIAL
            outcome.error = exc.message
            logger.warning(
                "capture.partial",
                extra={
                    "source": str(adapter.source),
                    "lead_id": exc.lead_id,
                    "conversation_id": outcome.conversation_id,
                    "error": exc.message,
                },
            )
        return outcome

    async def upsert_lead(
        self, adapter: SourceAdapter, inquiry: schemas.Inquiry
    ) -> tuple[dict[str, Any], bool, str | None]:
        """Deduplica por teléfono y crea o actualiza el lead de un payload ya validado.

        Devuelve `(lead, creado, property_id)`. Los errores del almacén se
        propagan como `RepositoryError`.
        """
        candidate = adapter.candidate(inquiry, country_code=self._config.country_code)
        property_id = await self._resolve_property(adapter, inquiry)
        existing = None
        if candidate.phone_normalized:
            existing = await self._store.leads.find_by_normalized_phone(candidate.phone_normalized)
        lead, created = await self._persist_lead(adapter, candidate, existing, property_id)
        return lead, created, property_id

    def _reject(self, adapter: SourceAdapter, outcome: ItemOutcome, reason: str) -> ItemOutcome:
        outcome.state = IngestionState.REJECTED
        outcome.error = reason
        logger.info(
            "capture.rejected",
            extra={"source": str(adapter.source), "item_index": outcome.index, "reason": reason},
        )
        return outcome

    async def _resolve_property(self, adapter: SourceAdapter, inquiry: schemas.Inquiry) -> str | None:
        try:
            property_id = await adapter.resolve_property(self._store.properties, inquiry)
        except RepositoryError as exc:
            # El inmueble es opcional; un fallo de lectura no bloquea el lead.
            logger.warning(
                "capture.property_lookup_failed",
                extra={"source": str(adapter.source), "error": str(exc)},
            )
            return None
        if property_id is None:
            logger.info(
                "capture.property_unmatched",
                extra={"source": str(adapter.source), **adapter.reference(inquiry)},
            )
        return property_id

    async def _persist_lead(
        self,
        adapter: SourceAdapter,
        candidate: LeadCandidate,
        existing: dict[str, Any] | None,
        property_id: str | None,
    ) -> tuple[dict[str, Any], bool]:
        if existing:
            return await self._update_lead(adapter, candidate, existing, property_id), False

        payload = {
            "name": candidate.name,
            "phone": candidate.phone,
            "phone_normalized": candidate.phone_normalized,
            "email": candidate.email,
            "origin": str(adapter.origin),
            "property_id": property_id,
            "notes": adapter.initial_note(candidate.message),
            "status": str(LeadStatus.FIRST_CONTACT),
        }
        try:
            lead = await self._store.leads.create_lead(payload)
        except UniqueViolation:
            winner = None
            if candidate.phone_normalized:
                winner = await self._store.leads.find_by_normalized_phone(
                    candidate.phone_normalized
                )
            if winner is None:
                raise
            logger.info(
                "capture.lead_create_race_resolved",
                extra={"lead_id": winner.get("id"), "source": str(adapter.source)},
            )
            return await self._update_lead(adapter, candidate, winner, property_id), False

        logger.info(
            "capture.lead_created",
            extra={
                "lead_id": lead.get("id"),
                "source": str(adapter.source),
                "phone": mask_phone(candidate.phone_normalized),
                "property_id": property_id,
            },
        )
        return lead, True

    async def _update_lead(
        self,
        adapter: SourceAdapter,
        candidate: LeadCandidate,
        lead: dict[str, Any],
        property_id: str | None,
    ) -> dict[str, Any]:
        patch: dict[str, Any] = {"updated_at": _now_iso()}
        if property_id:
            patch["property_id"] = property_id
        if candidate.message:
            note = adapter.note(candidate.message)
            current = (lead.get("notes") or "").strip()
            patch["notes"] = f"{current}\n\n{note}" if current else note
        if candidate.email and not lead.get("email"):
            patch["email"] = candidate.email
        updated = await self._store.leads.update_lead(lead["id"], patch)
        logger.info(
            "capture.lead_updated",
            extra={
                "lead_id": lead["id"],
                "source": str(adapter.source),
                "property_id": property_id,
                "note_appended": "notes" in patch,
            },
        )
        return updated or {**lead, **patch}

    async def _thread_and_log(
        self,
        adapter: SourceAdapter,
        candidate: LeadCandidate,
        lead: dict[str, Any],
        outcome: ItemOutcome,
        property_id: str | None,
    ) -> None:
        lead_id = lead["id"]
        message = None
        if candidate.message:
            message = NewMessage(
                direction=Direction.INBOUND,
                content=candidate.message,
                sent_status=SentStatus.DELIVERED,
                provider=str(adapter.origin),
                provider_payload={"source": str(adapter.source), **candidate.reference},
            )
        try:
            conversation = await self._conversations.find_or_create(
                channel=adapter.channel, lead_id=lead_id, initial=message
            )
            outcome.conversation_id = conversation.get("id")
            if message is not None:
                await self._conversations.append_message(conversation, message)
            outcome.state = IngestionState.THREADED

            await self._store.activity.record(
                "lead_captured",
                entity_type="lead",
                entity_id=lead_id,
                metadata={
                    "source": str(adapter.source),
                    "lead_name": candidate.name,
                    "created": outcome.created,
                    "property_id": property_id,
                    "conversation_id": outcome.conversation_id,
                },
            )
        except RepositoryError as exc:
            raise PartialIngestion(lead_id, str(exc)) from exc
        outcome.state = IngestionState.LOGGED
        logger.info(
            "capture.lead_captured",
            extra={
                "lead_id": lead_id,
                "source": str(adapter.source),
                "conversation_id": outcome.conversation_id,
                "created": outcome.created,
            },
        )


def summarize(source: schemas.LeadSource, outcomes: list[ItemOutcome]) -> schemas.CaptureResponse:
    """Arma la respuesta HTTP del lote.

    Raises:
        ValidationError: ningún elemento era válido.
        GatewayError: ningún lead pudo escribirse en el almacén.
    """
    persisted = [outcome for outcome in outcomes if outcome.lead_persisted]
    if not persisted:
        failed = [outcome for outcome in outcomes if outcome.state is IngestionState.FAILED]
        if failed:
            raise GatewayError(failed[0].error or "Failed to create lead", source=str(source))
        reason = next((outcome.error for outcome in outcomes if outcome.error), None)
        raise ValidationError(reason or "Invalid payload", source=str(source))

    results = [
        schemas.ItemResult(
            index=outcome.index,
            state=str(outcome.state),
            lead_id=outcome.lead_id,
            conversation_id=outcome.conversation_id,
            created=outcome.created,
            error=outcome.error,
        )
        for outcome in outcomes
    ]
    partial = any(outcome.state is IngestionState.PARTIAL for outcome in outcomes)
    return schemas.CaptureResponse(
        success=True,
        source=str(source),
        lead_id=persisted[-1].lead_id,
        partial=partial or None,
        results=results,
    )
