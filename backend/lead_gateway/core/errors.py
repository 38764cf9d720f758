"""Taxonomía de errores del gateway y su mapeo a respuestas HTTP."""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base de los errores que el gateway expone a sus llamadores."""

    status_code: int = 500
    code: str = "gateway_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict[str, Any]:
        return {"success": False, "error": self.message}


class ValidationError(GatewayError):
    """Payload de webhook mal formado o incompleto."""

    status_code = 400
    code = "validation_error"


class Unauthorized(GatewayError):
    """Secreto compartido o token ausente/incorrecto."""

    status_code = 401
    code = "unauthorized"


class AddresseeUnresolved(GatewayError):
    """No se encontró destino válido tras todos los intentos de resolución."""

    status_code = 400
    code = "addressee_unresolved"

    def __init__(self, phone: str, message: str | None = None) -> None:
        super().__init__(
            message or "Número não encontrado no WhatsApp. Verifique o número.", phone=phone
        )
        self.phone = phone

    def to_payload(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "phone": self.phone}


class DeliveryFailed(GatewayError):
    """El proveedor rechazó o falló el envío."""

    status_code = 502
    code = "delivery_failed"

    def __init__(self, phone: str, detail: Any = None, message: str | None = None) -> None:
        super().__init__(message or "Falha ao enviar mensagem", phone=phone, detail=detail)
        self.phone = phone
        self.detail = detail

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.message, "phone": self.phone}
        if self.detail is not None:
            payload["detail"] = self.detail
        return payload


class PartialIngestion(GatewayError):
    """Lead persistido pero el hilo/mensaje no pudo registrarse."""

    status_code = 200
    code = "partial_ingestion"

    def __init__(self, lead_id: str, message: str) -> None:
        super().__init__(message, lead_id=lead_id)
        self.lead_id = lead_id
