"""Helpers de validación para webhooks, tokens y enmascarado de datos."""

from __future__ import annotations

import base64
import hmac
import json
import time
from hashlib import sha256
from typing import Any


class SignatureError(Exception):
    """Excepción genérica para secretos o firmas inválidas."""


def verify_shared_secret(expected: str, provided: str | None) -> None:
    """Compara en tiempo constante el secreto recibido contra el configurado."""
    if not provided or not hmac.compare_digest(expected.encode(), provided.encode()):
        raise SignatureError("Invalid shared secret received")


def parse_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return None


def _b64url_decode(segment: str) -> bytes:
    rem = len(segment) % 4
    if rem:
        segment += "=" * (4 - rem)
    return base64.urlsafe_b64decode(segment.encode())


def decode_jwt_claims(token: str, *, secret: str | None, now: float | None = None) -> dict[str, Any]:
    """Decodifica un JWT HS256 emitido por Supabase y devuelve sus claims.

    Con `secret` definido se valida la firma; sin él sólo se decodifica el
    payload (modo desarrollo). En ambos casos se rechazan tokens expirados.

    Raises:
        SignatureError: token mal formado, firma inválida o expirado.
    """
    try:
        header_b64, payload_b64, signature_b64 = token.split(".")
    except ValueError as exc:
        raise SignatureError("Malformed token") from exc

    if secret:
        signing_input = f"{header_b64}.{payload_b64}".encode()
        expected = hmac.new(secret.encode(), signing_input, sha256).digest()
        try:
            provided = _b64url_decode(signature_b64)
        except ValueError as exc:
            raise SignatureError("Malformed signature") from exc
        if not hmac.compare_digest(expected, provided):
            raise SignatureError("Invalid token signature")

    try:
        claims = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise SignatureError("Malformed token payload") from exc
    if not isinstance(claims, dict):
        raise SignatureError("Malformed token payload")

    exp = claims.get("exp")
    current = time.time() if now is None else now
    if isinstance(exp, (int, float)) and exp < current:
        raise SignatureError("Token expired")
    return claims


def mask_phone(value: str | None) -> str | None:
    """Oculta los dígitos centrales de un teléfono o JID para los logs."""
    if not value:
        return value
    if len(value) <= 6:
        return "***"
    return f"{value[:4]}***{value[-3:]}"
