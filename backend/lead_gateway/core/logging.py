"""Logging estructurado del gateway: JSON a stderr y archivos por canal."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from lead_gateway.core.security import mask_phone

# Atributos propios de LogRecord; lo demás llega por `extra`.
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}

# Campos de `extra` que pueden traer un teléfono o JID sin enmascarar.
PHONE_FIELDS = frozenset({"phone", "number", "target", "remote_jid", "group_jid"})

CHANNEL_LOGGERS = {
    "lead_gateway.request": "request.log",
    "lead_gateway.channels.capture": "capture.log",
    "lead_gateway.channels.whatsapp": "whatsapp.log",
    "lead_gateway.channels.contact": "contact.log",
}


class JSONFormatter(logging.Formatter):
    """Una línea JSON por registro, con los campos de `extra` al primer nivel."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS:
                continue
            if key in PHONE_FIELDS and isinstance(value, str):
                value = mask_phone(value)
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        # payloads de Evolution/Supabase pueden traer datetime o bytes
        return json.dumps(payload, ensure_ascii=False, default=str)


def _file_handler(path: Path) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    handler.setFormatter(JSONFormatter())
    return handler


def channel_log_files(log_file_path: str | None) -> dict[str, str]:
    """Archivos dedicados por canal, junto al archivo principal."""
    if not log_file_path:
        return {}
    log_dir = Path(log_file_path).parent
    return {name: str(log_dir / filename) for name, filename in CHANNEL_LOGGERS.items()}


def configure_logging(
    level: int = logging.INFO,
    *,
    log_file: str | None = None,
    per_logger_files: dict[str, str] | None = None,
) -> None:
    """Reemplaza los handlers del root por stderr JSON y, si hay ruta, archivos rotados.

    Un archivo que no puede abrirse se reporta y no impide arrancar.
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    stream = logging.StreamHandler()
    stream.setFormatter(JSONFormatter())
    root.addHandler(stream)

    targets: list[tuple[logging.Logger, str]] = []
    if log_file:
        targets.append((root, log_file))
    targets.extend(
        (logging.getLogger(name), path) for name, path in (per_logger_files or {}).items()
    )
    for target, path in targets:
        try:
            target.addHandler(_file_handler(Path(path)))
        except OSError:
            root.exception(
                "logging.file_handler_failed",
                extra={"target_logger": target.name, "log_file": path},
            )


def resolve_log_level(value: str | int | None, *, default: int = logging.INFO) -> int:
    """Acepta `"debug"`, `"20"` o `20`; cualquier otro valor cae en `default`."""
    if isinstance(value, int):
        return value
    candidate = (value or "").strip()
    if not candidate:
        return default
    if candidate.isdigit():
        return int(candidate)
    mapped = logging.getLevelName(candidate.upper())
    return mapped if isinstance(mapped, int) else default


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_event(
    logger: logging.Logger, event: str, /, *, level: int = logging.INFO, **fields: Any
) -> None:
    """Emite `event` con `fields` como campos estructurados."""
    logger.log(level, event, extra=fields or None)
