"""Punto de entrada principal para la aplicación FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lead_gateway.api.routes.health import router as health_router
from lead_gateway.channels.capture.router import router as capture_router
from lead_gateway.channels.contact.router import router as contact_router
from lead_gateway.channels.whatsapp.router import router as whatsapp_router
from lead_gateway.core.config import settings
from lead_gateway.core.errors import GatewayError
from lead_gateway.core.logging import (
    channel_log_files,
    configure_logging,
    get_logger,
    resolve_log_level,
)
from lead_gateway.core.middleware import RequestLoggingMiddleware

log = get_logger("lead_gateway")


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        message = str(error.get("msg", "invalid")).removeprefix("Value error, ")
        location = [str(item) for item in error.get("loc", ()) if item != "body"]
        parts.append(f"{'.'.join(location)}: {message}" if location else message)
    return "; ".join(parts) or "Invalid payload"


def register_exception_handlers(app: FastAPI) -> None:
    """Todas las respuestas de error comparten la forma `{success: false, error}`."""

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        log.log(
            level,
            "gateway.error",
            extra={"path": request.url.path, "code": exc.code, "status_code": exc.status_code},
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400, content={"success": False, "error": _validation_message(exc)}
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log.exception("gateway.unexpected_error", extra={"path": request.url.path})
        return JSONResponse(status_code=500, content={"success": False, "error": str(exc) or "Unknown error"})


def create_app() -> FastAPI:
    """Crea y configura la instancia de FastAPI."""
    default_log_level = logging.DEBUG if settings.environment != "production" else logging.INFO
    log_level = resolve_log_level(settings.log_level, default=default_log_level)
    configure_logging(
        level=log_level,
        log_file=settings.log_file_path,
        per_logger_files=channel_log_files(settings.log_file_path),
    )

    app = FastAPI(title="Lead Gateway API", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    app.include_router(health_router)
    app.include_router(capture_router)
    app.include_router(contact_router)
    app.include_router(whatsapp_router)

    log.info(
        "app.started",
        extra={
            "environment": settings.environment,
            "whatsapp_configured": settings.evolution_configured,
            "capture_secret_configured": bool(settings.capture_webhook_secret),
        },
    )
    return app


app = create_app()
