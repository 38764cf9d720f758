"""Configuración central basada en variables de entorno."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Valores globales leídos desde `.env` o el entorno."""

    environment: str = "development"
    log_level: str | None = Field(
        default=None,
        description="Nivel de logging global (ej. debug, info, warning). Cuando no se define, usa un valor por ambiente.",
    )
    request_log_level: str = Field(
        default="info",
        description=(
            "Nivel mínimo para registrar solicitudes en middleware. "
            "Valores más altos (warning/error) reducen registros de peticiones exitosas."
        ),
    )
    request_log_skip_prefixes: tuple[str, ...] = Field(
        default=("/health", "/favicon", "/docs", "/openapi"),
        description="Prefijos de ruta para los que no se registrarán eventos de request.started/completed.",
    )
    log_file_path: str | None = Field(
        default=None,
        description="Archivo principal de logs; sin valor sólo se escribe a stderr.",
    )

    supabase_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_SUPABASE_URL", "SUPABASE_URL"),
    )
    supabase_service_role: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "GATEWAY_SUPABASE_SERVICE_ROLE", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_ROLE"
        ),
    )
    supabase_jwt_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_SUPABASE_JWT_SECRET", "SUPABASE_JWT_SECRET"),
    )
    datastore_timeout_seconds: float = 10.0

    evolution_api_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_EVOLUTION_API_URL", "EVOLUTION_API_URL"),
    )
    evolution_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_EVOLUTION_API_KEY", "EVOLUTION_API_KEY"),
    )
    evolution_instance_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_EVOLUTION_INSTANCE_NAME", "EVOLUTION_INSTANCE_NAME"),
    )
    evolution_timeout_seconds: float = Field(
        default=15.0,
        description="Timeout de cada llamada al proveedor (sondeo de existencia y envío).",
    )
    evolution_webhook_secret: str | None = Field(
        default=None,
        description="Secreto opcional exigido en `x-webhook-secret` para eventos del proveedor.",
    )

    capture_webhook_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GATEWAY_CAPTURE_WEBHOOK_SECRET", "WEBHOOK_SECRET"),
        description="Secreto compartido exigido a los portales externos en `x-webhook-secret`.",
    )

    country_code: str = Field(default="55", description="Código de país doméstico sin `+`.")
    fallback_area_codes: tuple[str, ...] = Field(
        default=("21", "22", "24", "11", "27", "31", "32", "19", "41", "51", "61", "71", "81", "85"),
        description="DDDs probados en orden cuando el número llega sin código de área.",
    )
    pacing_min_seconds: float = 2.0
    pacing_max_seconds: float = 9.0
    preview_length: int = 100
    contact_signature: str | None = Field(
        default=None,
        description="Firma agregada al pie del mensaje de bienvenida de `/initiate-whatsapp-contact`.",
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="GATEWAY_", extra="allow", populate_by_name=True
    )

    @property
    def evolution_configured(self) -> bool:
        return bool(
            self.evolution_api_url and self.evolution_api_key and self.evolution_instance_name
        )


settings = Settings()
