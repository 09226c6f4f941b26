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
    request_log_skip_prefixes: tuple[str, ...] = Field(
        default=("/health", "/api/health", "/favicon", "/docs", "/openapi"),
        description="Prefijos de ruta para los que no se registrarán eventos de request.started/completed.",
    )
    log_file_path: str | None = Field(
        default=None,
        description="Archivo principal de logs; sin valor sólo se escribe a stdout.",
    )
    upstream_base_url: str = Field(
        default="http://localhost:5001",
        description="URL base de la plataforma de mensajería (endpoints REST de WhatsApp).",
    )
    upstream_ws_path: str = Field(
        default="/api/ws/client",
        description="Ruta del stream push del inbox, relativa a la URL base.",
    )
    # Acepta el nombre histórico del token de la plataforma
    upstream_api_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("INBOX_UPSTREAM_API_TOKEN", "WHATSAPP_API_TOKEN"),
    )
    gateway_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout de las llamadas REST hacia la plataforma.",
    )
    operator_token: str | None = Field(
        default=None,
        description="Token bearer requerido por el panel; sin valor las rutas quedan abiertas (desarrollo).",
    )
    auto_connect: bool = Field(
        default=True,
        description="Abre la conexión al stream del inbox al iniciar la aplicación.",
    )
    model_config = SettingsConfigDict(env_file=".env", env_prefix="INBOX_", extra="allow")

    @property
    def upstream_ws_url(self) -> str:
        """URL ws(s):// derivada de la URL base."""
        base = self.upstream_base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://") :]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://") :]
        return f"{base}{self.upstream_ws_path}"


settings = Settings()
