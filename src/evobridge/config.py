"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars (and an optional .env
file). Variable names are unprefixed so existing bridge deployments keep
working; a few settings accept a legacy fallback name via AliasChoices.

Learn: Settings is built once at process start and handed to every
component's constructor. Nothing below the CLI / app factory reads the
environment directly.
"""

from typing import Annotated, Any

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Exit codes for fatal startup problems (one per cause)
EXIT_DISABLED = 0
EXIT_MISSING_API_URL = 1
EXIT_MISSING_INSTANCE = 2

_SECRET_FIELDS = ("backend_webhook_secret", "backend_api_key", "upstream_auth_token")


class StartupConfigError(Exception):
    """Configuration makes it impossible (or pointless) to start the bridge."""

    def __init__(self, message: str, exit_code: int):
        super().__init__(message)
        self.exit_code = exit_code


def _split_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


class Settings(BaseSettings):
    """All bridge configuration."""

    # Upstream (Evolution API)
    websocket_enabled: bool = False
    websocket_global_events: bool = False
    evolution_api_url: str = ""
    instance_name: str = ""
    allow_polling: bool = True
    upstream_auth_token: str = Field(
        default="",
        validation_alias=AliasChoices("EVOLUTION_TOKEN", "TOKEN", "upstream_auth_token"),
    )
    upstream_reconnection_attempts: int = 10
    upstream_reconnection_delay: float = 2.0

    # Which upstream events to relay (empty = every event)
    forward_events: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        validation_alias=AliasChoices("FORWARD_EVENTS", "EVENTS", "forward_events"),
    )

    # Webhook backend
    backend_url: str = ""
    backend_webhook_secret: str = Field(
        default="",
        validation_alias=AliasChoices(
            "BACKEND_WEBHOOK_SECRET", "EVOLUTION_WEBHOOK_SECRET", "backend_webhook_secret"
        ),
    )
    backend_api_key: str = Field(
        default="",
        validation_alias=AliasChoices(
            "BACKEND_API_KEY", "EVOLUTION_API_KEY", "backend_api_key"
        ),
    )
    forward_retries: int = Field(default=3, ge=1)
    forward_timeout: float = 5.0  # seconds per attempt
    forward_backoff: float = 1.0  # base delay, multiplied by attempt number

    # Envelope
    include_raw: bool = False
    raw_max: int = Field(default=512, ge=1)

    # Front (browser) socket server
    front_ws_host: str = "0.0.0.0"
    front_ws_port: int = Field(
        default=4000,
        validation_alias=AliasChoices("PORT", "FRONT_WS_PORT", "front_ws_port"),
    )
    front_origin: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])
    front_ws_path: str = "/ws"
    trust_proxy: bool = True

    # Process
    shutdown_grace: float = 5.0  # seconds to drain in-flight deliveries
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("forward_events", "front_origin", mode="before")
    @classmethod
    def _parse_lists(cls, value: Any) -> Any:
        return _split_csv(value)

    @field_validator("front_origin")
    @classmethod
    def _default_origin(cls, value: list[str]) -> list[str]:
        return value or ["*"]

    @property
    def catch_all(self) -> bool:
        """True when every upstream event is relayed (no allow-list)."""
        return not self.forward_events

    def masked(self) -> dict[str, Any]:
        """Configuration as a dict with secrets replaced, safe for printing."""
        data = self.model_dump()
        for name in _SECRET_FIELDS:
            if data.get(name):
                data[name] = "***"
        return data


def check_startup(settings: Settings) -> None:
    """Validate the settings the core assumes before it is started.

    Raises StartupConfigError carrying a distinct exit code per cause.
    """
    if not settings.websocket_enabled:
        raise StartupConfigError(
            "WEBSOCKET_ENABLED is not true, nothing to relay", EXIT_DISABLED
        )
    if not settings.evolution_api_url:
        raise StartupConfigError(
            "EVOLUTION_API_URL is missing", EXIT_MISSING_API_URL
        )
    if not settings.websocket_global_events and not settings.instance_name:
        raise StartupConfigError(
            "Per-instance mode requires INSTANCE_NAME "
            "(or set WEBSOCKET_GLOBAL_EVENTS=true)",
            EXIT_MISSING_INSTANCE,
        )
