"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.
Where it fits: this is the bootstrap layer. The provider itself only ever sees an
already-resolved, immutable ProviderOptions; this module is the one place that reads
the process environment (or a `.env` file) to build it.

WHAT IS HAPPENING HERE:
"Are we talking to production APNs?" used to be inferred deep inside the provider from
the deployment mode. Here it is resolved once: an explicit APNS_PRODUCTION wins, otherwise
ENVIRONMENT == "production" decides.
"""
from pathlib import Path
from pydantic_settings import BaseSettings

from apns_push.shared.errors import ConfigurationError
from apns_push.shared.models import (
    DEFAULT_PING_INTERVAL_S,
    DEFAULT_REQUEST_TIMEOUT_S,
    ProviderOptions,
    TokenOptions,
)

class Settings(BaseSettings):
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Credentials for token-based provider authentication
    APNS_KEY_PATH: str | None = None
    APNS_KEY_ID: str | None = None
    APNS_TEAM_ID: str | None = None
    APNS_TOPIC: str | None = None

    # None means "derive from ENVIRONMENT"
    APNS_PRODUCTION: bool | None = None

    # Session timings
    APNS_PING_INTERVAL_S: float = DEFAULT_PING_INTERVAL_S
    APNS_REQUEST_TIMEOUT_S: float = DEFAULT_REQUEST_TIMEOUT_S

    class Config:
        env_file = ".env"
        # Tolerate missing env vars to allow easy out-of-the-box execution
        env_file_encoding = 'utf-8'
        extra = 'ignore'

    def resolve_production(self) -> bool:
        if self.APNS_PRODUCTION is not None:
            return self.APNS_PRODUCTION
        return self.ENVIRONMENT.lower() == "production"

    def token_options(self) -> TokenOptions:
        missing = [
            name for name in ("APNS_KEY_PATH", "APNS_KEY_ID", "APNS_TEAM_ID")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(f"missing settings: {', '.join(missing)}")
        key_path = Path(self.APNS_KEY_PATH).expanduser()
        try:
            key = key_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"cannot read signing key {key_path}: {e}") from e
        return TokenOptions(key=key, key_id=self.APNS_KEY_ID, team_id=self.APNS_TEAM_ID)

    def provider_options(self, production: bool | None = None) -> ProviderOptions:
        return ProviderOptions(
            token=self.token_options(),
            production=self.resolve_production() if production is None else production,
            ping_interval_s=self.APNS_PING_INTERVAL_S,
            request_timeout_s=self.APNS_REQUEST_TIMEOUT_S,
        )

settings = Settings()
