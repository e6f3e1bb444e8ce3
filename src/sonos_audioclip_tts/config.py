"""Configuration management for the audio clip bridge.

Secrets for the Sonos authorization server and Redis come from environment
variables (pydantic-settings with env_prefix); everything else is read once at
startup from a YAML file. Home Assistant add-on option files (JSON, a subset of
YAML) load as well, including their SONOS_CLIENT_ID, SONOS_CLIENT_SECRET and
GOOGLE_TTS_LANGUAGE keys.
"""

import pathlib
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SonosSettings(BaseSettings):
    """Sonos Control API credentials and OAuth endpoints.

    Environment variables (with SONOS_ prefix):
        SONOS_CLIENT_ID: Client key from the Sonos developer portal.
        SONOS_CLIENT_SECRET: Client secret from the Sonos developer portal.
        SONOS_SCOPE: OAuth scope requested during authorization.
        SONOS_AUTHORIZE_URL: Consent page the user is redirected to.
        SONOS_TOKEN_URL: Token endpoint for code exchange and refresh.
        SONOS_CONTROL_API_URL: Base URL of the Control API.
    """

    model_config = SettingsConfigDict(env_prefix="SONOS_")

    client_id: str
    client_secret: str
    scope: str = "playback-control-all"
    authorize_url: str = "https://api.sonos.com/login/v3/oauth"
    token_url: str = "https://api.sonos.com/login/v3/oauth/access"
    control_api_url: str = "https://api.ws.sonos.com/control/api/v1"


class RedisSettings(BaseSettings):
    """Redis connection settings for the optional Redis token store.

    Environment variables (with REDIS_ prefix):
        REDIS_HOST: Redis server hostname (default: localhost).
        REDIS_PORT: Redis server port (default: 6379).
        REDIS_USERNAME: Redis ACL username (optional).
        REDIS_PASSWORD: Redis password (optional).
        REDIS_DB: Redis database number (default: 0).
    """

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = "localhost"
    port: int = 6379
    username: str | None = None
    password: str | None = None
    db: int = 0

    @property
    def url(self) -> str:
        """Build Redis connection URL from components."""
        if self.username and self.password:
            return f"redis://{self.username}:{self.password}@{self.host}:{self.port}/{self.db}"
        if self.password:
            return f"redis://:{self.password}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class BridgeConfig(BaseModel):
    """Top-level configuration for the bridge server.

    Attributes:
        hostname: Name under which speakers and browsers reach this service.
        port: Port the server listens on and advertises in its own URLs.
        bind_host: Interface uvicorn binds to.
        ssl_certfile: Optional TLS certificate; switches the public scheme to https.
        ssl_keyfile: Optional TLS key matching ssl_certfile.
        tts_language: Language code handed to the speech synthesizer.
        data_dir: Root directory for persisted state and generated audio.
        audio_dir: Directory of local audio files served under /mp3 (default: data_dir/mp3).
        tts_dir: Directory for synthesized speech served under /tts (default: data_dir/tts).
        token_store: Backend for the persisted OAuth credential.
        token_key: Fixed key the credential is stored under.
        request_timeout: Timeout in seconds for every outbound HTTP call.
        log_level: Root logging level.
        app_id: Application identifier attached to every clip request.
        clip_name: Display name attached to every clip request.
        sonos: Sonos API credentials and endpoints.
        redis: Redis connection settings.
    """

    hostname: str = "localhost"
    port: int = 8349
    bind_host: str = "0.0.0.0"
    ssl_certfile: pathlib.Path | None = None
    ssl_keyfile: pathlib.Path | None = None
    tts_language: str = "en"
    data_dir: pathlib.Path = pathlib.Path("data")
    audio_dir: pathlib.Path = pathlib.Path("data/mp3")
    tts_dir: pathlib.Path = pathlib.Path("data/tts")
    token_store: Literal["sqlite", "redis"] = "sqlite"
    token_key: str = "token"
    request_timeout: float = Field(default=10.0, gt=0)
    log_level: str = "INFO"
    app_id: str = "com.me.sonosspeech"
    clip_name: str = "Sonos TTS"

    # AIDEV-NOTE: default_factory delays env var validation until BridgeConfig is created
    sonos: SonosSettings = Field(default_factory=lambda: SonosSettings())  # type: ignore[call-arg]
    redis: RedisSettings = Field(default_factory=lambda: RedisSettings())

    @model_validator(mode="before")
    @classmethod
    def _apply_defaults(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)

        # Keys of the Home Assistant add-on options file
        language = data.pop("GOOGLE_TTS_LANGUAGE", None)
        if language and not data.get("tts_language"):
            data["tts_language"] = language
        credentials: dict[str, Any] = {}
        for field_name, option_key in (("client_id", "SONOS_CLIENT_ID"), ("client_secret", "SONOS_CLIENT_SECRET")):
            value = data.pop(option_key, None)
            if value:
                credentials[field_name] = value
        if credentials and "sonos" not in data:
            data["sonos"] = SonosSettings(**credentials)

        data_dir = pathlib.Path(data.get("data_dir") or "data")
        if data.get("audio_dir") is None:
            data["audio_dir"] = data_dir / "mp3"
        if data.get("tts_dir") is None:
            data["tts_dir"] = data_dir / "tts"
        return data

    @property
    def scheme(self) -> str:
        return "https" if self.ssl_certfile and self.ssl_keyfile else "http"

    @property
    def base_url(self) -> str:
        """Externally reachable base URL of this service."""
        return f"{self.scheme}://{self.hostname}:{self.port}"

    @property
    def redirect_uri(self) -> str:
        return f"{self.base_url}/redirect"

    @property
    def sqlite_path(self) -> pathlib.Path:
        return self.data_dir / "persist" / "credentials.db"


def load_config(config_path: pathlib.Path) -> BridgeConfig:
    """Load and validate the bridge configuration file.

    Args:
        config_path: Path to a YAML (or JSON) configuration file.

    Returns:
        Validated configuration object.

    Raises:
        pydantic.ValidationError: If the file content does not match BridgeConfig.
    """
    with config_path.open("r") as file:
        config_data = yaml.safe_load(file) or {}
    return BridgeConfig.model_validate(config_data)
