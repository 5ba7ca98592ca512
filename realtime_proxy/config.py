"""
Configuration loader from environment variables.
Settings are built once at startup and passed explicitly to the server,
the app factory and every relay session.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional, Any, Dict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Instances are frozen; nothing mutates configuration after startup.
    """

    @field_validator("TOKEN", "LOG_JSON", "DEBUG", mode="before")
    @classmethod
    def strip_whitespace(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("LISTEN_PATH")
    @classmethod
    def ensure_leading_slash(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # ==========================================================================
    # Server Configuration
    # ==========================================================================
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    LISTEN_PATH: str = "/realtime"
    PUBLIC_URL: Optional[str] = None  # Logged at startup so operators know what clients dial
    DEBUG: bool = False
    ENVIRONMENT: str = "production"  # "development", "staging", "production"

    # ==========================================================================
    # Upstream Configuration
    # ==========================================================================
    TOKEN: str = ""
    UPSTREAM_URL: str = (
        "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview-2024-10-01"
    )
    OPENAI_BETA: str = "realtime=v1"
    UPSTREAM_OPEN_TIMEOUT: Optional[float] = None  # None: wait for the handshake indefinitely
    MAX_MESSAGE_SIZE: int = 16 * 1024 * 1024  # Applies to both inbound and outbound frames

    # ==========================================================================
    # Logging
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    LOG_JSON: bool = False  # Set True for production JSON logs

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def has_token(self) -> bool:
        return bool(self.TOKEN)

    def upstream_headers(self) -> Dict[str, str]:
        """Headers attached to every outbound connection attempt."""
        return {
            "Authorization": f"Bearer {self.TOKEN}",
            "OpenAI-Beta": self.OPENAI_BETA,
        }
