"""Configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="NOTARYBRIDGE_",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = Field(default="0.0.0.0", description="Tunnel API listen address")
    port: int = Field(default=3002, ge=1, le=65535, description="Tunnel API listen port")
    cors_origin: str = Field(default="*", description="Allowed CORS origin")
    log_level: str = Field(default="INFO", description="Logging level")

    bridge_host: str = Field(default="localhost", description="Host advertised in bridge addresses")
    bridge_bind_host: str = Field(default="0.0.0.0", description="Address bridge processes bind to")
    bridge_command: list[str] | None = Field(
        default=None,
        description="Bridge executable and leading arguments (defaults to the bundled relay)",
    )
    process_stop_timeout: float = Field(default=5.0, gt=0, description="Seconds to wait for a bridge to stop")
    host_check_timeout: float = Field(default=5.0, gt=0, description="DNS / reachability timeout in seconds")

    tunnel_api_base: str = Field(
        default="http://localhost:3002/tunnels", description="Base URL of the tunnel HTTP API"
    )
    notary_url: str = Field(
        default="https://notary.pse.dev/v0.1.0-alpha.10", description="Default notary server URL"
    )
    max_sent_data: int = Field(default=4096, gt=0, description="Maximum bytes the prover may send")
    max_recv_data: int = Field(default=12048, gt=0, description="Maximum bytes the prover may receive")
    secret_fragments: list[str] = Field(
        default=["secret: test_secret"], description="Request fragments that are always redacted"
    )
    strict_reveal: bool = Field(default=False, description="Fail sessions on unmatched reveal fragments")

    conflict_retry_budget: int = Field(default=1, ge=0, description="Cleanup-and-resubmit cycles on tunnel conflict")
    conflict_retry_delay: float = Field(default=1.0, ge=0, description="Delay before resubmitting, in seconds")

    verifier_url: str | None = Field(default=None, description="Remote verification service URL")
    verifier_api_key: str | None = Field(default=None, description="API key for the verification service")

    @field_validator("secret_fragments")
    @classmethod
    def _reject_empty_fragments(cls, value: list[str]) -> list[str]:
        if any(not fragment for fragment in value):
            raise ValueError("secret fragments must not be empty")
        return value


@lru_cache
def get_settings() -> Settings:
    """Get the application settings instance."""
    return Settings()
