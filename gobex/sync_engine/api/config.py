"""
Configuration for the reference sync backend.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Sync backend configuration loaded from environment."""

    # Bearer token -> tenant id, e.g. GOBEX_API_TOKENS='{"t0k3n": "UL-4F2A9C"}'
    tokens: dict[str, str] = Field(default_factory=dict, description="Token to tenant mapping")

    # Bind settings
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8090, description="Bind port")

    cors_origins: list[str] = Field(
        default=["http://localhost:5173"],
        description="Allowed CORS origins",
    )

    max_snapshot_records: int = Field(
        default=200_000, description="Largest snapshot accepted on upload"
    )

    model_config = {"env_prefix": "GOBEX_API_"}

    def tenant_for_token(self, token: str) -> str | None:
        return self.tokens.get(token)
