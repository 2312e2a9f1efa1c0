"""
Configuration for the DocBridge HTTP gateway.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """HTTP gateway configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="Gateway bind host")
    port: int = Field(default=8080, description="Gateway bind port")

    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    function_timeout_s: float = Field(
        default=30.0, description="Per-call timeout in seconds (0 disables)"
    )
    expose_schema: bool = Field(default=True, description="Serve GET /api/schema")

    model_config = {"env_prefix": "DOCBRIDGE_HTTP_"}

    @property
    def bind_address(self) -> str:
        return f"{self.host}:{self.port}"
