"""
Configuration for the PolyLoans Relay API.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field

from polyloans_relayer.config import Settings


class ApiSettings(Settings):
    """
    API configuration settings.

    Extends the relayer settings with HTTP server options. All settings can
    be overridden via environment variables.
    """

    # API Server
    host: str = Field(
        default="127.0.0.1",
        description="API host (127.0.0.1 for local only, 0.0.0.0 for external)",
        alias="HOST",
    )
    # Hosting platforms inject PORT
    port: int = Field(
        default=3000,
        description="API port",
        validation_alias="PORT",
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Authentication
    # When API_TOKEN is set, POST /relay-tx requires it via X-API-Key header.
    api_token: Optional[str] = Field(
        default=None,
        description="API token for relay submission (unset disables the check)",
        repr=False,
    )
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="CORS allowed origins",
    )


@lru_cache
def get_settings() -> ApiSettings:
    """Get cached settings instance."""
    return ApiSettings()
