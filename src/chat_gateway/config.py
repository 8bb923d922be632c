"""Gateway configuration using Pydantic Settings.

Provides centralized configuration for the chat gateway including:
- Provider credentials (OpenAI, Volcengine)
- CORS allow-list
- Chat defaults and deployment policy (default model, system prompt policy)
- Upstream timeout, logging and server bind settings

Configuration is loaded from environment variables and .env files. The
@lru_cache decorator ensures a single settings instance is shared across
the application. Per-model Volcengine endpoint ids are not modelled here:
their variable names live in the model catalog and are read from the
environment mapping handed to the model registry.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_VOLCENGINE_BASE_URL: str = "https://ark.cn-beijing.volces.com/api/v3"


class GatewaySettings(BaseSettings):
    """Core service configuration for the chat gateway.

    Example:
        >>> settings = GatewaySettings(openai_api_key="sk-test", _env_file=None)
        >>> settings.cors_origins()
        []
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    # Provider credentials
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: Optional[str] = Field(default=None, description="Optional OpenAI-compatible base URL override")
    volcengine_base_url: str = Field(default=DEFAULT_VOLCENGINE_BASE_URL, description="Volcengine Ark base URL")
    volcengine_api_key: Optional[str] = Field(default=None, description="Volcengine Ark API key")
    volc_api_key: Optional[str] = Field(default=None, description="Legacy alias for VOLCENGINE_API_KEY")

    # CORS
    cors_origin: str = Field(default="", description="Comma-separated allowed origins; empty allows any")

    # Chat defaults and policy
    default_model_id: str = Field(default="doubao-pro-32k", description="Model used when a request names none")
    require_system_prompt: bool = Field(default=False, description="Reject chat requests without a systemPrompt")
    upstream_timeout_seconds: float = Field(default=60.0, gt=0, description="Total bound on one generation call")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: Literal["json", "console"] = Field(default="json", description="structlog renderer")

    # Server
    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=3300, description="Bind port")

    def cors_origins(self) -> list[str]:
        """Return the parsed CORS allow-list (blank entries dropped)."""
        return [o.strip() for o in self.cors_origin.split(",") if o.strip()]

    def resolved_volcengine_api_key(self) -> Optional[str]:
        """VOLCENGINE_API_KEY, falling back to the legacy VOLC_API_KEY."""
        return self.volcengine_api_key or self.volc_api_key or None

    def resolved_volcengine_base_url(self) -> str:
        return (self.volcengine_base_url or "").strip() or DEFAULT_VOLCENGINE_BASE_URL


@lru_cache()
def get_settings() -> GatewaySettings:
    """Get cached singleton settings instance.

    Note:
        To reload settings (e.g., after env changes), call
        get_settings.cache_clear() before calling get_settings() again.
    """
    return GatewaySettings()
