"""
Lazy, cached OpenAI-compatible clients for each upstream provider.

Both providers speak the OpenAI Chat Completions protocol, so each one
is reached through an ``openai.AsyncOpenAI`` client bound to that
provider's base URL and credential. Clients are built on first use and
cached for the process lifetime, keyed by a credential fingerprint so a
configuration change yields a fresh client instead of a stale one.

Credentials are validated lazily: a missing OpenAI key only fails a
request that actually needs OpenAI, never a Volcengine request.

Configuration (via GatewaySettings):
    OPENAI_API_KEY: OpenAI credential
    OPENAI_BASE_URL: Optional OpenAI-compatible base URL override
    VOLCENGINE_BASE_URL: Volcengine Ark base URL
        Default: https://ark.cn-beijing.volces.com/api/v3
    VOLCENGINE_API_KEY / VOLC_API_KEY: Volcengine credential
"""
from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from typing import Optional

import structlog
from openai import AsyncOpenAI

from chat_gateway.config import GatewaySettings
from chat_gateway.services.errors import ConfigurationError
from chat_gateway.services.model_catalog import Provider

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ProviderCredentials:
    provider: Provider
    api_key: Optional[str]
    base_url: Optional[str]
    key_variable: str

    def fingerprint(self) -> str:
        """Canonical cache key; the raw key never leaves this object."""
        raw = f"{self.provider.value}::{self.api_key or ''}::{self.base_url or ''}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def credentials_for(provider: Provider, settings: GatewaySettings) -> ProviderCredentials:
    """Read the credentials *provider* needs from *settings*."""
    if provider is Provider.OPENAI:
        return ProviderCredentials(
            provider=provider,
            api_key=settings.openai_api_key or None,
            base_url=(settings.openai_base_url or "").strip().rstrip("/") or None,
            key_variable="OPENAI_API_KEY",
        )
    if provider is Provider.VOLCENGINE:
        return ProviderCredentials(
            provider=provider,
            api_key=settings.resolved_volcengine_api_key(),
            base_url=settings.resolved_volcengine_base_url(),
            key_variable="VOLCENGINE_API_KEY",
        )
    raise ConfigurationError(f"Unsupported provider: {provider}")


def check_provider_configuration(settings: GatewaySettings) -> dict[Provider, bool]:
    """Report which providers have their required credential configured."""
    return {provider: bool(credentials_for(provider, settings).api_key) for provider in Provider}


# ============================================================================
# Client Cache
# ============================================================================

# Process-wide, append-only. Entries are never invalidated.
_clients: dict[str, AsyncOpenAI] = {}
_clients_lock = threading.Lock()


class ProviderClientFactory:
    """Build and cache one client per provider credential set.

    Args:
        settings: Gateway settings holding provider credentials.
        timeout_seconds: Per-request timeout handed to the SDK client.

    Example:
        >>> factory = ProviderClientFactory(GatewaySettings(openai_api_key="sk", _env_file=None))
        >>> client = factory.get_client(Provider.OPENAI)
    """

    def __init__(self, settings: GatewaySettings, timeout_seconds: Optional[float] = None) -> None:
        self._settings = settings
        self._timeout_seconds = timeout_seconds or settings.upstream_timeout_seconds

    def get_client(self, provider: Provider) -> AsyncOpenAI:
        """Return the cached client for *provider*, creating it on first use.

        Raises:
            ConfigurationError: If the provider's credential is missing.
        """
        credentials = credentials_for(provider, self._settings)
        if not credentials.api_key:
            raise ConfigurationError.missing_variable(credentials.key_variable)

        key = credentials.fingerprint()
        client = _clients.get(key)
        if client is not None:
            return client

        # Single-flight construction: at most one client per fingerprint.
        with _clients_lock:
            client = _clients.get(key)
            if client is None:
                logger.info(
                    "provider.client.init",
                    provider=provider.value,
                    base_url=credentials.base_url or "default",
                )
                client = AsyncOpenAI(
                    api_key=credentials.api_key,
                    base_url=credentials.base_url,
                    max_retries=0,
                    timeout=self._timeout_seconds,
                )
                _clients[key] = client
        return client


async def close_provider_clients() -> None:
    """Close every cached client and release its connections.

    Should be called during application shutdown.
    """
    with _clients_lock:
        clients = list(_clients.values())
        _clients.clear()

    for client in clients:
        await client.close()
    if clients:
        logger.info("provider.clients.closed", count=len(clients))
