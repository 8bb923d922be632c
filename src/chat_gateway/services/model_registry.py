"""
Model registry: turn a catalog model id into an invokable model handle.

Resolution steps:
    1. Look the id up in the model catalog (unknown ids fail with an
       UnknownModelError that enumerates every valid id).
    2. Obtain the provider client from the ProviderClientFactory.
    3. Ask the provider's upstream resolver for the concrete upstream
       reference: the literal model name for OpenAI, the endpoint id read
       from the entry's environment variable for Volcengine.
    4. Return a ModelHandle bound to that client and reference.

No caching happens here; ProviderClientFactory caches clients.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

import structlog
from openai import AsyncOpenAI

from chat_gateway.services.errors import ConfigurationError, UnknownModelError
from chat_gateway.services.model_catalog import (
    ModelSpec,
    Provider,
    get_model,
    get_supported_model_ids,
)
from chat_gateway.services.providers import ProviderClientFactory

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ModelHandle:
    """A bound, invocable reference to one upstream model or endpoint."""

    model_id: str
    provider: Provider
    upstream_model: str
    client: AsyncOpenAI

    async def open_stream(
        self,
        messages: list[dict[str, Any]],
        *,
        temperature: Optional[float] = None,
    ) -> Any:
        """Start a streaming chat completion and return the chunk stream.

        Returns once the upstream has accepted the request; connection,
        authentication and HTTP errors raise here, before any chunk.
        """
        kwargs: dict[str, Any] = {
            "model": self.upstream_model,
            "messages": messages,
            "stream": True,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        return await self.client.chat.completions.create(**kwargs)


# ============================================================================
# Upstream Resolvers (one per provider)
# ============================================================================

UpstreamResolver = Callable[[ModelSpec, Mapping[str, str]], str]


def _openai_upstream(spec: ModelSpec, env: Mapping[str, str]) -> str:
    if spec.resolves_from_env or not spec.upstream_name:
        raise ConfigurationError(f"Model {spec.model_id} is missing an upstream model name")
    return spec.upstream_name


def _volcengine_upstream(spec: ModelSpec, env: Mapping[str, str]) -> str:
    if not spec.resolves_from_env:
        return spec.upstream_name
    variable = spec.endpoint_env_var
    if not variable:
        raise ConfigurationError(f"Model {spec.model_id} is missing an endpoint environment variable")
    endpoint_id = (env.get(variable) or "").strip()
    if not endpoint_id:
        raise ConfigurationError.missing_variable(variable)
    return endpoint_id


_UPSTREAM_RESOLVERS: dict[Provider, UpstreamResolver] = {
    Provider.OPENAI: _openai_upstream,
    Provider.VOLCENGINE: _volcengine_upstream,
}


class ModelRegistry:
    """Resolve model ids to handles using the catalog and a client factory.

    Args:
        factory: Provider client factory.
        env: Mapping holding per-model endpoint variables
            (defaults to ``os.environ``).
    """

    def __init__(
        self,
        factory: ProviderClientFactory,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._factory = factory
        self._env: Mapping[str, str] = env if env is not None else os.environ

    def resolve(self, model_id: str) -> ModelHandle:
        """Return a handle for *model_id*.

        Raises:
            UnknownModelError: If the id is not in the catalog.
            ConfigurationError: If a credential or endpoint variable is missing.
        """
        spec = get_model(model_id)
        if spec is None:
            raise UnknownModelError(model_id, get_supported_model_ids())

        client = self._factory.get_client(spec.provider)
        upstream_model = _UPSTREAM_RESOLVERS[spec.provider](spec, self._env)

        logger.debug(
            "model_registry.resolved",
            model_id=model_id,
            provider=spec.provider.value,
        )
        return ModelHandle(
            model_id=model_id,
            provider=spec.provider,
            upstream_model=upstream_model,
            client=client,
        )
