"""
Agent preset store.

An agent preset is a named binding of persona (system prompt and
temperature) to a catalog model. Two kinds exist:

    - Catalog-derived presets: one per catalog entry, built when the
      store is created, immutable. Their id is the model id.
    - User-created presets: added at runtime through ``create()``, kept
      in memory only and lost on restart.

The store is append-only. Writes are serialized by a lock; reads take a
snapshot. ``AgentStore`` is the interface routers and the chat pipeline
depend on, so a persistent implementation can replace the in-memory one.
"""
from __future__ import annotations

import threading
import uuid
from typing import Any, Optional, Protocol

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from chat_gateway.services.errors import BadRequestError, UnknownModelError
from chat_gateway.services.model_catalog import (
    PROVIDER_PREFERENCE,
    ModelSpec,
    get_all_models,
    get_model,
    get_supported_model_ids,
)
from chat_gateway.services.sampling import DEFAULT_AGENT_TEMPERATURE, normalize_temperature

logger = structlog.get_logger(__name__)


class AgentPreset(BaseModel):
    """Saved binding of model and persona, addressable by id.

    Serialized with camelCase keys (``modelId``, ``systemPrompt``).
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        protected_namespaces=(),
    )

    id: str
    name: str
    model_id: str
    system_prompt: str
    temperature: float

    def to_public(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class AgentStore(Protocol):
    """Interface for preset storage."""

    def list(self) -> list[AgentPreset]: ...

    def get_by_id(self, agent_id: str) -> Optional[AgentPreset]: ...

    def create(
        self,
        *,
        name: Any,
        model_id: Any,
        system_prompt: Any,
        temperature: Any = None,
    ) -> AgentPreset: ...


def _preset_from_model(spec: ModelSpec) -> AgentPreset:
    return AgentPreset(
        id=spec.model_id,
        name=spec.default_agent_name,
        model_id=spec.model_id,
        system_prompt=spec.default_system_prompt,
        temperature=spec.default_temperature,
    )


def build_catalog_presets(models: Optional[list[ModelSpec]] = None) -> list[AgentPreset]:
    """Create one preset per catalog entry, ordered by provider preference then id."""
    entries = models if models is not None else get_all_models()
    ordered = sorted(
        entries,
        key=lambda spec: (PROVIDER_PREFERENCE.index(spec.provider), spec.id),
    )
    return [_preset_from_model(spec) for spec in ordered]


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise BadRequestError(f"Invalid {field_name}")
    return value.strip()


class InMemoryAgentStore:
    """Process-local preset store: catalog presets plus user-created ones.

    Args:
        catalog_presets: Immutable presets; defaults to one per catalog entry.

    Example:
        >>> store = InMemoryAgentStore()
        >>> preset = store.create(name="Reviewer", model_id="gpt-4o", system_prompt="Review code.")
        >>> store.get_by_id(preset.id) == preset
        True
    """

    def __init__(self, catalog_presets: Optional[list[AgentPreset]] = None) -> None:
        self._catalog_presets: tuple[AgentPreset, ...] = tuple(
            catalog_presets if catalog_presets is not None else build_catalog_presets()
        )
        self._user_presets: list[AgentPreset] = []
        self._lock = threading.Lock()

    def list(self) -> list[AgentPreset]:
        """Catalog presets followed by user-created presets, newest first."""
        with self._lock:
            user_presets = list(self._user_presets)
        return [*self._catalog_presets, *user_presets]

    def get_by_id(self, agent_id: str) -> Optional[AgentPreset]:
        for preset in self.list():
            if preset.id == agent_id:
                return preset
        return None

    def create(
        self,
        *,
        name: Any,
        model_id: Any,
        system_prompt: Any,
        temperature: Any = None,
    ) -> AgentPreset:
        """Validate input and add a new user preset.

        Raises:
            BadRequestError: If name, modelId or systemPrompt is blank.
            UnknownModelError: If modelId is not in the catalog.
        """
        clean_name = _require_text(name, "name")
        clean_model_id = _require_text(model_id, "modelId")
        clean_prompt = _require_text(system_prompt, "systemPrompt")

        if get_model(clean_model_id) is None:
            raise UnknownModelError(clean_model_id, get_supported_model_ids())

        normalized = normalize_temperature(temperature)
        preset = AgentPreset(
            id=str(uuid.uuid4()),
            name=clean_name,
            model_id=clean_model_id,
            system_prompt=clean_prompt,
            temperature=normalized if normalized is not None else DEFAULT_AGENT_TEMPERATURE,
        )

        with self._lock:
            self._user_presets.insert(0, preset)

        logger.info("agents.created", agent_id=preset.id, model_id=preset.model_id)
        return preset
