"""
Chat pipeline: one ``POST /chat`` request from raw body to event stream.

Per-request states:
    Received -> Validated -> Resolved -> Converted -> Streaming -> Responded
with a Failed exit from any state.

Steps:
    1. Parse the body as JSON (400 "Invalid JSON body").
    2. Validate ``messages`` (array), ``modelId`` / ``agentId`` (non-blank
       when present) and ``systemPrompt`` (string when present; required
       when the deployment sets REQUIRE_SYSTEM_PROMPT).
    3. Resolve effective parameters: agent preset, else explicit model,
       else the configured default model. Temperature is clamped to
       [0, 2]; non-numeric input falls through to the default.
    4. Convert client messages to the provider format (client ``id``
       stripped, order preserved, unknown parts passed through).
    5. Open the upstream stream through the model registry: no retries,
       one total time bound for the whole call.
    6. Re-emit text deltas as the UI message stream.

Image-generation-only models skip steps 5-6 and stream a fixed
explanatory reply in the same envelope.

Failures before the stream opens are raised as GatewayError subclasses
and become JSON envelopes at the boundary. Failures after it opens
become an ``error`` event inside the stream.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Union

import openai
import structlog
from pydantic import BaseModel, ConfigDict, StrictStr, field_validator
from pydantic.alias_generators import to_camel

from chat_gateway.config import GatewaySettings
from chat_gateway.services.agents import AgentStore
from chat_gateway.services.errors import (
    BadRequestError,
    ConfigurationError,
    UpstreamError,
    UpstreamTimeoutError,
    error_message,
    parse_json_body,
)
from chat_gateway.services.model_catalog import get_model, is_image_generation_model
from chat_gateway.services.model_registry import ModelHandle, ModelRegistry
from chat_gateway.services.sampling import DEFAULT_TEMPERATURE, normalize_temperature
from chat_gateway.services.ui_stream import (
    CloseCallback,
    UIMessageStreamResponse,
    single_text,
    ui_message_stream,
)

logger = structlog.get_logger(__name__)

FALLBACK_SYSTEM_PROMPT: str = "You are a helpful assistant."

IMAGE_MODEL_REPLY: str = (
    "You selected a Seedream image-generation model. It does not support the /chat "
    "conversation endpoint, so this request cannot be answered here.\n\n"
    "Image creation needs a separate text-to-image or image-to-image endpoint, which is "
    "not a chat completion. This backend currently implements only the streaming chat endpoint.\n\n"
    "Suggestion: switch to a text model (such as deepseek-v3-* or gpt-4o*) to draft image "
    "prompts, and use Seedream once an image-generation endpoint is available."
)

# UI-only part types with no provider representation.
_DROPPED_PART_TYPES: frozenset[str] = frozenset({"step-start"})


# ============================================================================
# Request / Parameter Models
# ============================================================================

class ChatRequest(BaseModel):
    """
    ``POST /chat`` request body.

    Field order is validation order, so the first reported problem is
    the first field below that fails.

    Attributes:
        messages: Client messages, kept as sent (ids included) for echoing
        model_id: Catalog model id; non-blank when present
        agent_id: Preset id; non-blank when present
        system_prompt: Persona; blank counts as absent
        temperature: Raw value, normalized later so non-numeric input
            falls through to the default instead of failing
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        protected_namespaces=(),
    )

    messages: list[dict[str, Any]]
    model_id: Optional[str] = None
    agent_id: Optional[str] = None
    system_prompt: Optional[StrictStr] = None
    temperature: Any = None

    @field_validator("model_id", "agent_id", mode="before")
    @classmethod
    def _non_blank_identifier(cls, value: Any) -> str:
        # Only runs when the key is present; an explicit null is invalid too.
        if not isinstance(value, str) or not value.strip():
            raise ValueError("must be a non-blank string")
        return value.strip()

    @field_validator("system_prompt")
    @classmethod
    def _blank_prompt_is_absent(cls, value: Optional[str]) -> Optional[str]:
        return (value or "").strip() or None


@dataclass(frozen=True)
class ResolvedCallParameters:
    model_id: str
    system_prompt: str
    temperature: float


def parse_chat_request(raw: Union[bytes, str], *, require_system_prompt: bool = False) -> ChatRequest:
    """Parse and validate a raw ``POST /chat`` body.

    Raises:
        BadRequestError: ``Invalid JSON body``, ``Invalid messages``,
            ``Invalid modelId``, ``Invalid agentId`` or ``Invalid systemPrompt``.
    """
    request = parse_json_body(ChatRequest, raw, fallback="Invalid messages")
    if require_system_prompt and request.agent_id is None and request.system_prompt is None:
        raise BadRequestError("Invalid systemPrompt")
    return request


def resolve_parameters(
    request: ChatRequest,
    agent_store: AgentStore,
    default_model_id: str,
) -> ResolvedCallParameters:
    """Apply the precedence rule: agent preset, explicit model, default model.

    Request-supplied ``systemPrompt`` and ``temperature`` override catalog
    defaults but not an agent preset.
    """
    if request.agent_id is not None:
        preset = agent_store.get_by_id(request.agent_id)
        if preset is None:
            raise BadRequestError(f"Unknown agentId: {request.agent_id}")
        return ResolvedCallParameters(
            model_id=preset.model_id,
            system_prompt=preset.system_prompt,
            temperature=preset.temperature,
        )

    model_id = request.model_id or (default_model_id or "").strip()
    if not model_id:
        raise BadRequestError("Missing modelId")

    spec = get_model(model_id)
    system_prompt = request.system_prompt or (spec.default_system_prompt if spec else FALLBACK_SYSTEM_PROMPT)

    temperature = normalize_temperature(request.temperature)
    if temperature is None:
        temperature = spec.default_temperature if spec else DEFAULT_TEMPERATURE

    return ResolvedCallParameters(model_id=model_id, system_prompt=system_prompt, temperature=temperature)


# ============================================================================
# Message Conversion
# ============================================================================

def convert_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Strip the client-only ``id`` from every message, preserving order."""
    return [{key: value for key, value in message.items() if key != "id"} for message in messages]


def _convert_part(part: Any) -> Optional[Any]:
    if not isinstance(part, dict):
        return part
    part_type = part.get("type")
    if part_type == "text":
        return {"type": "text", "text": str(part.get("text") or "")}
    if part_type in _DROPPED_PART_TYPES:
        return None
    media_type = str(part.get("mediaType") or "")
    if part_type == "file" and media_type.startswith("image/") and part.get("url"):
        return {"type": "image_url", "image_url": {"url": part["url"]}}
    return part


def to_provider_messages(model_messages: list[dict[str, Any]], system_prompt: str) -> list[dict[str, Any]]:
    """Build the Chat Completions ``messages`` array.

    The system prompt goes first. A message whose parts are all text is
    sent as one string; otherwise as a list of content parts.
    """
    provider_messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for message in model_messages:
        role = message.get("role")
        parts = message.get("parts")
        if not isinstance(parts, list):
            provider_messages.append({"role": role, "content": message.get("content") or ""})
            continue

        content_parts = [converted for converted in map(_convert_part, parts) if converted is not None]
        if not content_parts:
            continue
        if all(isinstance(p, dict) and p.get("type") == "text" for p in content_parts):
            content: Any = "".join(p["text"] for p in content_parts)
        else:
            content = content_parts
        provider_messages.append({"role": role, "content": content})
    return provider_messages


def _chunk_text(chunk: Any) -> str:
    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return ""
    delta = getattr(choices[0], "delta", None)
    content = getattr(delta, "content", None)
    return content if isinstance(content, str) else ""


# ============================================================================
# Pipeline
# ============================================================================

class ChatPipeline:
    """Orchestrates one chat request.

    Args:
        registry: Resolves model ids to upstream handles.
        agent_store: Preset lookup for ``agentId``.
        settings: Default model, system prompt policy and timeout.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        agent_store: AgentStore,
        settings: GatewaySettings,
    ) -> None:
        self._registry = registry
        self._agent_store = agent_store
        self._settings = settings

    async def handle(self, raw_body: bytes) -> UIMessageStreamResponse:
        """Run the pipeline and return the streaming response.

        Raises:
            BadRequestError: Invalid body, fields, agent or model.
            UpstreamError: The upstream call failed before streaming.
        """
        request = parse_chat_request(raw_body, require_system_prompt=self._settings.require_system_prompt)
        params = resolve_parameters(request, self._agent_store, self._settings.default_model_id)
        model_messages = convert_messages(request.messages)

        logger.info(
            "chat.request.resolved",
            model_id=params.model_id,
            agent_id=request.agent_id,
            message_count=len(model_messages),
            temperature=params.temperature,
        )

        if is_image_generation_model(params.model_id):
            logger.info("chat.image_model.bypass", model_id=params.model_id)
            return self._stream_response(single_text(IMAGE_MODEL_REPLY), request.messages)

        try:
            handle = self._registry.resolve(params.model_id)
        except ConfigurationError as exc:
            # The caller picked a model this deployment cannot serve.
            raise BadRequestError(exc.message) from exc

        provider_messages = to_provider_messages(model_messages, params.system_prompt)
        deadline = time.monotonic() + self._settings.upstream_timeout_seconds
        stream = await self._open_upstream(handle, provider_messages, params.temperature, deadline)
        # The response owns the upstream stream from here on.
        return self._stream_response(
            self._text_deltas(stream, handle, deadline),
            request.messages,
            on_close=stream.close,
        )

    def _stream_response(
        self,
        deltas: AsyncIterator[str],
        original_messages: list[dict[str, Any]],
        on_close: Optional[CloseCallback] = None,
    ) -> UIMessageStreamResponse:
        return UIMessageStreamResponse(
            ui_message_stream(deltas, original_messages=original_messages),
            on_close=on_close,
        )

    def _remaining(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise UpstreamTimeoutError(self._settings.upstream_timeout_seconds)
        return remaining

    async def _open_upstream(
        self,
        handle: ModelHandle,
        messages: list[dict[str, Any]],
        temperature: float,
        deadline: float,
    ) -> Any:
        try:
            return await asyncio.wait_for(
                handle.open_stream(messages, temperature=temperature),
                timeout=self._remaining(deadline),
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
            logger.warning("chat.upstream.timeout", model_id=handle.model_id)
            raise UpstreamTimeoutError(self._settings.upstream_timeout_seconds) from exc
        except Exception as exc:
            logger.exception(
                "chat.upstream.error",
                model_id=handle.model_id,
                provider=handle.provider.value,
                error_type=type(exc).__name__,
            )
            raise UpstreamError(error_message(exc, fallback="Error calling model API")) from exc

    async def _text_deltas(self, stream: Any, handle: ModelHandle, deadline: float) -> AsyncIterator[str]:
        """Yield text deltas from the upstream stream under the shared deadline.

        Closing the upstream stream is left to the response that owns it.
        """
        iterator = stream.__aiter__()
        delta_count = 0
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=self._remaining(deadline))
                except StopAsyncIteration:
                    break
                except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
                    raise UpstreamTimeoutError(self._settings.upstream_timeout_seconds) from exc
                text = _chunk_text(chunk)
                if text:
                    delta_count += 1
                    yield text
        except asyncio.CancelledError:
            logger.info("chat.stream.cancelled", model_id=handle.model_id, deltas=delta_count)
            raise
        logger.info("chat.stream.complete", model_id=handle.model_id, deltas=delta_count)
