import asyncio
import json

import pytest

from chat_gateway.services.agents import InMemoryAgentStore
from chat_gateway.services.chat_pipeline import (
    FALLBACK_SYSTEM_PROMPT,
    ChatPipeline,
    convert_messages,
    parse_chat_request,
    resolve_parameters,
    to_provider_messages,
)
from chat_gateway.services.errors import BadRequestError
from chat_gateway.services.model_catalog import get_model
from chat_gateway.services.model_registry import ModelRegistry
from chat_gateway.services.providers import ProviderClientFactory
from conftest import VOLCENGINE_ENDPOINTS, make_settings, parse_sse, user_message


def _message_of(callable_, *args, **kwargs) -> str:
    with pytest.raises(BadRequestError) as excinfo:
        callable_(*args, **kwargs)
    return excinfo.value.message


def _parse(body, **kwargs):
    return parse_chat_request(json.dumps(body), **kwargs)


# ----------------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------------

def test_invalid_json_body():
    assert _message_of(parse_chat_request, b"{not json") == "Invalid JSON body"


@pytest.mark.parametrize("body", [{"messages": "hi"}, {}, {"messages": ["hi"]}, ["hi"], "hi"])
def test_invalid_messages(body):
    assert _message_of(_parse, body) == "Invalid messages"


@pytest.mark.parametrize("value", ["", "   ", 42, None])
def test_invalid_model_id(value):
    assert _message_of(_parse, {"messages": [], "modelId": value}) == "Invalid modelId"


def test_invalid_agent_id():
    assert _message_of(_parse, {"messages": [], "agentId": ""}) == "Invalid agentId"


def test_non_string_system_prompt():
    assert _message_of(_parse, {"messages": [], "systemPrompt": 5}) == "Invalid systemPrompt"


def test_first_invalid_field_is_reported():
    body = {"messages": "hi", "modelId": "", "systemPrompt": 5}
    assert _message_of(_parse, body) == "Invalid messages"


def test_identifiers_are_trimmed_and_temperature_kept_raw():
    request = _parse({"messages": [user_message("hi")], "modelId": " gpt-4o ", "temperature": "warm"})
    assert request.model_id == "gpt-4o"
    assert request.agent_id is None
    assert request.temperature == "warm"
    assert request.messages[0]["id"] == "1"


def test_required_system_prompt_policy():
    body = {"messages": [], "modelId": "gpt-4o", "systemPrompt": "  "}
    assert _message_of(_parse, body, require_system_prompt=True) == "Invalid systemPrompt"
    assert _parse(body).system_prompt is None

    with_agent = {"messages": [], "agentId": "gpt-4o"}
    assert _parse(with_agent, require_system_prompt=True).agent_id == "gpt-4o"


# ----------------------------------------------------------------------------
# Resolution
# ----------------------------------------------------------------------------

def _resolve(body, default_model_id="doubao-pro-32k", store=None):
    request = _parse({"messages": [], **body})
    return resolve_parameters(request, store or InMemoryAgentStore(), default_model_id)


def test_agent_preset_wins():
    store = InMemoryAgentStore()
    preset = store.create(name="Critic", model_id="gpt-4o-mini", system_prompt="Be harsh.", temperature=1.1)

    params = _resolve(
        {"agentId": preset.id, "modelId": "gpt-4o", "systemPrompt": "ignored", "temperature": 0},
        store=store,
    )
    assert (params.model_id, params.system_prompt, params.temperature) == ("gpt-4o-mini", "Be harsh.", 1.1)


def test_unknown_agent():
    assert _message_of(_resolve, {"agentId": "ghost"}) == "Unknown agentId: ghost"


def test_explicit_model_uses_catalog_defaults():
    spec = get_model("deepseek-r1-math")
    params = _resolve({"modelId": "deepseek-r1-math"})
    assert params.system_prompt == spec.default_system_prompt
    assert params.temperature == spec.default_temperature


def test_request_overrides_catalog_defaults():
    params = _resolve({"modelId": "gpt-4o", "systemPrompt": "SYS", "temperature": 10})
    assert params.system_prompt == "SYS"
    assert params.temperature == 2.0


@pytest.mark.parametrize("temperature, expected", [(-5, 0.0), ("warm", 0.3), (0.9, 0.9), (10**400, 2.0)])
def test_temperature_clamped_or_defaulted(temperature, expected):
    assert _resolve({"modelId": "gpt-4o", "temperature": temperature}).temperature == expected


def test_default_model_when_none_given():
    params = _resolve({"systemPrompt": "SYS"})
    assert params.model_id == "doubao-pro-32k"
    assert params.system_prompt == "SYS"


def test_missing_model_when_no_default():
    assert _message_of(_resolve, {}, default_model_id="  ") == "Missing modelId"


def test_unknown_model_falls_back_to_generic_persona():
    params = _resolve({"modelId": "not-in-catalog"})
    assert params.system_prompt == FALLBACK_SYSTEM_PROMPT
    assert params.temperature == 0.3


# ----------------------------------------------------------------------------
# Conversion
# ----------------------------------------------------------------------------

def test_convert_strips_id_and_keeps_order():
    messages = [
        {"id": "1", "role": "user", "parts": [{"type": "text", "text": "a"}]},
        {"id": "2", "role": "assistant", "parts": [{"type": "text", "text": "b"}]},
    ]
    converted = convert_messages(messages)
    assert [m["role"] for m in converted] == ["user", "assistant"]
    assert all("id" not in m for m in converted)
    assert messages[0]["id"] == "1"


def test_provider_messages_text_only():
    model_messages = convert_messages([
        {"id": "1", "role": "user", "parts": [{"type": "text", "text": "hel"}, {"type": "text", "text": "lo"}]},
        {"id": "2", "role": "assistant", "parts": [{"type": "step-start"}, {"type": "text", "text": "hey"}]},
        {"role": "user", "content": "plain"},
    ])
    assert to_provider_messages(model_messages, "SYS") == [
        {"role": "system", "content": "SYS"},
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "hey"},
        {"role": "user", "content": "plain"},
    ]


def test_provider_messages_with_image_and_unknown_parts():
    unknown = {"type": "reasoning", "text": "thinking"}
    model_messages = convert_messages([
        {
            "id": "1",
            "role": "user",
            "parts": [
                {"type": "text", "text": "what is this?"},
                {"type": "file", "mediaType": "image/png", "url": "data:image/png;base64,AAA"},
                unknown,
            ],
        }
    ])
    assert to_provider_messages(model_messages, "SYS")[1] == {
        "role": "user",
        "content": [
            {"type": "text", "text": "what is this?"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAA"}},
            unknown,
        ],
    }


def test_message_with_only_ui_markers_is_dropped():
    model_messages = convert_messages([{"id": "1", "role": "assistant", "parts": [{"type": "step-start"}]}])
    assert to_provider_messages(model_messages, "SYS") == [{"role": "system", "content": "SYS"}]


# ----------------------------------------------------------------------------
# Upstream stream lifetime
# ----------------------------------------------------------------------------

def _pipeline(**overrides) -> ChatPipeline:
    settings = make_settings(**overrides)
    registry = ModelRegistry(ProviderClientFactory(settings), env=dict(VOLCENGINE_ENDPOINTS))
    return ChatPipeline(registry, InMemoryAgentStore(), settings)


def _chat_body(**body) -> bytes:
    body.setdefault("messages", [user_message("hi")])
    body.setdefault("modelId", "gpt-4o")
    return json.dumps(body).encode()


@pytest.mark.asyncio
async def test_response_closed_before_first_frame_closes_upstream(upstream):
    response = await _pipeline().handle(_chat_body())

    await response.body_iterator.aclose()

    assert len(upstream.calls) == 1
    assert upstream.closed_streams == 1


@pytest.mark.asyncio
async def test_disconnect_after_first_delta_closes_upstream(upstream):
    upstream.deltas = ["one", "two", "three"]
    response = await _pipeline().handle(_chat_body())

    frames = response.body_iterator
    async for frame in frames:
        if '"type":"text-delta"' in frame:
            break
    assert upstream.closed_streams == 0

    await frames.aclose()
    assert upstream.closed_streams == 1


@pytest.mark.asyncio
async def test_cancelled_consumer_closes_upstream(upstream):
    upstream.deltas = [f"part-{i}" for i in range(50)]
    upstream.chunk_delay = 0.01
    response = await _pipeline().handle(_chat_body())
    first_delta = asyncio.Event()

    async def consume():
        async for frame in response.body_iterator:
            if '"type":"text-delta"' in frame:
                first_delta.set()

    task = asyncio.create_task(consume())
    await asyncio.wait_for(first_delta.wait(), timeout=2)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert upstream.closed_streams == 1


@pytest.mark.asyncio
async def test_completed_stream_closes_upstream_once(upstream):
    response = await _pipeline().handle(_chat_body())

    events = parse_sse("".join([frame async for frame in response.body_iterator]))
    await response.body_iterator.aclose()

    assert events[-1] == "[DONE]"
    assert upstream.closed_streams == 1


@pytest.mark.asyncio
async def test_image_model_reply_has_no_upstream_to_close(upstream):
    response = await _pipeline().handle(_chat_body(modelId="doubao-seedream-artist"))

    await response.body_iterator.aclose()

    assert upstream.calls == []
    assert upstream.closed_streams == 0
