import asyncio
import json
from types import SimpleNamespace
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from chat_gateway.config import GatewaySettings
from chat_gateway.main import create_app
from chat_gateway.services import providers

VOLCENGINE_ENDPOINTS = {
    "VOLCENGINE_MODEL_DOUBAO_PRO": "ep-doubao-pro",
    "VOLCENGINE_MODEL_DEEPSEEK_R1": "ep-deepseek-r1",
    "VOLCENGINE_MODEL_DEEPSEEK_V3": "ep-deepseek-v3",
    "VOLCENGINE_MODEL_DOUBAO_SEEDREAM": "ep-seedream",
}


# ============================================================================
# Fake OpenAI-compatible upstream
# ============================================================================

class FakeUpstream:
    """Scriptable stand-in for a provider: records calls, replays deltas."""

    def __init__(self) -> None:
        self.deltas: list[str] = ["Hello", ", ", "world"]
        self.open_error: Optional[Exception] = None
        self.stream_error: Optional[Exception] = None
        self.chunk_delay: float = 0.0
        self.calls: list[dict[str, Any]] = []
        self.clients: list["FakeAsyncOpenAI"] = []
        self.closed_streams = 0


class FakeStream:
    def __init__(self, upstream: FakeUpstream) -> None:
        self._upstream = upstream
        self._pending = list(upstream.deltas)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._upstream.chunk_delay:
            await asyncio.sleep(self._upstream.chunk_delay)
        if not self._pending:
            if self._upstream.stream_error is not None:
                raise self._upstream.stream_error
            raise StopAsyncIteration
        text = self._pending.pop(0)
        return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])

    async def close(self) -> None:
        self._upstream.closed_streams += 1


class FakeCompletions:
    def __init__(self, upstream: FakeUpstream) -> None:
        self._upstream = upstream

    async def create(self, **kwargs):
        self._upstream.calls.append(kwargs)
        if self._upstream.open_error is not None:
            raise self._upstream.open_error
        return FakeStream(self._upstream)


class FakeAsyncOpenAI:
    def __init__(self, upstream: FakeUpstream, **kwargs) -> None:
        self.kwargs = kwargs
        self.chat = SimpleNamespace(completions=FakeCompletions(upstream))
        self.closed = False
        upstream.clients.append(self)

    async def close(self) -> None:
        self.closed = True


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def _reset_client_cache():
    providers._clients.clear()
    yield
    providers._clients.clear()


@pytest.fixture
def upstream(monkeypatch) -> FakeUpstream:
    fake = FakeUpstream()
    monkeypatch.setattr(providers, "AsyncOpenAI", lambda **kwargs: FakeAsyncOpenAI(fake, **kwargs))
    return fake


def make_settings(**overrides) -> GatewaySettings:
    values: dict[str, Any] = {
        "openai_api_key": "sk-test",
        "openai_base_url": None,
        "volcengine_api_key": "volc-test",
        "volc_api_key": None,
        "cors_origin": "",
        "default_model_id": "doubao-pro-32k",
        "require_system_prompt": False,
        "upstream_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return GatewaySettings(_env_file=None, **values)


@pytest.fixture
def settings() -> GatewaySettings:
    return make_settings()


@pytest.fixture
def client(upstream, settings) -> TestClient:
    app = create_app(settings, env=dict(VOLCENGINE_ENDPOINTS))
    return TestClient(app)


def parse_sse(body: str) -> list[Any]:
    """Decode an SSE body into events; the terminator is returned as ``"[DONE]"``."""
    events: list[Any] = []
    for frame in body.split("\n\n"):
        if not frame.strip():
            continue
        assert frame.startswith("data: "), frame
        payload = frame[len("data: "):]
        events.append(payload if payload == "[DONE]" else json.loads(payload))
    return events


def user_message(text: str, message_id: str = "1") -> dict[str, Any]:
    return {"id": message_id, "role": "user", "parts": [{"type": "text", "text": text}]}
