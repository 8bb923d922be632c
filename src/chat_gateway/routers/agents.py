"""
Agent presets router.

    GET /agents  - List catalog-derived and user-created presets
    POST /agents - Create a user preset (201)

Presets are serialized with camelCase keys:
{
    "id": "gpt-4o",
    "name": "English Tutor",
    "modelId": "gpt-4o",
    "systemPrompt": "...",
    "temperature": 0.3
}
"""
from typing import Any, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, StrictStr
from pydantic.alias_generators import to_camel

from chat_gateway.services.agents import AgentStore
from chat_gateway.services.errors import json_response, parse_json_body

router = APIRouter()


class CreateAgentRequest(BaseModel):
    """
    ``POST /agents`` request body.

    Only types are checked here; blank and unknown values are rejected by
    the store so every creation path shares one set of rules.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    name: Optional[StrictStr] = None
    model_id: Optional[StrictStr] = None
    system_prompt: Optional[StrictStr] = None
    temperature: Any = None


def get_agent_store(request: Request) -> AgentStore:
    return request.app.state.agent_store


@router.get("/agents")
async def list_agents(request: Request) -> JSONResponse:
    items = [preset.to_public() for preset in get_agent_store(request).list()]
    return json_response({"items": items})


@router.post("/agents")
async def create_agent(request: Request) -> JSONResponse:
    """Create a preset from ``{name, modelId, systemPrompt, temperature?}``.

    Raises:
        BadRequestError: Malformed JSON or a blank/unknown field.
    """
    body = parse_json_body(CreateAgentRequest, await request.body(), fallback="Invalid JSON body")
    preset = get_agent_store(request).create(
        name=body.name,
        model_id=body.model_id,
        system_prompt=body.system_prompt,
        temperature=body.temperature,
    )
    return json_response(preset.to_public(), status_code=201)
