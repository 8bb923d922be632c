"""
Models router.

    GET /models - List the model catalog

Items are the public projection of catalog entries; upstream routing
data (endpoint variables, upstream names) is never exposed.
"""
from fastapi import APIRouter
from fastapi.responses import JSONResponse

from chat_gateway.services.errors import json_response
from chat_gateway.services.model_catalog import get_public_models

router = APIRouter()


@router.get("/models")
async def list_models() -> JSONResponse:
    return json_response({"items": get_public_models()})
