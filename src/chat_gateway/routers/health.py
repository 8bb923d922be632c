"""
Health endpoints.

    GET /health      - Liveness, no dependencies
    GET /healthcheck - Provider configuration report

Healthcheck response:
{
    "status": "ok",
    "providers": {
        "openai": {"configured": true, "models": ["gpt-4o", "gpt-4o-mini"]},
        "volcengine": {"configured": false, "models": []}
    },
    "timestamp": "2026-01-01T00:00:00+00:00"
}
"""
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chat_gateway.services.errors import json_response
from chat_gateway.services.model_catalog import Provider, get_model_ids_for_provider
from chat_gateway.services.providers import check_provider_configuration

logger = structlog.get_logger(__name__)

router = APIRouter()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health() -> JSONResponse:
    return json_response({"ok": True})


@router.get("/healthcheck")
async def healthcheck(request: Request) -> JSONResponse:
    """Report which providers have credentials and the models each can serve.

    Returns 500 with every provider unconfigured if the check itself fails.
    """
    try:
        configured = check_provider_configuration(request.app.state.settings)
        providers = {
            provider.value: {
                "configured": configured[provider],
                "models": get_model_ids_for_provider(provider) if configured[provider] else [],
            }
            for provider in Provider
        }
    except Exception as exc:
        logger.exception("healthcheck.error", error=str(exc))
        return json_response(
            {
                "status": "error",
                "message": str(exc) or "Healthcheck failed",
                "providers": {
                    provider.value: {"configured": False, "models": []} for provider in Provider
                },
                "timestamp": _timestamp(),
            },
            status_code=500,
        )

    return json_response({"status": "ok", "providers": providers, "timestamp": _timestamp()})
