"""
Chat router.

    POST /chat - Stream one assistant reply as a UI message stream

Request body (JSON):
{
    "messages": [{"id": "1", "role": "user", "parts": [{"type": "text", "text": "hi"}]}],
    "agentId": "optional preset id",
    "modelId": "optional catalog model id",
    "systemPrompt": "optional persona",
    "temperature": 0.3
}

The body is read raw and parsed by the pipeline so malformed JSON yields
the gateway's own ``Invalid JSON body`` envelope.
"""
from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from chat_gateway.services.chat_pipeline import ChatPipeline

router = APIRouter()


def get_pipeline(request: Request) -> ChatPipeline:
    return request.app.state.pipeline


@router.post("/chat")
async def chat(request: Request) -> StreamingResponse:
    """Validate, resolve and stream. Errors propagate to the app's handlers."""
    raw_body = await request.body()
    return await get_pipeline(request).handle(raw_body)
