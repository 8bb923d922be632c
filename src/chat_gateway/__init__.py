"""Chat Gateway: streaming chat-completion proxy for OpenAI and Volcengine.

This package provides a thin FastAPI backend with:
- A static model catalog and agent presets derived from it
- Lazy, cached OpenAI-compatible provider clients
- A chat pipeline that resolves call parameters and re-emits upstream
  tokens as a UI message stream (Server-Sent Events)
- Uniform ``{"error": message}`` envelopes and CORS on every response
"""

__version__ = "0.1.0"
