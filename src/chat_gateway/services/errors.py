"""
Gateway error taxonomy and the uniform error envelope.

Every error response, whatever its origin, has the same body shape so
clients need a single parsing path:
{
    "error": "Human-readable error description"
}

Error Types:
    - BadRequestError (400): Malformed JSON, missing/invalid fields,
      unknown agent or model id
    - UnknownModelError (400): Model id not present in the catalog
    - ConfigurationError (500): Missing credential or environment variable
    - UpstreamError (500): Provider call failure before streaming starts
    - UpstreamTimeoutError (500): Provider call exceeded its time bound
    - NotFoundError (404): Unmatched route
"""
from typing import Mapping, Optional, TypeVar, Union

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

JSON_CONTENT_TYPE: str = "application/json; charset=utf-8"

ModelT = TypeVar("ModelT", bound=BaseModel)


# ============================================================================
# Exceptions
# ============================================================================

class GatewayError(Exception):
    """Base class for errors that map onto the JSON error envelope.

    Attributes:
        message: Human-readable error description
        status_code: HTTP status returned at the boundary
    """
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequestError(GatewayError):
    status_code = 400


class UnknownModelError(BadRequestError):
    """Raised when a model id is not in the catalog.

    The message enumerates every known id; callers rely on it to
    discover valid choices.
    """

    def __init__(self, model_id: str, available: list[str]) -> None:
        super().__init__(f"Unknown modelId: {model_id}. Available: {', '.join(available)}")
        self.model_id = model_id
        self.available = available


class ConfigurationError(GatewayError):
    """Raised when a required credential or environment variable is missing."""
    status_code = 500

    @classmethod
    def missing_variable(cls, name: str) -> "ConfigurationError":
        return cls(f"Missing environment variable: {name}")


class UpstreamError(GatewayError):
    status_code = 500


class UpstreamTimeoutError(UpstreamError):
    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Upstream request timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class NotFoundError(GatewayError):
    status_code = 404


# ============================================================================
# Error Response Factory
# ============================================================================

def json_response(
    content: object,
    status_code: int = 200,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    """Create a JSON response with an explicit UTF-8 content type."""
    response = JSONResponse(status_code=status_code, content=content, headers=dict(headers or {}))
    response.headers["Content-Type"] = JSON_CONTENT_TYPE
    return response


def error_response(
    message: str,
    status_code: int = 400,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    """
    Create an error envelope response.

    Args:
        message: Human-readable error description
        status_code: HTTP status code
        headers: Extra headers (e.g. CORS) to attach

    Returns:
        JSONResponse with body ``{"error": message}``

    Example:
        >>> error_response("Invalid messages", status_code=400)
    """
    return json_response({"error": message}, status_code=status_code, headers=headers)


def error_message(exc: BaseException, fallback: str = "Unknown error") -> str:
    """Return the message of *exc*, or *fallback* when it has none."""
    if isinstance(exc, GatewayError):
        return exc.message
    text = str(exc).strip()
    return text or fallback


# ============================================================================
# Request Body Parsing
# ============================================================================

def _wire_names(model: type[BaseModel]) -> dict[str, str]:
    names: dict[str, str] = {}
    for name, field in model.model_fields.items():
        alias = field.alias or name
        names[name] = alias
        names[alias] = alias
    return names


def validation_error_message(model: type[BaseModel], exc: ValidationError, fallback: str) -> str:
    """Reduce a pydantic ValidationError to the gateway's one-line message.

    Malformed JSON is ``Invalid JSON body``; a bad field is
    ``Invalid <wireName>``; a body that is not an object gets *fallback*.
    """
    errors = exc.errors()
    if not errors:
        return fallback
    first = errors[0]
    if first.get("type") == "json_invalid":
        return "Invalid JSON body"
    loc = first.get("loc") or ()
    if not loc:
        return fallback
    return f"Invalid {_wire_names(model).get(str(loc[0]), loc[0])}"


def parse_json_body(model: type[ModelT], raw: Union[bytes, str], *, fallback: str) -> ModelT:
    """
    Validate a raw JSON request body into *model*.

    Args:
        model: Pydantic request model
        raw: Request body bytes
        fallback: Message used when the body is valid JSON but not an object

    Raises:
        BadRequestError: With the message from validation_error_message()
    """
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        raise BadRequestError(validation_error_message(model, exc, fallback)) from exc
