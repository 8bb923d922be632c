"""
Authoritative model catalog for the chat gateway.

Single source of truth for every invokable model: its provider, how the
upstream model is addressed, the default persona used when a request
does not supply one, and advisory capability flags. Every router and
service imports from here to guarantee consistency across endpoints.

Architecture:
    - /models          -> get_public_models()       for listing
    - /agents          -> get_all_models()          for catalog-derived presets
    - /chat            -> get_model()               for defaults
    - model_registry   -> get_model() / get_supported_model_ids()
    - /healthcheck     -> get_model_ids_for_provider()

Adding a new model:
    1. Add an entry to _CATALOG below.
    2. Volcengine entries need an endpoint environment variable name.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Provider(str, Enum):
    """Upstream vendors, all reached through an OpenAI-compatible API."""

    OPENAI = "openai"
    VOLCENGINE = "volcengine"


# Catalog-derived presets are listed volcengine first, then openai.
PROVIDER_PREFERENCE: tuple[Provider, ...] = (Provider.VOLCENGINE, Provider.OPENAI)

# Sentinel upstream name: the concrete endpoint id is read from the
# environment variable named by ``endpoint_env_var``.
RESOLVE_FROM_ENV: str = "@env"

# Image-generation-only models share this id prefix and never reach /chat upstream.
IMAGE_MODEL_PREFIX: str = "doubao-seedream-"


@dataclass(frozen=True, slots=True)
class ModelCapabilities:
    streaming: bool = True
    tools: bool = True
    vision: bool = False
    json: bool = True


@dataclass(frozen=True, slots=True)
class ModelSpec:
    """Immutable specification for a single invokable model.

    Attributes:
        id: Stable numeric key used for ordering and public listings.
        model_id: Canonical model identifier (e.g. ``"gpt-4o"``).
        provider: Upstream vendor.
        upstream_name: Concrete upstream model name, or RESOLVE_FROM_ENV.
        endpoint_env_var: Environment variable holding the endpoint id
            when ``upstream_name`` is RESOLVE_FROM_ENV.
        display_name: Human-readable name.
        summary: Short description for pickers.
        recommended_for: Typical use cases.
        capabilities: Advisory flags, not enforced by the pipeline.
        default_agent_name: Name of the catalog-derived preset.
        default_system_prompt: Persona used when a request has none.
        default_temperature: Sampling temperature in [0, 2].
    """

    id: int
    model_id: str
    provider: Provider
    upstream_name: str
    display_name: str
    summary: str
    default_agent_name: str
    default_system_prompt: str
    default_temperature: float
    endpoint_env_var: Optional[str] = None
    recommended_for: tuple[str, ...] = ()
    capabilities: ModelCapabilities = field(default_factory=ModelCapabilities)

    @property
    def resolves_from_env(self) -> bool:
        return self.upstream_name == RESOLVE_FROM_ENV

    @property
    def is_image_generation(self) -> bool:
        return is_image_generation_model(self.model_id)


# ============================================================================
# Canonical Model Definitions
# ============================================================================
# Ordered by numeric id.

_CATALOG: tuple[ModelSpec, ...] = (
    # --- Doubao --------------------------------------------------------------
    ModelSpec(
        id=1,
        model_id="doubao-pro-32k",
        provider=Provider.VOLCENGINE,
        upstream_name=RESOLVE_FROM_ENV,
        endpoint_env_var="VOLCENGINE_MODEL_DOUBAO_PRO",
        display_name="Doubao Pro 32k",
        summary="Long-form Chinese analysis, summarization and writing with structured output.",
        recommended_for=("long-form summaries", "report writing", "knowledge curation", "detailed explanations"),
        default_agent_name="Long-form Text Expert",
        default_system_prompt=(
            "You are an expert in processing long Chinese texts, skilled at analysing, summarizing "
            "and writing long-form content. Focus on logic and structure, answer in Chinese first "
            "and give English terms where useful."
        ),
        default_temperature=0.3,
    ),

    # --- DeepSeek R1 (reasoning) ---------------------------------------------
    ModelSpec(
        id=2,
        model_id="deepseek-r1-math",
        provider=Provider.VOLCENGINE,
        upstream_name=RESOLVE_FROM_ENV,
        endpoint_env_var="VOLCENGINE_MODEL_DEEPSEEK_R1",
        display_name="DeepSeek R1 - Math",
        summary="Strong reasoning for derivations, proofs and step-by-step verification.",
        recommended_for=("math problems", "formula derivation", "proofs", "rigorous solutions"),
        default_agent_name="Math Solver",
        default_system_prompt=(
            "You are a math problem-solving expert. When answering:\n"
            "1. Restate the known conditions and the goal\n"
            "2. Give a clear approach and steps\n"
            "3. Show the computation with LaTeX formulas\n"
            "4. Check that the answer is reasonable\n"
            "5. Offer alternative solutions when helpful"
        ),
        default_temperature=0.1,
    ),
    ModelSpec(
        id=3,
        model_id="deepseek-r1-code",
        provider=Provider.VOLCENGINE,
        upstream_name=RESOLVE_FROM_ENV,
        endpoint_env_var="VOLCENGINE_MODEL_DEEPSEEK_R1",
        display_name="DeepSeek R1 - Code",
        summary="Strong reasoning for reading code, locating bugs and suggesting refactors.",
        recommended_for=("code review", "bug hunting", "refactoring", "performance tuning"),
        default_agent_name="Code Debugger",
        default_system_prompt=(
            "You are a code debugging and optimisation expert. When answering:\n"
            "1. Analyse the code logic and potential problems\n"
            "2. Explain the cause of errors and how to fix them\n"
            "3. Provide an improved code sample\n"
            "4. Explain why the change is better\n"
            "5. Consider edge cases and performance"
        ),
        default_temperature=0.1,
    ),
    ModelSpec(
        id=4,
        model_id="deepseek-r1-logic",
        provider=Provider.VOLCENGINE,
        upstream_name=RESOLVE_FROM_ENV,
        endpoint_env_var="VOLCENGINE_MODEL_DEEPSEEK_R1",
        display_name="DeepSeek R1 - Logic",
        summary="Logical reasoning for arguments, decomposing hard problems and spotting flaws.",
        recommended_for=("logical deduction", "argument analysis", "problem decomposition", "decision analysis"),
        default_agent_name="Logic Assistant",
        default_system_prompt=(
            "You are a logical reasoning expert. When answering:\n"
            "1. State premises and assumptions\n"
            "2. Show the full chain of reasoning\n"
            "3. Point out fallacies and weak steps\n"
            "4. Give a rigorous argument\n"
            "5. Offer several perspectives"
        ),
        default_temperature=0.15,
    ),

    # --- DeepSeek V3 (general) -----------------------------------------------
    ModelSpec(
        id=5,
        model_id="deepseek-v3-general",
        provider=Provider.VOLCENGINE,
        upstream_name=RESOLVE_FROM_ENV,
        endpoint_env_var="VOLCENGINE_MODEL_DEEPSEEK_V3",
        display_name="DeepSeek V3 - General",
        summary="Balanced general model for everyday questions and light tasks.",
        recommended_for=("everyday Q&A", "explanations", "light writing", "brainstorming"),
        default_agent_name="Everyday Assistant",
        default_system_prompt=(
            "You are an everyday assistant who handles common questions efficiently. "
            "Keep answers concise, accurate and practical."
        ),
        default_temperature=0.4,
    ),
    ModelSpec(
        id=6,
        model_id="deepseek-v3-writer",
        provider=Provider.VOLCENGINE,
        upstream_name=RESOLVE_FROM_ENV,
        endpoint_env_var="VOLCENGINE_MODEL_DEEPSEEK_V3",
        display_name="DeepSeek V3 - Writer",
        summary="Expressive writing, polishing, expansion and rewriting.",
        recommended_for=("polishing", "copywriting", "expansion and rewriting", "style changes"),
        default_agent_name="Writing Assistant",
        default_system_prompt=(
            "You are a professional writing assistant. You help users:\n"
            "1. Write articles of any genre\n"
            "2. Polish and improve wording\n"
            "3. Outline ideas and structure\n"
            "4. Rewrite and expand content\n"
            "5. Proofread grammar and word choice"
        ),
        default_temperature=0.6,
    ),
    ModelSpec(
        id=7,
        model_id="deepseek-v3-agent",
        provider=Provider.VOLCENGINE,
        upstream_name=RESOLVE_FROM_ENV,
        endpoint_env_var="VOLCENGINE_MODEL_DEEPSEEK_V3",
        display_name="DeepSeek V3 - Agent",
        summary="Task execution: planning, multi-step work and tool-style collaboration.",
        recommended_for=("task planning", "step-by-step execution", "workflow breakdown", "multi-turn work"),
        default_agent_name="Agent Assistant",
        default_system_prompt=(
            "You are an agent assistant who understands complex tasks and executes them step by step. "
            "You are good at:\n"
            "1. Breaking down and planning tasks\n"
            "2. Solving multi-step problems\n"
            "3. Integrating and summarizing information\n"
            "4. Calling tools and collaborating\n"
            "5. Keeping track of conversation context"
        ),
        default_temperature=0.3,
    ),

    # --- Seedream (image generation only) ------------------------------------
    ModelSpec(
        id=8,
        model_id="doubao-seedream-artist",
        provider=Provider.VOLCENGINE,
        upstream_name=RESOLVE_FROM_ENV,
        endpoint_env_var="VOLCENGINE_MODEL_DOUBAO_SEEDREAM",
        display_name="Seedream 4.5 - Artist",
        summary="Image generation (text-to-image, image-to-image); not available on /chat.",
        recommended_for=("text-to-image", "image-to-image", "artwork", "stylised design"),
        capabilities=ModelCapabilities(vision=True),
        default_agent_name="AI Art Creator",
        default_system_prompt=(
            "You are an AI art creator skilled at image generation. You:\n"
            "1. Understand the user's creative intent\n"
            "2. Advise on composition, colour and style\n"
            "3. Support text-to-image, image-to-image and multi-image fusion\n"
            "4. Control fine details such as faces, small text and layout\n"
            "5. Help users realise their visual ideas"
        ),
        default_temperature=0.7,
    ),
    ModelSpec(
        id=9,
        model_id="doubao-seedream-designer",
        provider=Provider.VOLCENGINE,
        upstream_name=RESOLVE_FROM_ENV,
        endpoint_env_var="VOLCENGINE_MODEL_DOUBAO_SEEDREAM",
        display_name="Seedream 4.5 - Designer",
        summary="Image generation for UI, posters and visual design; not available on /chat.",
        recommended_for=("UI mockups", "posters", "visual assets", "colour and layout"),
        capabilities=ModelCapabilities(vision=True),
        default_agent_name="UI Design Assistant",
        default_system_prompt=(
            "You are a UI/UX design assistant focused on interface and visual design. You help:\n"
            "1. Generate mockups and prototypes\n"
            "2. Suggest colour schemes and layouts\n"
            "3. Create icons, illustrations and visual elements\n"
            "4. Improve usability and visual hierarchy\n"
            "5. Produce several design options"
        ),
        default_temperature=0.6,
    ),

    # --- OpenAI --------------------------------------------------------------
    ModelSpec(
        id=10,
        model_id="gpt-4o",
        provider=Provider.OPENAI,
        upstream_name="gpt-4o",
        display_name="GPT-4o",
        summary="High-quality multimodal model for complex questions and visual input.",
        recommended_for=("complex Q&A", "multimodal understanding", "high-quality output", "precise writing"),
        capabilities=ModelCapabilities(vision=True),
        default_agent_name="English Tutor",
        default_system_prompt=(
            "You are a professional English tutor. Use standard English grammar, vocabulary and "
            "sentence structure, and correct students' English essays."
        ),
        default_temperature=0.3,
    ),
    ModelSpec(
        id=11,
        model_id="gpt-4o-mini",
        provider=Provider.OPENAI,
        upstream_name="gpt-4o-mini",
        display_name="GPT-4o mini",
        summary="Faster, cheaper general model for frequent questions and light tasks.",
        recommended_for=("frequent Q&A", "light writing", "brainstorming", "quick drafts"),
        capabilities=ModelCapabilities(vision=True),
        default_agent_name="Efficient Assistant",
        default_system_prompt="You are an efficient assistant. Prefer concise, actionable answers.",
        default_temperature=0.4,
    ),
)


def _validate_catalog(entries: tuple[ModelSpec, ...]) -> dict[str, ModelSpec]:
    """Index entries by model_id, enforcing the catalog invariants."""
    indexed: dict[str, ModelSpec] = {}
    for spec in entries:
        if spec.model_id in indexed:
            raise ValueError(f"Duplicate model_id in catalog: {spec.model_id}")
        if spec.resolves_from_env and not (spec.endpoint_env_var or "").strip():
            raise ValueError(f"Model {spec.model_id} is missing endpoint_env_var")
        if not 0.0 <= spec.default_temperature <= 2.0:
            raise ValueError(f"Model {spec.model_id} default_temperature out of range")
        indexed[spec.model_id] = spec
    return indexed


_MODELS: dict[str, ModelSpec] = _validate_catalog(_CATALOG)


# ============================================================================
# Public Query API
# ============================================================================

def get_all_models() -> list[ModelSpec]:
    """Return every catalog entry in catalog order."""
    return list(_MODELS.values())


def get_model(model_id: str) -> Optional[ModelSpec]:
    """Look up a model by exact ID.

    Returns:
        ModelSpec if found, ``None`` otherwise.
    """
    return _MODELS.get(model_id)


def get_supported_model_ids() -> list[str]:
    """Return all model IDs in catalog order."""
    return list(_MODELS.keys())


def get_model_ids_for_provider(provider: Provider) -> list[str]:
    return [spec.model_id for spec in _MODELS.values() if spec.provider == provider]


def is_image_generation_model(model_id: str) -> bool:
    """Whether *model_id* names an image-generation-only model."""
    return model_id.startswith(IMAGE_MODEL_PREFIX)


def get_public_models() -> list[dict[str, Any]]:
    """Return catalog entries projected to the public ``/models`` fields.

    Upstream routing details (endpoint variables, upstream names) are
    not exposed.
    """
    return [
        {
            "id": spec.id,
            "modelId": spec.model_id,
            "provider": spec.provider.value,
            "displayName": spec.display_name,
            "summary": spec.summary,
            "recommendedFor": list(spec.recommended_for),
            "capabilities": {
                "streaming": spec.capabilities.streaming,
                "tools": spec.capabilities.tools,
                "vision": spec.capabilities.vision,
                "json": spec.capabilities.json,
            },
            "defaultAgent": {
                "name": spec.default_agent_name,
                "systemPrompt": spec.default_system_prompt,
                "temperature": spec.default_temperature,
            },
        }
        for spec in _MODELS.values()
    ]
