"""Static model capability table.

Decides which optional parameters accompany a request. There is no runtime
negotiation with providers: unknown models fall back to prefix heuristics.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

Provider = Literal["openai", "anthropic", "gemini", "moonshot"]
WebSearchStyle = Literal["responses", "anthropic-tool", "grounding", "none"]

# Effort rungs from weakest to strongest; used to coerce out-of-range values.
_EFFORT_LADDER: tuple[str, ...] = ("none", "minimal", "low", "medium", "high", "xhigh")
_EFFORT_ALIASES = {"x-high": "xhigh", "extra-high": "xhigh", "extra_high": "xhigh"}


class ModelSpec(BaseModel):
    """Capabilities of one selectable model."""

    id: str
    """UI-facing id."""
    label: str
    api_id: str
    """Id sent to the provider."""
    provider: Provider
    supports_temperature: bool = True
    supports_images: bool = True
    reasoning_options: list[str] = Field(default_factory=list)
    default_reasoning: str | None = None
    web_search: WebSearchStyle = "none"


UI_MODELS: list[ModelSpec] = [
    ModelSpec(
        id="gpt-5.2",
        label="GPT-5.2",
        api_id="gpt-5.2",
        provider="openai",
        supports_temperature=False,
        reasoning_options=["none", "low", "medium", "high", "xhigh"],
        default_reasoning="medium",
        web_search="responses",
    ),
    ModelSpec(
        id="gpt-5.2-codex",
        label="GPT-5.2 Codex",
        api_id="gpt-5.2-codex",
        provider="openai",
        supports_temperature=False,
        reasoning_options=["medium", "high", "xhigh"],
        default_reasoning="medium",
        web_search="responses",
    ),
    ModelSpec(
        id="o3",
        label="o3",
        api_id="o3",
        provider="openai",
        supports_temperature=False,
        reasoning_options=["low", "medium", "high"],
        default_reasoning="medium",
        web_search="responses",
    ),
    ModelSpec(
        id="claude-opus-4.6",
        label="Claude Opus 4.6",
        api_id="claude-opus-4-6",
        provider="anthropic",
        reasoning_options=["low", "medium", "high"],
        default_reasoning="medium",
        web_search="anthropic-tool",
    ),
    ModelSpec(
        id="claude-sonnet-4.6",
        label="Claude Sonnet 4.6",
        api_id="claude-sonnet-4-6",
        provider="anthropic",
        reasoning_options=["low", "medium", "high"],
        default_reasoning="medium",
        web_search="anthropic-tool",
    ),
    ModelSpec(
        id="gemini-3.1-pro-preview",
        label="Gemini 3.1 Pro (preview)",
        api_id="gemini-3.1-pro-preview",
        provider="gemini",
        reasoning_options=["low", "medium", "high"],
        default_reasoning="medium",
        web_search="grounding",
    ),
    ModelSpec(
        id="kimi-k2.5",
        label="Kimi K2.5",
        api_id="kimi-k2.5",
        provider="moonshot",
        supports_temperature=False,
        supports_images=False,
        reasoning_options=["enabled", "disabled"],
        default_reasoning="enabled",
    ),
]

_BY_ID: dict[str, ModelSpec] = {m.id: m for m in UI_MODELS}
_BY_API_ID: dict[str, ModelSpec] = {m.api_id: m for m in UI_MODELS}


def get_model_spec(model: str) -> ModelSpec | None:
    """Look up a model by UI id or API id."""
    return _BY_ID.get(model) or _BY_API_ID.get(model)


def map_ui_model_to_api(model: str) -> str:
    """UI id to provider API id. Unknown ids pass through unchanged."""
    spec = _BY_ID.get(model)
    return spec.api_id if spec else model


def get_provider_for_model(model: str) -> Provider:
    spec = get_model_spec(model)
    if spec is not None:
        return spec.provider
    lower = model.lower()
    if lower.startswith("claude-"):
        return "anthropic"
    if lower.startswith("gemini-"):
        return "gemini"
    if lower.startswith(("kimi-", "moonshot-")):
        return "moonshot"
    return "openai"


def supports_temperature(model: str) -> bool:
    spec = get_model_spec(model)
    if spec is not None:
        return spec.supports_temperature
    api = map_ui_model_to_api(model)
    return not api.startswith(("o1", "o3", "o4", "gpt-5"))


def supports_reasoning_effort(model: str) -> bool:
    return bool(get_reasoning_effort_options(model))


def supports_images(model: str) -> bool:
    spec = get_model_spec(model)
    return spec.supports_images if spec is not None else False


def web_search_support(model: str) -> tuple[bool, WebSearchStyle]:
    """Whether first-party web search is available, and how it is enabled."""
    spec = get_model_spec(model)
    style: WebSearchStyle = spec.web_search if spec is not None else "none"
    return style != "none", style


def supports_web_search(model: str) -> bool:
    return web_search_support(model)[0]


def get_reasoning_effort_options(model: str) -> list[str]:
    spec = get_model_spec(model)
    if spec is not None:
        return list(spec.reasoning_options)
    api = map_ui_model_to_api(model)
    if api.startswith(("o1", "o3", "o4", "gpt-5", "claude-")):
        return ["low", "medium", "high"]
    return []


def _default_effort(options: list[str], spec: ModelSpec | None) -> str:
    if spec is not None and spec.default_reasoning in options:
        return spec.default_reasoning
    return "medium" if "medium" in options else options[0]


def get_reasoning_effort_for_model(model: str, value: str | None) -> str | None:
    """
    Coerce ``value`` to an effort the model accepts.

    Values on the effort ladder snap to the nearest supported rung
    (``"minimal"`` → ``"low"``, ``"x-high"`` → ``"xhigh"`` or ``"high"``).
    Anything else, including ``None``, becomes the model default. Returns
    ``None`` for models without reasoning controls.
    """
    options = get_reasoning_effort_options(model)
    if not options:
        return None
    spec = get_model_spec(model)
    if value is None:
        return _default_effort(options, spec)

    normalized = _EFFORT_ALIASES.get(value.strip().lower(), value.strip().lower())
    if normalized in options:
        return normalized
    ladder_options = [o for o in options if o in _EFFORT_LADDER]
    if normalized not in _EFFORT_LADDER or not ladder_options:
        return _default_effort(options, spec)

    rank = _EFFORT_LADDER.index(normalized)
    return min(
        ladder_options,
        key=lambda o: (abs(_EFFORT_LADDER.index(o) - rank), _EFFORT_LADDER.index(o)),
    )
