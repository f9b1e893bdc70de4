"""Provider transports and the static model capability table."""

from forkchat.providers.catalog import (
    UI_MODELS,
    ModelSpec,
    get_model_spec,
    get_provider_for_model,
    get_reasoning_effort_for_model,
    get_reasoning_effort_options,
    map_ui_model_to_api,
    supports_images,
    supports_reasoning_effort,
    supports_temperature,
    supports_web_search,
    web_search_support,
)
from forkchat.providers.transport import (
    CancellationToken,
    LiteLLMTransport,
    MockTransport,
    ProviderTransport,
    StreamCancelledError,
    StreamRequest,
    TransportError,
    default_transport,
)

__all__ = [
    # Catalog
    "UI_MODELS",
    "ModelSpec",
    "get_model_spec",
    "get_provider_for_model",
    "get_reasoning_effort_for_model",
    "get_reasoning_effort_options",
    "map_ui_model_to_api",
    "supports_images",
    "supports_reasoning_effort",
    "supports_temperature",
    "supports_web_search",
    "web_search_support",
    # Transport
    "CancellationToken",
    "LiteLLMTransport",
    "MockTransport",
    "ProviderTransport",
    "StreamCancelledError",
    "StreamRequest",
    "TransportError",
    "default_transport",
]
