"""Uniform "send turns, receive incremental text" interface over LLM providers."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from forkchat.models.message import Turn
from forkchat.providers.catalog import get_provider_for_model, map_ui_model_to_api

DeltaCallback = Callable[[str], None | Awaitable[None]]

_LITELLM_PREFIX = {
    "openai": "openai",
    "anthropic": "anthropic",
    "gemini": "gemini",
    "moonshot": "moonshot",
}

# ── Exceptions ─────────────────────────────────────────────────────────────────


class TransportError(Exception):
    """Raised when a provider request fails (network, non-success status, bad stream)."""

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class StreamCancelledError(TransportError):
    """Raised when a stream is aborted through its cancellation token."""

    def __init__(self) -> None:
        super().__init__("Stream cancelled")


# ── Request ────────────────────────────────────────────────────────────────────


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a running stream."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise StreamCancelledError()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class StreamRequest:
    """Everything a transport needs for one outbound request."""

    model: str
    """UI or API model id; transports map it as needed."""
    turns: Sequence[Turn]
    temperature: float | None = None
    reasoning_effort: str | None = None
    max_output_tokens: int | None = None
    web_search: bool = False
    api_key: str | None = None
    cancel_token: CancellationToken | None = None

    def payload(self) -> list[dict[str, Any]]:
        return [t.to_payload() for t in self.turns]


class ProviderTransport(Protocol):
    async def stream(self, request: StreamRequest, on_delta: DeltaCallback) -> str:
        """
        Stream a completion, calling ``on_delta`` for each text chunk in order.

        Returns:
            The full concatenated text.

        Raises:
            StreamCancelledError: If ``request.cancel_token`` fires mid-stream.
            TransportError: On any provider failure.
        """
        ...


async def _emit(on_delta: DeltaCallback, text: str) -> None:
    result = on_delta(text)
    if asyncio.iscoroutine(result):
        await result


# ── litellm ────────────────────────────────────────────────────────────────────


class LiteLLMTransport:
    """
    Streams through ``litellm.acompletion`` for every supported provider.

    Optional parameters are forwarded only when set on the request; deciding
    whether a model accepts them is the caller's job (see
    :mod:`forkchat.providers.catalog`).
    """

    def __init__(self, extra_kwargs: dict[str, Any] | None = None) -> None:
        self._extra = dict(extra_kwargs or {})
        self._logger = structlog.get_logger("forkchat.transport")

    @staticmethod
    def litellm_model(model: str) -> str:
        """``"claude-opus-4.6"`` → ``"anthropic/claude-opus-4-6"``."""
        api_id = map_ui_model_to_api(model)
        if "/" in api_id:
            return api_id
        return f"{_LITELLM_PREFIX[get_provider_for_model(api_id)]}/{api_id}"

    def build_kwargs(self, request: StreamRequest) -> dict[str, Any]:
        provider = get_provider_for_model(request.model)
        kwargs: dict[str, Any] = {
            "model": self.litellm_model(request.model),
            "messages": request.payload(),
            "stream": True,
            **self._extra,
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            kwargs["max_tokens"] = request.max_output_tokens
        if request.reasoning_effort is not None:
            if provider == "moonshot":
                kwargs["extra_body"] = {"thinking": {"type": request.reasoning_effort}}
            else:
                kwargs["reasoning_effort"] = request.reasoning_effort
        if request.web_search:
            kwargs["web_search_options"] = {"search_context_size": "medium"}
        if request.api_key:
            kwargs["api_key"] = request.api_key
        return kwargs

    async def stream(self, request: StreamRequest, on_delta: DeltaCallback) -> str:
        import litellm

        provider = get_provider_for_model(request.model)
        token = request.cancel_token
        text_accumulator = ""
        try:
            if token is not None:
                token.raise_if_cancelled()
            response = await litellm.acompletion(**self.build_kwargs(request))
            async for chunk in response:
                if token is not None:
                    token.raise_if_cancelled()
                delta = chunk.choices[0].delta if chunk.choices else None
                if delta is None or not delta.content:
                    continue
                text_accumulator += delta.content
                await _emit(on_delta, delta.content)
        except TransportError:
            raise
        except Exception as exc:
            self._logger.error("provider_request_failed", provider=provider, error=str(exc))
            raise TransportError(str(exc) or type(exc).__name__, provider=provider) from exc
        return text_accumulator


# ── Mock ───────────────────────────────────────────────────────────────────────


class MockTransport:
    """
    Canned word-by-word stream for demos and tests (``FORKCHAT_MOCK_LLM=1``).

    Echoes the last user turn so callers can see which context was sent.
    """

    def __init__(self, text: str | None = None, chunk_delay: float = 0.0) -> None:
        self._text = text
        self._chunk_delay = chunk_delay
        self.requests: list[StreamRequest] = []

    async def stream(self, request: StreamRequest, on_delta: DeltaCallback) -> str:
        self.requests.append(request)
        last_user = next(
            (t.text() for t in reversed(list(request.turns)) if t.role == "user"),
            "Hello",
        )
        text = self._text or (
            f"[Mock response to: {last_user[:100]}] "
            "This is a simulated response. Unset FORKCHAT_MOCK_LLM to use a real provider."
        )
        emitted = ""
        for word in text.split(" "):
            if request.cancel_token is not None:
                request.cancel_token.raise_if_cancelled()
            chunk = word if not emitted else " " + word
            emitted += chunk
            await _emit(on_delta, chunk)
            if self._chunk_delay:
                await asyncio.sleep(self._chunk_delay)
        return emitted


def default_transport() -> ProviderTransport:
    """:class:`MockTransport` when ``FORKCHAT_MOCK_LLM=1``, else :class:`LiteLLMTransport`."""
    if os.environ.get("FORKCHAT_MOCK_LLM") == "1":
        return MockTransport()
    return LiteLLMTransport()
