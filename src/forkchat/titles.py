"""Short session titles generated from the first question."""

from __future__ import annotations

import re

import structlog
from jinja2 import Template

from forkchat.models.message import Turn
from forkchat.providers.catalog import supports_temperature
from forkchat.providers.transport import ProviderTransport, StreamRequest, TransportError

DEFAULT_TITLE = "New Session"
MAX_TITLE_CHARS = 60

DEFAULT_PROMPT_TEMPLATE = "Create a very short title for this question:\n\n{{ question }}"

_SYSTEM_PROMPT = (
    "You generate concise chat titles. Respond with a 3-6 word title without punctuation."
)

_logger = structlog.get_logger("forkchat.titles")


def clean_title(raw: str) -> str:
    """Collapse whitespace, strip surrounding quotes and cut to 60 characters."""
    title = re.sub(r"\s+", " ", raw).strip().strip("\"'").strip()
    return title[:MAX_TITLE_CHARS].rstrip() or DEFAULT_TITLE


async def generate_session_title(
    transport: ProviderTransport,
    question: str,
    model: str,
    *,
    api_key: str | None = None,
    prompt_template: str = DEFAULT_PROMPT_TEMPLATE,
) -> str:
    """
    Ask ``model`` for a 3-6 word title summarising ``question``.

    Never raises for provider failures: the fallback title is returned and the
    error logged, so a session is usable even when titling fails.
    """
    request = StreamRequest(
        model=model,
        turns=[
            Turn(role="system", content=_SYSTEM_PROMPT, segment="system"),
            Turn(role="user", content=Template(prompt_template).render(question=question)),
        ],
        temperature=0.5 if supports_temperature(model) else None,
        max_output_tokens=24,
        api_key=api_key,
    )
    try:
        raw = await transport.stream(request, lambda _delta: None)
    except TransportError as exc:
        _logger.warning("title_generation_failed", model=model, error=str(exc))
        return DEFAULT_TITLE
    return clean_title(raw)
