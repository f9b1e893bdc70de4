"""Core session, message and content-part models for forkchat."""

from __future__ import annotations

import time
from typing import Annotated, Literal

from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "system"]


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


# ── Content Parts ──────────────────────────────────────────────────────────────


class TextPart(BaseModel):
    """A plain text segment of a turn."""

    type: Literal["text"] = "text"
    text: str


class ImageURL(BaseModel):
    url: str
    """``data:`` URL or remote ``http(s)`` URL."""


class ImagePart(BaseModel):
    """An image reference for multimodal providers."""

    type: Literal["image_url"] = "image_url"
    image_url: ImageURL

    @classmethod
    def from_url(cls, url: str) -> ImagePart:
        return cls(image_url=ImageURL(url=url))


ContentPart = Annotated[TextPart | ImagePart, Field(discriminator="type")]


# ── Attachments ────────────────────────────────────────────────────────────────


AttachmentKind = Literal["image", "pdf", "text", "other"]


class AttachmentMeta(BaseModel):
    """Metadata for a file attached to a user message. The blob lives in the AttachmentStore."""

    id: str
    name: str
    size: int
    mime: str
    kind: AttachmentKind
    blob_key: str
    """``"{message_id}:{attachment_id}"``."""
    preview_data_url: str | None = None


# ── Session & Message ──────────────────────────────────────────────────────────


class Session(BaseModel):
    """
    A conversation container.

    ``main_turns_limit`` and ``max_tokens`` are clamped by ``AppState`` when
    changed; the context builder trusts whatever it receives.
    """

    id: str
    title: str = "New Session"
    system_prompt: str | None = None
    created_at: int = Field(default_factory=now_ms)
    last_active_at: int = Field(default_factory=now_ms)
    temperature: float | None = None
    reasoning_effort: str | None = None
    main_turns_limit: int | None = None
    """Most recent main user+assistant *pairs* eligible for context."""
    max_tokens: int | None = None
    """Approximate token ceiling for an assembled context."""


class Message(BaseModel):
    """
    A node in the message forest.

    Main-chat messages have no ``anchor_message_id``. Reply-branch messages
    carry the id of the main-chat assistant message they hang off, and a
    ``parent_id`` pointing at the anchor or at another node of the same branch.
    """

    id: str
    session_id: str
    role: Role
    content: str = ""
    model: str | None = None
    parent_id: str | None = None
    anchor_message_id: str | None = None
    include_in_context: bool = True
    created_at: int = Field(default_factory=now_ms)
    """Unix millisecond timestamp. The only valid ordering key."""
    attachments: list[AttachmentMeta] = Field(default_factory=list)

    @property
    def is_branch(self) -> bool:
        return self.anchor_message_id is not None


# ── Context Output ─────────────────────────────────────────────────────────────


TurnSegment = Literal["system", "branch", "main"]


class Turn(BaseModel):
    """
    One role-tagged unit of an assembled context.

    ``message_id`` and ``segment`` are internal bookkeeping used for trimming and
    attachment merging; :meth:`to_payload` drops them.
    """

    role: Role
    content: str | list[ContentPart]
    message_id: str | None = None
    segment: TurnSegment = "main"

    def text(self) -> str:
        """Concatenated text of the turn, ignoring image parts."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(p.text for p in self.content if isinstance(p, TextPart))

    def to_payload(self) -> dict[str, object]:
        if isinstance(self.content, str):
            return {"role": self.role, "content": self.content}
        return {"role": self.role, "content": [p.model_dump() for p in self.content]}
