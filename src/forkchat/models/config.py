"""Configuration models for forkchat state, context assembly and collaborators."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

MAIN_TURNS_LIMIT_RANGE = (0, 10)
MAX_TOKENS_RANGE = (1_000, 128_000)
TEMPERATURE_RANGE = (0.0, 1.0)


def _clamp(value: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return min(high, max(low, value))


def clamp_main_turns_limit(value: int) -> int:
    """Clamp a main-turn pair count into ``[0, 10]``."""
    return int(_clamp(value, MAIN_TURNS_LIMIT_RANGE))


def clamp_max_tokens(value: int) -> int:
    """Clamp an approximate context budget into ``[1000, 128000]``."""
    return int(_clamp(value, MAX_TOKENS_RANGE))


def clamp_temperature(value: float) -> float:
    return float(_clamp(value, TEMPERATURE_RANGE))


class ContextConfig(BaseModel):
    """Builder defaults used when a session leaves a limit unset."""

    main_turns_limit: int = Field(
        default=6,
        ge=0,
        le=10,
        description="Main-line user+assistant pairs included in a main-chat context.",
    )
    main_max_tokens: int = Field(
        default=32_000,
        ge=1_000,
        le=128_000,
        description="Approximate token ceiling for a main-chat context.",
    )
    reply_turns_limit: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Main-line pairs used to ground a reply-branch context.",
    )
    reply_max_tokens: int = Field(
        default=8_000,
        ge=1_000,
        le=128_000,
        description="Approximate token ceiling for a reply-branch context.",
    )


class SessionDefaults(BaseModel):
    """Values stamped onto newly created sessions."""

    title: str = "New Session"
    temperature: float = Field(default=1.0, ge=0.0, le=1.0)
    reasoning_effort: str = "medium"
    main_turns_limit: int = Field(default=6, ge=0, le=10)
    max_tokens: int = Field(default=8_000, ge=1_000, le=128_000)


class StoreConfig(BaseModel):
    """Configuration for the SQLite key-value persistence layer."""

    db_path: str = Field(
        default="~/.forkchat/state.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""


class AttachmentConfig(BaseModel):
    """Limits and storage location for user attachments."""

    max_attachments: int = Field(default=5, ge=1, le=50)
    max_total_bytes: int = Field(default=50 * 1024 * 1024, ge=1)
    chunk_chars: int = Field(
        default=4_800,
        ge=100,
        description="Maximum characters per text chunk produced from a text attachment.",
    )
    storage_dir: str | None = Field(
        default=None,
        description="Directory for attachment blobs. Defaults to ~/.forkchat/attachments/.",
    )
    image_max_width: int = Field(
        default=1024,
        ge=16,
        description="Images wider than this are scaled down, keeping aspect ratio.",
    )
    image_quality: int = Field(default=80, ge=1, le=95, description="JPEG quality for stored images.")


class TransportConfig(BaseModel):
    """Provider request defaults."""

    max_output_tokens: int | None = Field(default=None, ge=1)
    title_model: str = "gpt-5.2"
    """Model used to generate session titles."""
    title_prompt_template: str = Field(
        default="Create a very short title for this question:\n\n{{ question }}",
        description="Jinja2 template for the titling request. Must reference {{ question }}.",
    )

    @field_validator("title_prompt_template")
    @classmethod
    def _require_question(cls, value: str) -> str:
        from jinja2 import Environment, TemplateSyntaxError, meta

        try:
            ast = Environment().parse(value)
        except TemplateSyntaxError as exc:
            raise ValueError(f"Invalid Jinja2 template syntax: {exc}") from exc
        if "question" not in meta.find_undeclared_variables(ast):
            raise ValueError("title_prompt_template must reference {{ question }}")
        return value


class ForkchatConfig(BaseModel):
    """
    Top-level configuration for a forkchat client.

    Example::

        config = ForkchatConfig(
            context=ContextConfig(reply_turns_limit=4),
            store=StoreConfig(db_path="/tmp/forkchat.db"),
        )
    """

    context: ContextConfig = Field(default_factory=ContextConfig)
    session: SessionDefaults = Field(default_factory=SessionDefaults)
    store: StoreConfig = Field(default_factory=StoreConfig)
    attachments: AttachmentConfig = Field(default_factory=AttachmentConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)

    @classmethod
    def default(cls) -> ForkchatConfig:
        """Return a config instance with all defaults."""
        return cls()


class Settings(BaseModel):
    """User settings. Keys are stored as given; encryption is out of scope."""

    openai_api_key: str | None = Field(default=None, min_length=10)
    anthropic_api_key: str | None = Field(default=None, min_length=10)
    gemini_api_key: str | None = Field(default=None, min_length=10)
    moonshot_api_key: str | None = Field(default=None, min_length=10)
    default_model: str | None = None

    def api_key_for(self, provider: str) -> str | None:
        return {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "gemini": self.gemini_api_key,
            "moonshot": self.moonshot_api_key,
        }.get(provider)


class UIState(BaseModel):
    """Persisted view state: which session and reply branch are open."""

    active_session_id: str | None = None
    active_reply_anchor_id: str | None = None
    reply_viewer_width: int | None = None
    theme: Literal["light", "dark"] | None = None
