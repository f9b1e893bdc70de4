"""Tests for configuration models and clamping helpers."""

from __future__ import annotations

import pytest

import forkchat
from forkchat.models.config import (
    AttachmentConfig,
    ContextConfig,
    ForkchatConfig,
    SessionDefaults,
    Settings,
    TransportConfig,
    clamp_main_turns_limit,
    clamp_max_tokens,
    clamp_temperature,
)


class TestContextConfig:
    def test_defaults(self) -> None:
        cfg = ContextConfig()
        assert (cfg.main_turns_limit, cfg.main_max_tokens) == (6, 32_000)
        assert (cfg.reply_turns_limit, cfg.reply_max_tokens) == (2, 8_000)

    def test_bounds_enforced(self) -> None:
        with pytest.raises(ValueError):
            ContextConfig(main_turns_limit=11)
        with pytest.raises(ValueError):
            ContextConfig(reply_max_tokens=500)

    def test_fields_are_described(self) -> None:
        for name, info in ContextConfig.model_fields.items():
            assert info.description, name


class TestClamps:
    @pytest.mark.parametrize(("raw", "expected"), [(-1, 0), (0, 0), (6, 6), (99, 10)])
    def test_main_turns_limit(self, raw: int, expected: int) -> None:
        assert clamp_main_turns_limit(raw) == expected

    @pytest.mark.parametrize(("raw", "expected"), [(0, 1_000), (50_000, 50_000), (10**7, 128_000)])
    def test_max_tokens(self, raw: int, expected: int) -> None:
        assert clamp_max_tokens(raw) == expected

    def test_temperature(self) -> None:
        assert clamp_temperature(-0.5) == 0.0
        assert clamp_temperature(0.7) == 0.7
        assert clamp_temperature(2) == 1.0


class TestForkchatConfig:
    def test_default_builds_every_section(self) -> None:
        cfg = ForkchatConfig.default()
        assert isinstance(cfg.session, SessionDefaults)
        assert cfg.attachments.max_attachments == 5
        assert cfg.attachments.max_total_bytes == 50 * 1024 * 1024
        assert cfg.attachments.chunk_chars == 4_800
        assert cfg.transport.title_model == "gpt-5.2"

    def test_attachment_bounds(self) -> None:
        with pytest.raises(ValueError):
            AttachmentConfig(max_attachments=0)


class TestTitleTemplate:
    def test_default_references_question(self) -> None:
        assert "{{ question }}" in TransportConfig().title_prompt_template

    def test_missing_variable_rejected(self) -> None:
        with pytest.raises(ValueError, match="question"):
            TransportConfig(title_prompt_template="Summarise this")

    def test_syntax_error_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid Jinja2"):
            TransportConfig(title_prompt_template="{{ question ")

    def test_custom_template_accepted(self) -> None:
        cfg = TransportConfig(title_prompt_template="Title for: {{ question | upper }}")
        assert cfg.title_prompt_template.startswith("Title for")


class TestSettings:
    def test_api_key_for_provider(self) -> None:
        s = Settings(anthropic_api_key="sk-ant-0123456789")
        assert s.api_key_for("anthropic") == "sk-ant-0123456789"
        assert s.api_key_for("openai") is None
        assert s.api_key_for("unknown") is None

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            Settings(gemini_api_key="abc")


def test_version_exposed() -> None:
    assert forkchat.__version__ == "0.1.0"
