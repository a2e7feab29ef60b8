"""Tests for chat models and the CharacterResponder."""

from __future__ import annotations

import asyncio
import json
import logging
from types import SimpleNamespace
from typing import Any

import pytest

from tandem.src.config import TandemConfig
from tandem.src.models import Language
from tandem.src.responder import (
    DEFAULT_REPLY_CONFIDENCE,
    DEFAULT_REPLY_TEXT,
    PARSE_FALLBACK_CONFIDENCE,
    PARSE_FALLBACK_TEXT,
    TRANSPORT_FALLBACK_CONFIDENCE,
    TRANSPORT_FALLBACK_TEXT,
    CharacterResponder,
    ChatModel,
    MockChatModel,
    OpenAIChatModel,
    ResponderError,
)
from tandem.tests.conftest import REPLY_JSON, make_message, no_sleep

# ===================================================================
# Fixtures
# ===================================================================


class _SlowModel:
    """Chat model that never answers within the timeout."""

    def __init__(self) -> None:
        self.calls = 0

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls += 1
        await asyncio.sleep(5)
        return REPLY_JSON


class _FakeCompletions:
    """Stand-in for ``client.chat.completions`` recording request kwargs."""

    def __init__(self, content: str | None) -> None:
        self.content = content
        self.kwargs: dict[str, Any] = {}

    async def create(self, **kwargs: Any) -> Any:
        self.kwargs = kwargs
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_client(content: str | None) -> Any:
    completions = _FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _responder(model: ChatModel, **overrides: Any) -> CharacterResponder:
    cfg = TandemConfig(**{"timeout_seconds": 1.0, "max_attempts": 2, **overrides})
    return CharacterResponder(model, cfg, sleep_func=no_sleep)


# ===================================================================
# Mock and OpenAI chat models
# ===================================================================


class TestMockChatModel:
    """Tests for MockChatModel."""

    def test_known_prompt(self) -> None:
        """Known prompts return their configured completion."""
        model = MockChatModel(responses={"hi": "A"}, default_response="B")
        assert asyncio.run(model.complete("sys", "hi")) == "A"
        assert asyncio.run(model.complete("sys", "other")) == "B"
        assert model.calls[0] == ("sys", "hi")

    def test_error_is_raised(self) -> None:
        """A configured error is raised on every call."""
        model = MockChatModel(error=ConnectionError("down"))
        with pytest.raises(ConnectionError):
            asyncio.run(model.complete("sys", "hi"))

    def test_satisfies_protocol(self) -> None:
        """MockChatModel and OpenAIChatModel both satisfy ChatModel."""
        assert isinstance(MockChatModel(), ChatModel)
        assert isinstance(OpenAIChatModel(TandemConfig()), ChatModel)


class TestOpenAIChatModel:
    """Tests for OpenAIChatModel with a fake SDK client."""

    def test_request_uses_config(self) -> None:
        """Model name and sampling settings come from the config."""
        client = _fake_client(REPLY_JSON)
        cfg = TandemConfig(model_name="test-model", temperature=0.3, max_tokens=64)
        model = OpenAIChatModel(cfg, client=client)

        text = asyncio.run(model.complete("system text", "user text"))

        kwargs = client.chat.completions.kwargs
        assert text == REPLY_JSON
        assert kwargs["model"] == "test-model"
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 64
        assert kwargs["messages"] == [
            {"role": "system", "content": "system text"},
            {"role": "user", "content": "user text"},
        ]

    def test_empty_content_raises(self) -> None:
        """An empty completion is an error."""
        model = OpenAIChatModel(TandemConfig(), client=_fake_client(""))
        with pytest.raises(ResponderError):
            asyncio.run(model.complete("s", "u"))

    def test_missing_api_key_raises(self) -> None:
        """Without a key the client cannot be created."""
        model = OpenAIChatModel(TandemConfig(api_key=None))
        with pytest.raises(ResponderError, match="GROQ_API_KEY"):
            asyncio.run(model.complete("s", "u"))


# ===================================================================
# Parsing
# ===================================================================


class TestParseReply:
    """Tests for CharacterResponder.parse_reply."""

    def test_full_reply(self) -> None:
        """All three fields are read."""
        reply = _responder(MockChatModel()).parse_reply(REPLY_JSON)
        assert reply.text.startswith("물론이죠")
        assert reply.confidence == 0.92
        assert reply.context_analysis == "일정 변경 요청에 대한 응답"
        assert reply.fallback is False

    def test_code_fence_tolerated(self) -> None:
        """A Markdown-fenced JSON object still parses."""
        raw = f"```json\n{REPLY_JSON}\n```"
        reply = _responder(MockChatModel()).parse_reply(raw)
        assert reply.confidence == 0.92

    def test_missing_fields_use_defaults(self) -> None:
        """An empty object yields the default greeting and confidence."""
        reply = _responder(MockChatModel()).parse_reply("{}")
        assert reply.text == DEFAULT_REPLY_TEXT
        assert reply.confidence == DEFAULT_REPLY_CONFIDENCE
        assert "쿠루미" in reply.context_analysis

    @pytest.mark.parametrize(
        "raw_confidence,expected",
        [(0, DEFAULT_REPLY_CONFIDENCE), ("0.8", 0.8), (5, 1.0), ("high", DEFAULT_REPLY_CONFIDENCE)],
    )
    def test_confidence_coercion(self, raw_confidence: Any, expected: float) -> None:
        """Confidence is coerced to a float in [0, 1]."""
        raw = json.dumps({"response": "네", "confidence": raw_confidence})
        assert _responder(MockChatModel()).parse_reply(raw).confidence == expected

    def test_non_object_rejected(self) -> None:
        """A JSON array is not a valid reply."""
        with pytest.raises(TypeError):
            _responder(MockChatModel()).parse_reply("[1, 2]")


# ===================================================================
# Generation and fallbacks
# ===================================================================


class TestGenerate:
    """Tests for CharacterResponder.generate."""

    def test_successful_reply(self) -> None:
        """A valid completion is returned as parsed."""
        model = MockChatModel(default_response=REPLY_JSON)
        reply = asyncio.run(_responder(model).generate("회의 일정 바꿔줘", []))
        assert reply.confidence == 0.92
        assert reply.fallback is False
        assert model.calls[0][1] == "회의 일정 바꿔줘"

    def test_unparseable_output_falls_back(self, caplog: pytest.LogCaptureFixture) -> None:
        """Non-JSON output yields the parse fallback at confidence 0.7."""
        model = MockChatModel(default_response="I am not JSON")
        with caplog.at_level(logging.WARNING, logger="tandem.src.responder"):
            reply = asyncio.run(_responder(model).generate("hi", []))
        assert reply.text == PARSE_FALLBACK_TEXT
        assert reply.confidence == PARSE_FALLBACK_CONFIDENCE
        assert reply.fallback is True
        assert "unparseable" in caplog.text

    def test_transient_errors_retry_then_fall_back(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Connection errors are retried, then the transport fallback is used."""
        model = MockChatModel(error=ConnectionError("refused"))
        with caplog.at_level(logging.WARNING, logger="tandem.src.responder"):
            reply = asyncio.run(_responder(model, max_attempts=3).generate("hi", []))
        assert len(model.calls) == 3
        assert reply.text == TRANSPORT_FALLBACK_TEXT
        assert reply.confidence == TRANSPORT_FALLBACK_CONFIDENCE
        assert "GEN_007" in caplog.text

    def test_non_transient_error_not_retried(self) -> None:
        """Unexpected errors fall back without retrying."""
        model = MockChatModel(error=RuntimeError("bug"))
        reply = asyncio.run(_responder(model).generate("hi", []))
        assert len(model.calls) == 1
        assert reply.confidence == TRANSPORT_FALLBACK_CONFIDENCE

    def test_timeout_falls_back(self) -> None:
        """A model slower than the deadline yields the transport fallback."""
        model = _SlowModel()
        reply = asyncio.run(_responder(model, timeout_seconds=0.05).generate("hi", []))
        assert model.calls == 2
        assert reply.text == TRANSPORT_FALLBACK_TEXT

    def test_missing_key_falls_back(self) -> None:
        """An unconfigured OpenAI model never raises to the caller."""
        responder = _responder(OpenAIChatModel(TandemConfig(api_key=None)))
        reply = asyncio.run(responder.generate("hi", []))
        assert reply.confidence == TRANSPORT_FALLBACK_CONFIDENCE


# ===================================================================
# Prompt construction
# ===================================================================


class TestPrompt:
    """Tests for history rendering and the system prompt."""

    def test_history_labels(self) -> None:
        """User turns and persona turns get their own labels."""
        history = [
            make_message("안녕하세요", message_id=1),
            make_message("안녕?", is_user=False, message_id=2, translated_content="반가워요 💕"),
        ]
        text = _responder(MockChatModel()).render_history(history)
        assert text == "사용자: 안녕하세요\n쿠루미: 반가워요 💕"

    def test_history_window(self) -> None:
        """Only the configured number of trailing messages is rendered."""
        history = [make_message(f"m{i}", message_id=i, language=Language.EN) for i in range(12)]
        text = _responder(MockChatModel()).render_history(history)
        lines = text.split("\n")
        assert len(lines) == 8
        assert lines[0] == "사용자: m4"
        assert lines[-1] == "사용자: m11"

    def test_zero_window_renders_nothing(self) -> None:
        """A zero window omits history entirely."""
        history = [make_message("m", message_id=1)]
        assert _responder(MockChatModel(), history_window=0).render_history(history) == ""

    def test_system_prompt_contents(self) -> None:
        """The prompt names the persona, embeds history, and asks for JSON."""
        responder = _responder(MockChatModel(), persona_name="미쿠")
        prompt = responder.build_system_prompt([make_message("회의 언제?", message_id=1)])
        assert "미쿠" in prompt
        assert "사용자: 회의 언제?" in prompt
        assert '"contextAnalysis"' in prompt
