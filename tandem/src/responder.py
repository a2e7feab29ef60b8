"""Character-styled reply generation through an external chat model.

``CharacterResponder`` renders the recent conversation into a persona
prompt, asks a ``ChatModel`` for a JSON reply, and parses it into a
``GeneratedReply``. It never raises: transport failures and malformed
output both turn into fixed in-character fallback replies, and the
failure is logged at WARNING.

Two ``ChatModel`` implementations are provided:

- ``OpenAIChatModel`` talks to any OpenAI-compatible endpoint (Groq by
  default) through the ``openai`` SDK.
- ``MockChatModel`` returns canned text for tests and offline runs.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import openai

from shared.hardening import (
    ErrorFormatter,
    RetryConfig,
    clamp,
    coerce_float,
    retry_async,
)
from tandem.src.config import TandemConfig
from tandem.src.models import Message, TandemError

logger = logging.getLogger(__name__)

TRANSPORT_FALLBACK_TEXT = "앗, 잠시 정신이 없었어요! 무엇을 도와드릴까요? 💕"
TRANSPORT_FALLBACK_CONFIDENCE = 0.5
PARSE_FALLBACK_TEXT = "죄송해요, 제가 잠시 생각에 빠져있었어요. 다시 한번 말씀해주시겠어요? ✨"
PARSE_FALLBACK_CONFIDENCE = 0.7

DEFAULT_REPLY_TEXT = "안녕하세요! 무엇을 도와드릴까요? 💕"
DEFAULT_REPLY_CONFIDENCE = 0.9

USER_LABEL = "사용자"
RESPONSE_STYLE = "character_roleplay"

_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class ResponderError(TandemError):
    """Raised by chat models when no usable completion was produced."""


# ===================================================================
# Data Classes
# ===================================================================


@dataclass
class GeneratedReply:
    """A parsed reply from the chat model, or a fallback.

    Attributes:
        text: Reply text shown to the user.
        confidence: Model-reported confidence in [0, 1].
        context_analysis: Short explanation of the reply's intent.
        fallback: True when the reply is a canned fallback.
    """

    text: str
    confidence: float
    context_analysis: str
    fallback: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "response": self.text,
            "confidence": self.confidence,
            "contextAnalysis": self.context_analysis,
            "fallback": self.fallback,
        }


# ===================================================================
# Chat models
# ===================================================================


@runtime_checkable
class ChatModel(Protocol):
    """Anything that can turn a system and user prompt into text."""

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw completion text.

        Args:
            system_prompt: Persona and output-format instructions.
            user_prompt: The message being answered.

        Returns:
            Completion text, expected to be a JSON object.
        """
        ...


class OpenAIChatModel:
    """Chat model backed by an OpenAI-compatible HTTP API.

    The SDK client is created on first use so that constructing the
    model never needs network access or an API key.

    Args:
        config: Endpoint, credentials, and sampling settings.
        client: Pre-built ``AsyncOpenAI`` client, mainly for tests.
    """

    def __init__(
        self,
        config: TandemConfig,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._config = config
        self._client = client

    @property
    def client(self) -> openai.AsyncOpenAI:
        """Lazy-load the SDK client."""
        if self._client is None:
            if not self._config.api_key:
                raise ResponderError(
                    "API key required for the chat model. Set GROQ_API_KEY."
                )
            self._client = openai.AsyncOpenAI(
                api_key=self._config.api_key,
                base_url=self._config.responder_base_url,
                max_retries=0,
            )
        return self._client

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Request one chat completion.

        Args:
            system_prompt: Persona and output-format instructions.
            user_prompt: The message being answered.

        Returns:
            Content of the first choice.

        Raises:
            ResponderError: If no API key is configured or the response
                has no content.
            openai.OpenAIError: On transport or API failures.
        """
        completion = await self.client.chat.completions.create(
            model=self._config.model_name,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )
        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise ResponderError("Chat model returned an empty response")
        return content


class MockChatModel:
    """Mock chat model for testing.

    Returns pre-configured completions for known user prompts, or a
    default completion. When ``error`` is set every call raises it.

    Args:
        responses: Dict mapping user prompt text to completion text.
        default_response: Completion for prompts not in the dict.
        error: Exception raised on every call instead of answering.

    Example::

        model = MockChatModel(default_response='{"response": "네!"}')
        text = asyncio.run(model.complete("system", "안녕"))
    """

    def __init__(
        self,
        responses: dict[str, str] | None = None,
        default_response: str = "",
        error: BaseException | None = None,
    ) -> None:
        self._responses = responses or {}
        self._default = default_response
        self._error = error
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Record the call and return the configured completion."""
        self.calls.append((system_prompt, user_prompt))
        if self._error is not None:
            raise self._error
        return self._responses.get(user_prompt, self._default)


# ===================================================================
# Responder
# ===================================================================


class CharacterResponder:
    """Produces persona replies with bounded retries and safe fallbacks.

    Args:
        model: The chat model to call.
        config: Prompt and retry settings.
        sleep_func: Injectable async sleep used between retries.

    Example::

        responder = CharacterResponder(MockChatModel(default_response=raw), config)
        reply = await responder.generate("안녕하세요", history)
    """

    def __init__(
        self,
        model: ChatModel,
        config: TandemConfig | None = None,
        sleep_func: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self._model = model
        self._config = config or TandemConfig()
        self._sleep = sleep_func
        self._retry = RetryConfig(
            max_attempts=self._config.max_attempts,
            retryable_exceptions=_TRANSIENT_ERRORS,
        )
        self._formatter = ErrorFormatter()

    async def generate(self, text: str, history: Sequence[Message]) -> GeneratedReply:
        """Ask the model for a reply to *text* given prior messages.

        Args:
            text: The message to answer.
            history: Earlier messages of the conversation, oldest first.

        Returns:
            The parsed reply, or a fallback reply on any failure.
        """
        system_prompt = self.build_system_prompt(history)

        async def attempt() -> str:
            return await asyncio.wait_for(
                self._model.complete(system_prompt, text),
                timeout=self._config.timeout_seconds,
            )

        try:
            raw = await retry_async(attempt, self._retry, sleep_func=self._sleep)
        except Exception as exc:
            error = self._formatter.format_responder_error(exc)
            logger.warning(
                "Chat model call failed [%s]: %s", error.error_code, error.technical_detail
            )
            return GeneratedReply(
                text=TRANSPORT_FALLBACK_TEXT,
                confidence=TRANSPORT_FALLBACK_CONFIDENCE,
                context_analysis="API 오류로 인한 기본 응답",
                fallback=True,
            )

        try:
            return self.parse_reply(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("Chat model returned unparseable output: %s", exc)
            return GeneratedReply(
                text=PARSE_FALLBACK_TEXT,
                confidence=PARSE_FALLBACK_CONFIDENCE,
                context_analysis="파싱 오류로 인한 기본 응답",
                fallback=True,
            )

    def build_system_prompt(self, history: Sequence[Message]) -> str:
        """Render the persona instructions with recent history.

        Args:
            history: Earlier messages, oldest first.

        Returns:
            The system prompt text.
        """
        persona = self._config.persona_name
        context = self.render_history(history)
        return (
            f"당신은 {persona}입니다. 우아하고 세련된 말투를 쓰면서도 가끔은 장난스럽고 "
            "신비로운 분위기를 풍기는 캐릭터입니다.\n\n"
            "**대화 스타일:**\n"
            "- 정중하면서도 친근한 존댓말을 사용합니다\n"
            "- 가끔 💕, ✨ 같은 귀여운 표현을 곁들입니다\n"
            "- 번역을 요청받으면 정확하고 자연스럽게 번역한 뒤 친근하게 설명합니다\n"
            "- 일반적인 질문에도 캐릭터를 유지하며 성실하게 답합니다\n\n"
            f"**현재 대화 맥락:**\n{context}\n\n"
            "**응답 형식:** 아래 JSON 객체 하나만 출력하세요.\n"
            "{\n"
            f'  "response": "{persona}의 자연스러운 한국어 응답",\n'
            '  "confidence": 0.95,\n'
            '  "contextAnalysis": "응답의 맥락과 의도 분석"\n'
            "}"
        )

    def render_history(self, history: Sequence[Message]) -> str:
        """Format the trailing history window as speaker-labelled lines.

        Generated turns show the stored reply when there is one.

        Args:
            history: Earlier messages, oldest first.

        Returns:
            One ``label: text`` line per message, newline-joined.
        """
        window = self._config.history_window
        recent = list(history)[-window:] if window > 0 else []
        lines = []
        for msg in recent:
            if msg.is_user:
                lines.append(f"{USER_LABEL}: {msg.content}")
            else:
                lines.append(f"{self._config.persona_name}: {msg.translated_content or msg.content}")
        return "\n".join(lines)

    def parse_reply(self, raw: str) -> GeneratedReply:
        """Parse the model's JSON output, filling defaults for missing fields.

        A surrounding Markdown code fence is tolerated.

        Args:
            raw: Completion text.

        Returns:
            GeneratedReply with confidence clamped to [0, 1].

        Raises:
            json.JSONDecodeError: If the text is not valid JSON.
            TypeError: If the JSON is not an object.
        """
        data = json.loads(_strip_code_fence(raw))
        if not isinstance(data, dict):
            raise TypeError(f"Expected a JSON object, got {type(data).__name__}")
        text = data.get("response")
        confidence = coerce_float(data.get("confidence"), DEFAULT_REPLY_CONFIDENCE)
        analysis = data.get("contextAnalysis")
        return GeneratedReply(
            text=str(text) if text else DEFAULT_REPLY_TEXT,
            confidence=clamp(confidence or DEFAULT_REPLY_CONFIDENCE, 0.0, 1.0),
            context_analysis=(
                str(analysis) if analysis else f"{self._config.persona_name} 스타일의 친근한 응답"
            ),
        )


def _strip_code_fence(raw: str) -> str:
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()
