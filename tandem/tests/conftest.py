"""Shared fixtures for Tandem tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from tandem.src.config import TandemConfig
from tandem.src.metrics import MetricsAggregator
from tandem.src.models import Language, Message
from tandem.src.responder import CharacterResponder, MockChatModel
from tandem.src.signals import SignalGenerator
from tandem.src.service import TranslatorService
from tandem.src.store import ConversationStore

REPLY_JSON = json.dumps(
    {
        "response": "물론이죠! 회의 일정은 언제로 바꿀까요? ✨",
        "confidence": 0.92,
        "contextAnalysis": "일정 변경 요청에 대한 응답",
    },
    ensure_ascii=False,
)


class TickingClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 3, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        current = self._now
        self._now += timedelta(seconds=1)
        return current


def make_message(
    content: str,
    language: Language = Language.KO,
    is_user: bool = True,
    message_id: int = 1,
    translated_content: str | None = None,
) -> Message:
    """Create a Message for testing."""
    return Message(
        id=message_id,
        conversation_id=1,
        content=content,
        is_user=is_user,
        language=language,
        timestamp=datetime(2026, 3, 1, 9, 0, 0) + timedelta(seconds=message_id),
        translated_content=translated_content,
    )


async def no_sleep(_: float) -> None:
    """Async sleep replacement that returns immediately."""
    return None


@pytest.fixture()
def clock() -> TickingClock:
    """Provide a fresh ticking clock."""
    return TickingClock()


@pytest.fixture()
def store(clock: TickingClock) -> ConversationStore:
    """Provide an empty ConversationStore on a deterministic clock."""
    return ConversationStore(clock=clock)


@pytest.fixture()
def metrics() -> MetricsAggregator:
    """Provide a seeded aggregator with a fixed 0.1 nudge."""
    return MetricsAggregator(nudge=lambda: 0.1)


@pytest.fixture()
def config() -> TandemConfig:
    """Provide a config with short timeouts for tests."""
    return TandemConfig(timeout_seconds=1.0, max_attempts=2)


@pytest.fixture()
def make_service(
    store: ConversationStore,
    metrics: MetricsAggregator,
    config: TandemConfig,
) -> Callable[[MockChatModel], TranslatorService]:
    """Factory building a service around a given mock chat model."""

    def _build(model: MockChatModel) -> TranslatorService:
        responder = CharacterResponder(model, config, sleep_func=no_sleep)
        return TranslatorService(
            store=store,
            metrics=metrics,
            responder=responder,
            signals=SignalGenerator(scorer=lambda text, history: 0.8),
        )

    return _build


@pytest.fixture()
def service(make_service: Callable[[MockChatModel], TranslatorService]) -> TranslatorService:
    """Provide a service whose chat model always returns REPLY_JSON."""
    return make_service(MockChatModel(default_response=REPLY_JSON))
