"""Context scores and learning insights for new messages.

The score is a heuristic confidence, not a model output. User turns are
treated as ground truth and always outscore generated turns. Insights
describe trends over the most recent messages of the conversation.
"""

from __future__ import annotations

import random
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from shared.hardening import clamp
from tandem.src.classifier import classify
from tandem.src.models import Message

USER_SCORE = 1.0
MAX_GENERATED_SCORE = 0.99
INSIGHT_WINDOW = 3
LONG_CONTEXT_THRESHOLD = 5

ContextScorer = Callable[[str, Sequence[Message]], float]


class InsightKind(str, Enum):
    """Which trend an insight reports."""

    LONG_CONTEXT = "long_context"
    DOMINANT_CATEGORY = "dominant_category"
    LANGUAGE_SWITCH = "language_switch"
    BASIC = "basic"


@dataclass(frozen=True)
class Insight:
    """One detected trend.

    Attributes:
        kind: Trend type.
        message: Display text shown in the analytics sidebar.
    """

    kind: InsightKind
    message: str


@dataclass
class SignalReport:
    """Score and insights derived for a single message.

    Attributes:
        score: Context confidence in [0, 1].
        insights: Never empty.
    """

    score: float
    insights: list[Insight] = field(default_factory=list)

    def insight_messages(self) -> list[str]:
        """Return the display text of every insight.

        Returns:
            Insight messages in detection order.
        """
        return [i.message for i in self.insights]


def heuristic_context_score(text: str, history: Sequence[Message]) -> float:
    """Default scorer: uniform in [0.6, 1.0)."""
    return random.random() * 0.4 + 0.6


class SignalGenerator:
    """Derives context scores and insights from conversation history.

    Args:
        scorer: Fallback score source for generated turns without a
            responder confidence.
        window: Number of trailing history messages inspected.
        long_context_threshold: History length beyond which the
            long-context insight fires.

    Example::

        generator = SignalGenerator(scorer=lambda text, history: 0.8)
        report = generator.derive_insights("hello", history, is_user=False)
        print(report.score, report.insight_messages())
    """

    def __init__(
        self,
        scorer: ContextScorer | None = None,
        window: int = INSIGHT_WINDOW,
        long_context_threshold: int = LONG_CONTEXT_THRESHOLD,
    ) -> None:
        self._scorer = scorer or heuristic_context_score
        self._window = window
        self._long_context_threshold = long_context_threshold

    def derive_insights(
        self,
        text: str,
        history: Sequence[Message],
        is_user: bool,
        confidence: float | None = None,
    ) -> SignalReport:
        """Score a new message and describe recent trends.

        Args:
            text: Content of the new message.
            history: Earlier messages of the conversation, oldest first.
                The new message itself is not included.
            is_user: Whether the new message is a user turn.
            confidence: Responder confidence for a generated turn.

        Returns:
            SignalReport with a bounded score and at least one insight.
        """
        score = self._score(text, history, is_user, confidence)
        return SignalReport(score=score, insights=self._collect_insights(history))

    # -------------------------------------------------------------------
    # Private helpers
    # -------------------------------------------------------------------

    def _score(
        self,
        text: str,
        history: Sequence[Message],
        is_user: bool,
        confidence: float | None,
    ) -> float:
        """Compute the context score for a message.

        Args:
            text: Content of the new message.
            history: Earlier messages.
            is_user: Whether the new message is a user turn.
            confidence: Optional responder confidence.

        Returns:
            1.0 for user turns, otherwise a value in [0, MAX_GENERATED_SCORE].
        """
        if is_user:
            return USER_SCORE
        raw = confidence if confidence is not None else self._scorer(text, history)
        return clamp(raw, 0.0, MAX_GENERATED_SCORE)

    def _collect_insights(self, history: Sequence[Message]) -> list[Insight]:
        """Run every trend detector over the history.

        Args:
            history: Earlier messages, oldest first.

        Returns:
            Detected insights, or the single basic insight.
        """
        recent = list(history)[-self._window :] if self._window > 0 else []
        insights: list[Insight] = []

        if len(history) > self._long_context_threshold:
            insights.append(
                Insight(InsightKind.LONG_CONTEXT, "긴 대화에서 맥락 유지 학습 중")
            )

        dominant = _repeated_category(recent)
        if dominant is not None:
            insights.append(
                Insight(InsightKind.DOMINANT_CATEGORY, f"{dominant} 영역 특화 학습 활성화")
            )

        if _has_language_switch(recent):
            insights.append(Insight(InsightKind.LANGUAGE_SWITCH, "언어 전환 패턴 학습 적용"))

        if not insights:
            insights.append(Insight(InsightKind.BASIC, "기본 번역 패턴 학습"))
        return insights


def _repeated_category(recent: Sequence[Message]) -> str | None:
    """Return the most common dominant category if it occurs more than once.

    Args:
        recent: Trailing window of messages.

    Returns:
        Category value, or None when no category repeats.
    """
    if not recent:
        return None
    counts = Counter(classify(m.content).dominant for m in recent)
    category, count = counts.most_common(1)[0]
    if count > 1:
        return category.value
    return None


def _has_language_switch(recent: Sequence[Message]) -> bool:
    """Check for a language change between adjacent messages in the window.

    Args:
        recent: Trailing window of messages.

    Returns:
        True if any message differs in language from the one before it.
    """
    return any(recent[i].language != recent[i - 1].language for i in range(1, len(recent)))
