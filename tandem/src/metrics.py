"""Process-wide learning metrics and per-pattern accuracy aggregates.

The aggregator holds one ``LearningMetrics`` record and a table of
``LearningPattern`` records keyed by (text prefix, category). Every
mutation runs under the aggregator's lock and every read returns a copy.

Pattern accuracy uses the recurrence ``new = (old + observed) / 2``.
This weights recent observations heavily and is not a running mean;
dashboards built on it expect exactly this behaviour.
"""

from __future__ import annotations

import copy
import itertools
import logging
import math
import random
import threading
from collections.abc import Callable
from datetime import datetime

from shared.hardening import clamp
from tandem.src.models import (
    Category,
    FeedbackType,
    LearningMetrics,
    LearningPattern,
)

logger = logging.getLogger(__name__)

PATTERN_PREFIX_LENGTH = 20
MAX_NUDGE = 0.5
SCORE_CEILING = 100.0
_NUDGE_LIMIT = math.nextafter(MAX_NUDGE, 0.0)

# Values the dashboard starts from on a fresh process.
SEED_TOTAL_TRANSLATIONS = 1247
SEED_ACCURACY_SCORE = 94.2
SEED_CONTEXT_ACCURACY = 87.8
SEED_LEARNING_RATE = 2.3
SEED_POSITIVE_FEEDBACK = 89
SEED_NEGATIVE_FEEDBACK = 11
SEED_IMPROVEMENT_SUGGESTIONS = 12


def default_nudge() -> float:
    """Random accuracy increment in [0, 0.5)."""
    return random.random() * MAX_NUDGE


def pattern_key(text: str, category: Category) -> tuple[str, Category]:
    """Build the upsert key for a piece of text.

    Args:
        text: Triggering message text.
        category: Dominant category of the text.

    Returns:
        Tuple of the truncated prefix and the category.
    """
    return text[:PATTERN_PREFIX_LENGTH], category


class MetricsAggregator:
    """Thread-safe owner of learning metrics and patterns.

    Args:
        nudge: Source of the per-translation accuracy increment. Values
            are clamped into [0, 0.5).
        clock: Time source for ``date`` and ``last_seen``.
    """

    def __init__(
        self,
        nudge: Callable[[], float] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._nudge = nudge or default_nudge
        self._clock = clock or datetime.now
        self._lock = threading.RLock()
        self._metrics = LearningMetrics(
            id=1,
            date=self._clock(),
            total_translations=SEED_TOTAL_TRANSLATIONS,
            accuracy_score=SEED_ACCURACY_SCORE,
            context_accuracy=SEED_CONTEXT_ACCURACY,
            learning_rate=SEED_LEARNING_RATE,
            positive_feedback=SEED_POSITIVE_FEEDBACK,
            negative_feedback=SEED_NEGATIVE_FEEDBACK,
            improvement_suggestions=SEED_IMPROVEMENT_SUGGESTIONS,
        )
        self._patterns: dict[tuple[str, Category], LearningPattern] = {}
        self._pattern_ids = itertools.count(1)

    def record_translation_event(self) -> LearningMetrics:
        """Count one processed message and nudge accuracy upward.

        Returns:
            A copy of the updated metrics.
        """
        step = clamp(self._nudge(), 0.0, _NUDGE_LIMIT)
        with self._lock:
            m = self._metrics
            m.total_translations += 1
            m.accuracy_score = min(SCORE_CEILING, m.accuracy_score + step)
            m.date = self._clock()
            return copy.copy(m)

    def record_feedback(self, feedback_type: FeedbackType) -> LearningMetrics:
        """Increment exactly one feedback counter.

        Args:
            feedback_type: Which counter to increment.

        Returns:
            A copy of the updated metrics.
        """
        with self._lock:
            m = self._metrics
            if feedback_type == FeedbackType.POSITIVE:
                m.positive_feedback += 1
            elif feedback_type == FeedbackType.NEGATIVE:
                m.negative_feedback += 1
            else:
                m.improvement_suggestions += 1
            m.date = self._clock()
            return copy.copy(m)

    def upsert_pattern(
        self,
        text: str,
        category: Category,
        observed_accuracy: float,
    ) -> LearningPattern:
        """Insert or update the pattern for a piece of text.

        Args:
            text: Triggering text; only its first 20 characters are kept.
            category: Dominant category of the text.
            observed_accuracy: Score observed for this occurrence. Clamped
                into [0, 1]; NaN counts as 0.

        Returns:
            A copy of the stored pattern.
        """
        observed = clamp(observed_accuracy, 0.0, 1.0)
        key = pattern_key(text, category)
        with self._lock:
            now = self._clock()
            existing = self._patterns.get(key)
            if existing is None:
                pattern = LearningPattern(
                    id=next(self._pattern_ids),
                    pattern=key[0],
                    category=category,
                    frequency=1,
                    accuracy=observed,
                    last_seen=now,
                )
                self._patterns[key] = pattern
                logger.debug("New learning pattern %d (%s)", pattern.id, category.value)
                return copy.copy(pattern)
            existing.frequency += 1
            existing.accuracy = (existing.accuracy + observed) / 2
            existing.last_seen = now
            return copy.copy(existing)

    def snapshot(self) -> LearningMetrics:
        """Return a copy of the current metrics."""
        with self._lock:
            return copy.copy(self._metrics)

    def list_patterns(self) -> list[LearningPattern]:
        """Return all patterns, most frequent first.

        Returns:
            Copies of the patterns; ties ordered by id.
        """
        with self._lock:
            patterns = [copy.copy(p) for p in self._patterns.values()]
        return sorted(patterns, key=lambda p: (-p.frequency, p.id))
