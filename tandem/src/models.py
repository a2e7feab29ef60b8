"""Core data model for Tandem conversations, messages, and learning stats.

Entities serialize to the camelCase JSON shapes the chat UI consumes.
All timestamps are naive local datetimes, matching the rest of the
backend.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# ===================================================================
# Exceptions
# ===================================================================


class TandemError(Exception):
    """Base exception for Tandem core errors."""


class RecordNotFoundError(TandemError):
    """Raised when a conversation or message id does not exist."""


class InvalidFieldError(TandemError):
    """Raised when input fields fail validation.

    Attributes:
        fields: Names of the offending fields, in input order.
    """

    def __init__(self, fields: list[str], message: str = "Invalid data") -> None:
        self.fields = list(fields)
        super().__init__(f"{message}: {', '.join(self.fields)}")


# ===================================================================
# Enums
# ===================================================================


class ConversationStatus(str, Enum):
    """Lifecycle state of a conversation."""

    ACTIVE = "active"
    LEARNING = "learning"
    COMPLETED = "completed"


class Language(str, Enum):
    """Language tag carried by every message."""

    KO = "ko"
    EN = "en"


class Category(str, Enum):
    """Keyword category detected in message text.

    Attributes:
        BUSINESS: Meetings, projects, planning.
        TECHNICAL: Systems, data, programming.
        CASUAL: Greetings and small talk.
        QUESTION: Question markers.
        FORMAL: Honorific or polite register.
        GENERAL: Nothing else matched.
    """

    BUSINESS = "business"
    TECHNICAL = "technical"
    CASUAL = "casual"
    QUESTION = "question"
    FORMAL = "formal"
    GENERAL = "general"


class FeedbackType(str, Enum):
    """Kind of feedback a user can leave on a message."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    SUGGESTION = "suggestion"


class FeedbackCategory(str, Enum):
    """Optional area a feedback entry is about."""

    GRAMMAR = "grammar"
    CONTEXT = "context"
    TONE = "tone"
    TECHNICAL = "technical"
    CULTURAL = "cultural"
    FLUENCY = "fluency"
    ACCURACY = "accuracy"


class MessageType(str, Enum):
    """Authorship recorded in message metadata."""

    USER = "user"
    ASSISTANT_RESPONSE = "assistant_response"


# ===================================================================
# Entities
# ===================================================================


@dataclass
class Conversation:
    """A titled thread of messages.

    Attributes:
        id: Numeric identity assigned by the store.
        title: Display title.
        created_at: Creation time.
        updated_at: Time of the most recent mutation.
        total_exchanges: Number of messages ever appended.
        accuracy_improvement: Display-only accuracy delta.
        status: Lifecycle state.
    """

    id: int
    title: str
    created_at: datetime
    updated_at: datetime
    total_exchanges: int = 0
    accuracy_improvement: float = 0.0
    status: ConversationStatus = ConversationStatus.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape.

        Returns:
            Dict with all conversation fields.
        """
        return {
            "id": self.id,
            "title": self.title,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "totalExchanges": self.total_exchanges,
            "accuracyImprovement": self.accuracy_improvement,
            "status": self.status.value,
        }


@dataclass
class Message:
    """One turn in a conversation.

    Attributes:
        id: Numeric identity assigned by the store.
        conversation_id: Owning conversation.
        content: Original text.
        is_user: True for user turns, False for generated turns.
        language: Language tag of the content.
        timestamp: Creation time; never changes.
        translated_content: Generated reply, only for non-user turns.
        context_score: Confidence in [0, 1].
        feedback_score: 1 (negative) to 5 (positive), set by feedback.
        metadata: Open key/value map (patterns, confidence, insights).
    """

    id: int
    conversation_id: int
    content: str
    is_user: bool
    language: Language
    timestamp: datetime
    translated_content: str | None = None
    context_score: float | None = None
    feedback_score: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape.

        Returns:
            Dict with all message fields.
        """
        return {
            "id": self.id,
            "conversationId": self.conversation_id,
            "content": self.content,
            "translatedContent": self.translated_content,
            "isUser": self.is_user,
            "language": self.language.value,
            "contextScore": self.context_score,
            "timestamp": self.timestamp.isoformat(),
            "feedbackScore": self.feedback_score,
            "metadata": dict(self.metadata),
        }


@dataclass
class FeedbackEntry:
    """User feedback on a single message.

    ``applied`` stays False until a curation step consumes the entry.

    Attributes:
        id: Numeric identity assigned by the store.
        message_id: The message this feedback is about.
        feedback_type: Positive, negative, or suggestion.
        timestamp: Submission time.
        category: Optional area of the feedback.
        suggestion: Optional free-text suggestion.
        applied: Whether the feedback has been curated.
    """

    id: int
    message_id: int
    feedback_type: FeedbackType
    timestamp: datetime
    category: FeedbackCategory | None = None
    suggestion: str | None = None
    applied: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape.

        Returns:
            Dict with all feedback fields.
        """
        return {
            "id": self.id,
            "messageId": self.message_id,
            "feedbackType": self.feedback_type.value,
            "category": self.category.value if self.category else None,
            "suggestion": self.suggestion,
            "timestamp": self.timestamp.isoformat(),
            "applied": self.applied,
        }


@dataclass
class LearningMetrics:
    """Process-wide rollup of translation volume, accuracy, and feedback.

    Attributes:
        id: Always 1; there is a single record.
        date: Time of the most recent mutation.
        total_translations: Messages processed since the seed.
        accuracy_score: Accuracy trend in [0, 100]; never decreases.
        context_accuracy: Context accuracy in [0, 100].
        learning_rate: Learning rate in [0, 100].
        positive_feedback: Count of positive feedback.
        negative_feedback: Count of negative feedback.
        improvement_suggestions: Count of suggestion feedback.
    """

    id: int
    date: datetime
    total_translations: int
    accuracy_score: float
    context_accuracy: float
    learning_rate: float
    positive_feedback: int
    negative_feedback: int
    improvement_suggestions: int

    @property
    def satisfaction_rate(self) -> float:
        """Percentage of rated feedback that was positive.

        Returns:
            Rate in [0, 100] rounded to 2 decimals, 0 without feedback.
        """
        rated = self.positive_feedback + self.negative_feedback
        if rated == 0:
            return 0.0
        return round(self.positive_feedback / rated * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape.

        Returns:
            Dict with all metric fields plus the derived satisfaction rate.
        """
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "totalTranslations": self.total_translations,
            "accuracyScore": self.accuracy_score,
            "contextAccuracy": self.context_accuracy,
            "learningRate": self.learning_rate,
            "positiveFeedback": self.positive_feedback,
            "negativeFeedback": self.negative_feedback,
            "improvementSuggestions": self.improvement_suggestions,
            "satisfactionRate": self.satisfaction_rate,
        }


@dataclass
class LearningPattern:
    """Aggregate for one (text prefix, category) pair.

    Attributes:
        id: Numeric identity assigned on first sight.
        pattern: Truncated prefix of the triggering text.
        category: Dominant category of the triggering text.
        frequency: Number of upserts for this key.
        accuracy: Average-of-averages of observed scores.
        last_seen: Time of the most recent upsert.
    """

    id: int
    pattern: str
    category: Category
    frequency: int
    accuracy: float
    last_seen: datetime

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire shape.

        Returns:
            Dict with all pattern fields.
        """
        return {
            "id": self.id,
            "pattern": self.pattern,
            "category": self.category.value,
            "frequency": self.frequency,
            "accuracy": self.accuracy,
            "lastSeen": self.last_seen.isoformat(),
        }


# ===================================================================
# Typed message analysis
# ===================================================================


@dataclass
class MessageAnalysis:
    """Typed form of the signals attached to a message.

    Stored on the message as a plain dict via ``to_metadata()``.

    Attributes:
        message_type: Who authored the turn.
        detected_patterns: Categories found in the content, in table order.
        analyzed_at: When the analysis ran.
        confidence: Responder confidence (generated turns only).
        context_analysis: Responder's explanation (generated turns only).
        insights: Learning insights (generated turns only).
        response_style: Style label of the generated reply.
    """

    message_type: MessageType
    detected_patterns: list[Category]
    analyzed_at: datetime
    confidence: float | None = None
    context_analysis: str | None = None
    insights: list[str] = field(default_factory=list)
    response_style: str | None = None

    def to_metadata(self) -> dict[str, Any]:
        """Flatten into the open metadata map stored on the message.

        Returns:
            Dict keyed with camelCase names; generated-turn keys are
            omitted for user turns.
        """
        data: dict[str, Any] = {
            "messageType": self.message_type.value,
            "detectedPatterns": [c.value for c in self.detected_patterns],
            "timestamp": self.analyzed_at.isoformat(),
        }
        if self.message_type == MessageType.ASSISTANT_RESPONSE:
            data["confidence"] = self.confidence
            data["contextAnalysis"] = self.context_analysis
            data["learningInsights"] = list(self.insights)
            data["responseStyle"] = self.response_style
        return data
