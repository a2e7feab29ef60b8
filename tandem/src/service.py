"""Request-level orchestration for the Tandem backend.

``TranslatorService`` is the single entry point used by the HTTP router.
It validates input, looks up history, calls the responder for generated
turns, derives signals, stores the message, and updates learning metrics.

The only suspension point is the responder call. The store and the
metrics aggregator guard their own state with locks, so the service
itself holds no locks and never blocks the event loop while waiting on
the external model.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from tandem.src.classifier import classify
from tandem.src.metrics import MetricsAggregator
from tandem.src.models import (
    Conversation,
    ConversationStatus,
    FeedbackCategory,
    FeedbackEntry,
    FeedbackType,
    InvalidFieldError,
    Language,
    LearningMetrics,
    LearningPattern,
    Message,
    MessageAnalysis,
    MessageType,
    RecordNotFoundError,
)
from tandem.src.responder import RESPONSE_STYLE, CharacterResponder, GeneratedReply
from tandem.src.signals import SignalGenerator
from tandem.src.store import ConversationStore

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)


class TranslatorService:
    """Coordinates storage, classification, generation, and metrics.

    Args:
        store: Conversation and message storage.
        metrics: Learning metrics aggregator.
        responder: Generates replies for non-user turns.
        signals: Context score and insight generator.
        clock: Time source for analysis timestamps.

    Example::

        service = TranslatorService(store, metrics, responder)
        conv = service.create_conversation("Daily chat")
        msg = await service.create_message(conv.id, "안녕?", "ko", is_user=False)
    """

    def __init__(
        self,
        store: ConversationStore,
        metrics: MetricsAggregator,
        responder: CharacterResponder,
        signals: SignalGenerator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._metrics = metrics
        self._responder = responder
        self._signals = signals or SignalGenerator()
        self._clock = clock or datetime.now

    # -------------------------------------------------------------------
    # Conversations
    # -------------------------------------------------------------------

    def list_conversations(self) -> list[Conversation]:
        """Return all conversations, most recently updated first."""
        return self._store.list_conversations()

    def get_conversation(self, conversation_id: int) -> Conversation:
        """Fetch one conversation.

        Args:
            conversation_id: The conversation identifier.

        Returns:
            The conversation.

        Raises:
            RecordNotFoundError: If it does not exist.
        """
        conv = self._store.get_conversation(conversation_id)
        if conv is None:
            raise RecordNotFoundError(f"Conversation {conversation_id} not found")
        return conv

    def create_conversation(
        self,
        title: str,
        status: ConversationStatus | str = ConversationStatus.ACTIVE,
        accuracy_improvement: float = 0.0,
    ) -> Conversation:
        """Create a new conversation.

        Args:
            title: Display title.
            status: Initial lifecycle state.
            accuracy_improvement: Initial display-only accuracy delta.

        Returns:
            The created conversation.

        Raises:
            InvalidFieldError: If the title or status is invalid.
        """
        conv = self._store.create_conversation(
            title=title,
            status=_parse_enum(ConversationStatus, status, "status"),
            accuracy_improvement=accuracy_improvement,
        )
        logger.info("Conversation %d created", conv.id)
        return conv

    def update_conversation(
        self,
        conversation_id: int,
        title: str | None = None,
        status: ConversationStatus | str | None = None,
        accuracy_improvement: float | None = None,
    ) -> Conversation:
        """Edit a conversation's title, status, or accuracy delta.

        Raises:
            RecordNotFoundError: If the conversation does not exist.
            InvalidFieldError: If a field is invalid.
        """
        parsed_status = (
            _parse_enum(ConversationStatus, status, "status") if status is not None else None
        )
        conv = self._store.update_conversation(
            conversation_id,
            title=title,
            status=parsed_status,
            accuracy_improvement=accuracy_improvement,
        )
        if conv is None:
            raise RecordNotFoundError(f"Conversation {conversation_id} not found")
        return conv

    # -------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------

    def list_messages(self, conversation_id: int) -> list[Message]:
        """Return a conversation's messages, oldest first; empty if none."""
        return self._store.list_messages(conversation_id)

    async def create_message(
        self,
        conversation_id: int,
        content: str,
        language: Language | str,
        is_user: bool,
    ) -> Message:
        """Process and store a new message.

        User turns are stored as-is with score 1.0. Non-user turns ask
        the responder for a character reply to *content*, which is stored
        in ``translated_content``. Either way the translation counter and
        the learning pattern for the text are updated once the message is
        stored.

        Args:
            conversation_id: Owning conversation.
            content: Message text.
            language: ``"ko"`` or ``"en"``.
            is_user: Whether this is a user turn.

        Returns:
            The stored message.

        Raises:
            InvalidFieldError: If content is blank or language unknown.
            RecordNotFoundError: If the conversation does not exist.
        """
        lang = self._validate_message(content, language)
        if self._store.get_conversation(conversation_id) is None:
            raise RecordNotFoundError(f"Conversation {conversation_id} not found")

        history = self._store.list_messages(conversation_id)
        classification = classify(content)

        reply: GeneratedReply | None = None
        if not is_user:
            reply = await self._responder.generate(content, history)

        report = self._signals.derive_insights(
            content,
            history,
            is_user=is_user,
            confidence=reply.confidence if reply is not None else None,
        )
        analysis = MessageAnalysis(
            message_type=MessageType.USER if is_user else MessageType.ASSISTANT_RESPONSE,
            detected_patterns=list(classification.tags),
            analyzed_at=self._clock(),
        )
        if reply is not None:
            analysis.confidence = reply.confidence
            analysis.context_analysis = reply.context_analysis
            analysis.insights = report.insight_messages()
            analysis.response_style = RESPONSE_STYLE

        message = self._store.append_message(
            conversation_id,
            content=content,
            language=lang,
            is_user=is_user,
            translated_content=reply.text if reply is not None else None,
            context_score=report.score,
            metadata=analysis.to_metadata(),
        )

        self._metrics.record_translation_event()
        self._metrics.upsert_pattern(content, classification.dominant, report.score)
        logger.info(
            "Message %d stored in conversation %d (user=%s, score=%.2f)",
            message.id,
            conversation_id,
            is_user,
            report.score,
        )
        return message

    # -------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------

    def submit_feedback(
        self,
        message_id: int,
        feedback_type: FeedbackType | str,
        category: FeedbackCategory | str | None = None,
        suggestion: str | None = None,
    ) -> FeedbackEntry:
        """Record feedback on a message and update the counters.

        Args:
            message_id: The message the feedback is about.
            feedback_type: ``"positive"``, ``"negative"``, or ``"suggestion"``.
            category: Optional feedback area.
            suggestion: Optional free-text suggestion.

        Returns:
            The stored feedback entry.

        Raises:
            InvalidFieldError: If type or category is unknown.
            RecordNotFoundError: If the message does not exist.
        """
        kind = _parse_enum(FeedbackType, feedback_type, "feedbackType")
        area = _parse_enum(FeedbackCategory, category, "category") if category else None

        entry = self._store.create_feedback(
            message_id, kind, category=area, suggestion=suggestion
        )
        if entry is None:
            raise RecordNotFoundError(f"Message {message_id} not found")
        self._metrics.record_feedback(kind)
        logger.info("Feedback %d (%s) recorded for message %d", entry.id, kind.value, message_id)
        return entry

    def list_feedback(self, message_id: int) -> list[FeedbackEntry]:
        """Return feedback for a message.

        Raises:
            RecordNotFoundError: If the message does not exist.
        """
        if self._store.get_message(message_id) is None:
            raise RecordNotFoundError(f"Message {message_id} not found")
        return self._store.list_feedback(message_id)

    # -------------------------------------------------------------------
    # Learning stats
    # -------------------------------------------------------------------

    def get_learning_metrics(self) -> LearningMetrics:
        """Return a snapshot of the learning metrics."""
        return self._metrics.snapshot()

    def get_learning_patterns(self) -> list[LearningPattern]:
        """Return all learning patterns."""
        return self._metrics.list_patterns()

    # -------------------------------------------------------------------
    # Private helpers
    # -------------------------------------------------------------------

    @staticmethod
    def _validate_message(content: str, language: Language | str) -> Language:
        """Check message fields before any state is touched.

        Raises:
            InvalidFieldError: Listing every invalid field.
        """
        bad: list[str] = []
        if not isinstance(content, str) or not content.strip():
            bad.append("content")
        try:
            lang = Language(language)
        except ValueError:
            bad.append("language")
        if bad:
            raise InvalidFieldError(bad)
        return lang


def _parse_enum(enum_cls: type[E], value: Any, field_name: str) -> E:
    """Coerce a raw value to *enum_cls* or raise InvalidFieldError."""
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise InvalidFieldError([field_name]) from exc
