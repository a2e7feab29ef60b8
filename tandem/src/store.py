"""In-memory conversation, message, and feedback storage.

A single ``ConversationStore`` owns every conversation, message, and
feedback entry for the process. All read-modify-write sequences run under
one re-entrant lock so that concurrent request handlers never observe a
half-applied update. Reads return copies; callers cannot mutate stored
state except through the store's methods.

Lookups return ``None`` for unknown ids. The only operation that raises
on an unknown id is ``append_message``, because it must refuse to create
an orphan message.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from tandem.src.models import (
    Conversation,
    ConversationStatus,
    FeedbackCategory,
    FeedbackEntry,
    FeedbackType,
    InvalidFieldError,
    Language,
    Message,
    RecordNotFoundError,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

FEEDBACK_SCORES: dict[FeedbackType, int] = {
    FeedbackType.POSITIVE: 5,
    FeedbackType.NEGATIVE: 1,
}

MIN_FEEDBACK_SCORE = 1
MAX_FEEDBACK_SCORE = 5


class ConversationStore:
    """Thread-safe owner of conversations, messages, and feedback.

    Args:
        clock: Time source for created/updated timestamps. Defaults to
            ``datetime.now``.

    Example::

        store = ConversationStore()
        conv = store.create_conversation("Weekly sync")
        store.append_message(conv.id, "안녕하세요", Language.KO, is_user=True)
        assert store.get_conversation(conv.id).total_exchanges == 1
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or datetime.now
        self._lock = threading.RLock()
        self._conversations: dict[int, Conversation] = {}
        self._messages: dict[int, Message] = {}
        self._feedback: dict[int, FeedbackEntry] = {}
        self._conversation_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._feedback_ids = itertools.count(1)

    # -------------------------------------------------------------------
    # Conversations
    # -------------------------------------------------------------------

    def list_conversations(self) -> list[Conversation]:
        """Return all conversations, most recently updated first.

        Returns:
            Copies of every conversation.
        """
        with self._lock:
            convos = [copy.copy(c) for c in self._conversations.values()]
        return sorted(convos, key=lambda c: (c.updated_at, c.id), reverse=True)

    def get_conversation(self, conversation_id: int) -> Conversation | None:
        """Look up a conversation.

        Args:
            conversation_id: The conversation identifier.

        Returns:
            A copy of the conversation, or None if unknown.
        """
        with self._lock:
            conv = self._conversations.get(conversation_id)
            return copy.copy(conv) if conv is not None else None

    def create_conversation(
        self,
        title: str,
        status: ConversationStatus = ConversationStatus.ACTIVE,
        accuracy_improvement: float = 0.0,
    ) -> Conversation:
        """Create an empty conversation.

        Args:
            title: Display title; must not be blank.
            status: Initial lifecycle state.
            accuracy_improvement: Initial display-only accuracy delta.

        Returns:
            A copy of the new conversation.

        Raises:
            InvalidFieldError: If the title is blank.
        """
        if not title or not title.strip():
            raise InvalidFieldError(["title"])
        with self._lock:
            now = self._clock()
            conv = Conversation(
                id=next(self._conversation_ids),
                title=title,
                created_at=now,
                updated_at=now,
                accuracy_improvement=accuracy_improvement,
                status=status,
            )
            self._conversations[conv.id] = conv
            logger.debug("Created conversation %d", conv.id)
            return copy.copy(conv)

    def update_conversation(
        self,
        conversation_id: int,
        title: str | None = None,
        status: ConversationStatus | None = None,
        accuracy_improvement: float | None = None,
    ) -> Conversation | None:
        """Change the editable fields of a conversation.

        ``total_exchanges`` and ``created_at`` are not editable.

        Args:
            conversation_id: The conversation identifier.
            title: New title, if given; must not be blank.
            status: New lifecycle state, if given.
            accuracy_improvement: New accuracy delta, if given.

        Returns:
            A copy of the updated conversation, or None if unknown.

        Raises:
            InvalidFieldError: If a blank title is given.
        """
        if title is not None and not title.strip():
            raise InvalidFieldError(["title"])
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None:
                return None
            if title is not None:
                conv.title = title
            if status is not None:
                conv.status = status
            if accuracy_improvement is not None:
                conv.accuracy_improvement = accuracy_improvement
            conv.updated_at = max(self._clock(), conv.created_at)
            return copy.copy(conv)

    # -------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------

    def append_message(
        self,
        conversation_id: int,
        content: str,
        language: Language,
        is_user: bool,
        translated_content: str | None = None,
        context_score: float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Add a message and update the owning conversation atomically.

        Args:
            conversation_id: Owning conversation; must exist.
            content: Original text.
            language: Language tag of the content.
            is_user: Whether this is a user turn.
            translated_content: Generated reply for non-user turns.
            context_score: Confidence in [0, 1].
            metadata: Analysis data stored with the message.

        Returns:
            A copy of the stored message.

        Raises:
            RecordNotFoundError: If the conversation does not exist. No
                state changes in that case.
        """
        with self._lock:
            conv = self._conversations.get(conversation_id)
            if conv is None:
                raise RecordNotFoundError(f"Conversation {conversation_id} not found")
            now = self._clock()
            message = Message(
                id=next(self._message_ids),
                conversation_id=conversation_id,
                content=content,
                is_user=is_user,
                language=language,
                timestamp=now,
                translated_content=translated_content,
                context_score=context_score,
                metadata=copy.deepcopy(metadata) if metadata else {},
            )
            self._messages[message.id] = message
            conv.total_exchanges += 1
            conv.updated_at = max(now, conv.created_at)
            return copy.deepcopy(message)

    def list_messages(self, conversation_id: int) -> list[Message]:
        """Return a conversation's messages, oldest first.

        Args:
            conversation_id: The conversation identifier.

        Returns:
            Copies of the messages; empty when there are none or the
            conversation is unknown.
        """
        with self._lock:
            messages = [
                copy.deepcopy(m)
                for m in self._messages.values()
                if m.conversation_id == conversation_id
            ]
        return sorted(messages, key=lambda m: (m.timestamp, m.id))

    def get_message(self, message_id: int) -> Message | None:
        """Look up a message.

        Args:
            message_id: The message identifier.

        Returns:
            A copy of the message, or None if unknown.
        """
        with self._lock:
            message = self._messages.get(message_id)
            return copy.deepcopy(message) if message is not None else None

    def patch_message(
        self,
        message_id: int,
        feedback_score: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Message | None:
        """Update the mutable fields of a message.

        Metadata is merged key by key into the existing map.

        Args:
            message_id: The message identifier.
            feedback_score: New score in [1, 5], if given.
            metadata: Keys to merge into the metadata, if given.

        Returns:
            A copy of the patched message, or None if unknown.

        Raises:
            InvalidFieldError: If the feedback score is out of range.
        """
        if feedback_score is not None and not (
            MIN_FEEDBACK_SCORE <= feedback_score <= MAX_FEEDBACK_SCORE
        ):
            raise InvalidFieldError(["feedbackScore"])
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None
            self._apply_patch(message, feedback_score, metadata)
            return copy.deepcopy(message)

    # -------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------

    def create_feedback(
        self,
        message_id: int,
        feedback_type: FeedbackType,
        category: FeedbackCategory | None = None,
        suggestion: str | None = None,
    ) -> FeedbackEntry | None:
        """Record feedback and update the message score together.

        Positive feedback sets the message's feedback score to 5 and
        negative sets it to 1. Suggestions leave the score unchanged.

        Args:
            message_id: The message the feedback is about.
            feedback_type: Positive, negative, or suggestion.
            category: Optional area of the feedback.
            suggestion: Optional free-text suggestion.

        Returns:
            A copy of the new entry, or None if the message is unknown.
        """
        with self._lock:
            message = self._messages.get(message_id)
            if message is None:
                return None
            entry = FeedbackEntry(
                id=next(self._feedback_ids),
                message_id=message_id,
                feedback_type=feedback_type,
                timestamp=self._clock(),
                category=category,
                suggestion=suggestion,
            )
            self._feedback[entry.id] = entry
            score = FEEDBACK_SCORES.get(feedback_type)
            if score is not None:
                self._apply_patch(message, score, None)
            logger.debug(
                "Recorded %s feedback %d on message %d",
                feedback_type.value,
                entry.id,
                message_id,
            )
            return copy.copy(entry)

    def list_feedback(self, message_id: int) -> list[FeedbackEntry]:
        """Return feedback entries for a message, oldest first.

        Args:
            message_id: The message identifier.

        Returns:
            Copies of the entries; empty if none.
        """
        with self._lock:
            entries = [
                copy.copy(f) for f in self._feedback.values() if f.message_id == message_id
            ]
        return sorted(entries, key=lambda f: (f.timestamp, f.id))

    # -------------------------------------------------------------------
    # Private helpers
    # -------------------------------------------------------------------

    @staticmethod
    def _apply_patch(
        message: Message,
        feedback_score: int | None,
        metadata: dict[str, Any] | None,
    ) -> None:
        """Mutate a stored message in place. Caller holds the lock."""
        if feedback_score is not None:
            message.feedback_score = feedback_score
        if metadata:
            message.metadata.update(copy.deepcopy(metadata))
