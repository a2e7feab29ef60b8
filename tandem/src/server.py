"""FastAPI router for the Tandem chat-translation backend.

Exposes REST endpoints for conversations, messages, feedback, and
learning statistics. JSON bodies use the camelCase field names of the
chat UI. Designed to be mounted at ``/api`` by the parent application.

Example::

    from fastapi import FastAPI
    from tandem.src.server import configure, router

    app = FastAPI()
    configure(service)
    app.include_router(router, prefix="/api")
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from shared.hardening import ErrorFormatter
from tandem.src.models import InvalidFieldError, RecordNotFoundError
from tandem.src.service import TranslatorService

logger = logging.getLogger(__name__)

_formatter = ErrorFormatter()

# ===================================================================
# Pydantic request models
# ===================================================================


class _CamelModel(BaseModel):
    """Base for request bodies: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateConversationRequest(_CamelModel):
    """Request body for creating a conversation."""

    title: str = Field(..., min_length=1, max_length=500)
    status: str = "active"
    accuracy_improvement: float = Field(default=0.0, alias="accuracyImprovement")


class UpdateConversationRequest(_CamelModel):
    """Request body for editing a conversation. All fields optional."""

    title: str | None = Field(default=None, min_length=1, max_length=500)
    status: str | None = None
    accuracy_improvement: float | None = Field(default=None, alias="accuracyImprovement")


class CreateMessageRequest(_CamelModel):
    """Request body for posting a message."""

    conversation_id: int = Field(..., alias="conversationId")
    content: str = Field(..., min_length=1, max_length=10_000)
    language: str = Field(..., min_length=1)
    is_user: bool = Field(..., alias="isUser")


class SubmitFeedbackRequest(_CamelModel):
    """Request body for submitting feedback on a message."""

    message_id: int = Field(..., alias="messageId")
    feedback_type: str = Field(..., min_length=1, alias="feedbackType")
    category: str | None = None
    suggestion: str | None = Field(default=None, max_length=5_000)


# ===================================================================
# Shared state and factory
# ===================================================================

_state: dict[str, Any] = {
    "service": None,
}


def get_service() -> TranslatorService:
    """Return the TranslatorService singleton, raising 503 if not initialised.

    Returns:
        The current TranslatorService instance.

    Raises:
        HTTPException: 503 if the service has not been initialised.
    """
    service = _state.get("service")
    if service is None:
        raise HTTPException(
            status_code=503,
            detail="Tandem service not initialised. Call configure() first.",
        )
    return service


def configure(service: TranslatorService) -> None:
    """Inject the service into the module-level state.

    Must be called before the router handles any requests.

    Args:
        service: A fully-constructed TranslatorService.
    """
    _state["service"] = service


def _invalid(exc: InvalidFieldError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"message": "Invalid data", "fields": exc.fields},
    )


def _internal_error(exc: Exception, action: str) -> HTTPException:
    logger.exception("Failed to %s", action)
    return HTTPException(status_code=500, detail=_formatter.format_api_error(exc).to_dict())


# ===================================================================
# Router
# ===================================================================

router = APIRouter()


# -------------------------------------------------------------------
# Health
# -------------------------------------------------------------------


@router.get("/health")
async def health() -> dict[str, Any]:
    """Return service health status.

    Returns:
        Dictionary with status, version, and component readiness.
    """
    ready = _state.get("service") is not None
    return {
        "status": "ok" if ready else "not_configured",
        "version": "0.1.0",
        "components": {"service": ready},
    }


# -------------------------------------------------------------------
# Conversations
# -------------------------------------------------------------------


@router.get("/conversations")
async def list_conversations() -> list[dict[str, Any]]:
    """List conversations, most recently updated first."""
    try:
        service = get_service()
        return [c.to_dict() for c in service.list_conversations()]
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "list conversations") from exc


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: int) -> dict[str, Any]:
    """Return one conversation.

    Args:
        conversation_id: The conversation identifier.

    Returns:
        Conversation dictionary.
    """
    try:
        service = get_service()
        return service.get_conversation(conversation_id).to_dict()
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, f"fetch conversation {conversation_id}") from exc


@router.post("/conversations", status_code=201)
async def create_conversation(request: CreateConversationRequest) -> dict[str, Any]:
    """Create a conversation.

    Args:
        request: Title and optional initial status.

    Returns:
        The created conversation.
    """
    try:
        service = get_service()
        conv = service.create_conversation(
            title=request.title,
            status=request.status,
            accuracy_improvement=request.accuracy_improvement,
        )
        return conv.to_dict()
    except InvalidFieldError as exc:
        raise _invalid(exc) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "create conversation") from exc


@router.patch("/conversations/{conversation_id}")
async def update_conversation(
    conversation_id: int,
    request: UpdateConversationRequest,
) -> dict[str, Any]:
    """Edit a conversation's title, status, or accuracy delta.

    Args:
        conversation_id: The conversation identifier.
        request: Fields to change.

    Returns:
        The updated conversation.
    """
    try:
        service = get_service()
        conv = service.update_conversation(
            conversation_id,
            title=request.title,
            status=request.status,
            accuracy_improvement=request.accuracy_improvement,
        )
        return conv.to_dict()
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidFieldError as exc:
        raise _invalid(exc) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, f"update conversation {conversation_id}") from exc


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(conversation_id: int) -> list[dict[str, Any]]:
    """List a conversation's messages, oldest first.

    Unknown conversations yield an empty list.
    """
    try:
        service = get_service()
        return [m.to_dict() for m in service.list_messages(conversation_id)]
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, f"list messages for {conversation_id}") from exc


# -------------------------------------------------------------------
# Messages
# -------------------------------------------------------------------


@router.post("/messages", status_code=201)
async def create_message(request: CreateMessageRequest) -> dict[str, Any]:
    """Post a message; non-user turns get a generated reply.

    Args:
        request: Conversation id, content, language, and author flag.

    Returns:
        The stored message, including the generated reply if any.
    """
    try:
        service = get_service()
        message = await service.create_message(
            request.conversation_id,
            content=request.content,
            language=request.language,
            is_user=request.is_user,
        )
        return message.to_dict()
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidFieldError as exc:
        raise _invalid(exc) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "create message") from exc


@router.get("/messages/{message_id}/feedback")
async def list_feedback(message_id: int) -> list[dict[str, Any]]:
    """List feedback entries for one message."""
    try:
        service = get_service()
        return [f.to_dict() for f in service.list_feedback(message_id)]
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, f"list feedback for message {message_id}") from exc


# -------------------------------------------------------------------
# Feedback
# -------------------------------------------------------------------


@router.post("/feedback", status_code=201)
async def submit_feedback(request: SubmitFeedbackRequest) -> dict[str, Any]:
    """Record feedback on a message.

    Args:
        request: Message id, feedback type, and optional details.

    Returns:
        The stored feedback entry.
    """
    try:
        service = get_service()
        entry = service.submit_feedback(
            request.message_id,
            request.feedback_type,
            category=request.category,
            suggestion=request.suggestion,
        )
        return entry.to_dict()
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidFieldError as exc:
        raise _invalid(exc) from exc
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "submit feedback") from exc


# -------------------------------------------------------------------
# Learning stats
# -------------------------------------------------------------------


@router.get("/learning-metrics")
async def learning_metrics() -> dict[str, Any]:
    """Return the learning metrics, including the satisfaction rate."""
    try:
        service = get_service()
        return service.get_learning_metrics().to_dict()
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "fetch learning metrics") from exc


@router.get("/learning-patterns")
async def learning_patterns() -> list[dict[str, Any]]:
    """Return all learning patterns, most frequent first."""
    try:
        service = get_service()
        return [p.to_dict() for p in service.get_learning_patterns()]
    except HTTPException:
        raise
    except Exception as exc:
        raise _internal_error(exc, "fetch learning patterns") from exc
