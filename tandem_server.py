"""Tandem backend server.

Builds the conversation store, metrics aggregator, and character
responder from environment configuration and mounts the Tandem router
under ``/api`` of a single FastAPI application.

Usage::

    # Development (auto-reload)
    uvicorn tandem_server:app --reload --port 5000

    # Production
    uvicorn tandem_server:app --host 0.0.0.0 --port 5000

    # Or run directly
    python tandem_server.py
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tandem.src.config import TandemConfig
from tandem.src.metrics import MetricsAggregator
from tandem.src.responder import CharacterResponder, ChatModel, OpenAIChatModel
from tandem.src.server import configure, router
from tandem.src.service import TranslatorService
from tandem.src.store import ConversationStore

logger = logging.getLogger("tandem")

# ---------------------------------------------------------------------------
# CORS -- allow the local Vite dev server
# ---------------------------------------------------------------------------

_ALLOWED_ORIGINS = [
    "http://localhost:5173",   # Vite dev server
    "http://localhost:5000",   # Self (for Swagger UI)
    "http://127.0.0.1:5173",
    "http://127.0.0.1:5000",
]


def build_service(
    config: TandemConfig | None = None,
    model: ChatModel | None = None,
) -> TranslatorService:
    """Assemble a TranslatorService with fresh in-memory state.

    Args:
        config: Settings; read from the environment when None.
        model: Chat model override; an ``OpenAIChatModel`` when None.

    Returns:
        A ready-to-use service.
    """
    cfg = config or TandemConfig.from_env()
    if model is None:
        if not cfg.api_key:
            logger.warning("GROQ_API_KEY is not set; generated replies will use fallbacks")
        model = OpenAIChatModel(cfg)
    return TranslatorService(
        store=ConversationStore(),
        metrics=MetricsAggregator(),
        responder=CharacterResponder(model, cfg),
    )


def create_app(service: TranslatorService | None = None) -> FastAPI:
    """Create the FastAPI application with the Tandem router mounted.

    Args:
        service: Pre-built service; built from the environment when None.

    Returns:
        Configured FastAPI application.
    """
    application = FastAPI(
        title="Tandem API",
        description=(
            "Korean/English conversation translator backend: conversations, "
            "character replies, feedback, and adaptive learning metrics."
        ),
        version="0.1.0",
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    configure(service or build_service())
    application.include_router(router, prefix="/api", tags=["tandem"])
    logger.info("Tandem router mounted at /api/")
    return application


app = create_app()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def run_server(host: str = "127.0.0.1", port: int = 5000) -> None:
    """Start the Tandem server via uvicorn.

    Args:
        host: Bind address. Defaults to localhost.
        port: Port number. Defaults to 5000.
    """
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    run_server()
