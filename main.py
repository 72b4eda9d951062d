"""
FastAPI Conversational Query API Server

Exposes the conversation orchestrator over HTTP: asking questions,
reading and clearing conversation history, and health checks. Every
response is wrapped in a `{success, data | error, timestamp}` envelope.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from nlquery.api.config import APIConfig
from nlquery.api.handlers.ask import parse_ask_request, process_ask
from nlquery.api.handlers.conversation import (
    clear_conversation,
    create_conversation,
    delete_conversation,
    get_history,
)
from nlquery.api.handlers.health import check_health
from nlquery.api.middleware.request_logger import RequestLoggerMiddleware
from nlquery.api.models.errors import (
    error_envelope,
    invalid_request_error,
    not_found_error,
    server_error,
    success_envelope,
)
from nlquery.core.errors import ConversationNotFoundError
from nlquery.core.orchestrator import ConversationOrchestrator
from nlquery.lib.config import ConfigLoader
from nlquery.lib.logger import setup_logging
from nlquery.storage.knowledge_base import InMemoryKnowledgeBase

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def build_orchestrator(config: APIConfig) -> ConversationOrchestrator:
    """Create an orchestrator from API configuration.

    Args:
        config: API configuration

    Returns:
        ConversationOrchestrator backed by the configured knowledge base
    """
    engine_config = ConfigLoader(config_dir=config.get("engine.config_dir", "config")).engine

    kb_path = config.knowledge_base_path()
    if kb_path.exists():
        knowledge_base = InMemoryKnowledgeBase.from_jsonl(kb_path)
    else:
        logger.warning(f"Knowledge base not found at {kb_path}, starting empty")
        knowledge_base = InMemoryKnowledgeBase()

    return ConversationOrchestrator(knowledge_base, engine_config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    config: APIConfig = app.state.config

    setup_logging(
        log_level=config.get("logging.level", "INFO"),
        log_file=config.get("logging.file"),
        structured=config.get("logging.structured", False),
    )
    logger.info("Starting conversational query API server")

    if app.state.orchestrator is None:
        logger.info("Initializing knowledge base and orchestrator...")
        app.state.orchestrator = build_orchestrator(config)
        logger.info("Orchestrator initialized successfully")

    yield

    logger.info("Shutting down API server")


def _json(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=success_envelope(data).to_content())


def create_app(
    api_config: APIConfig | None = None,
    orchestrator: ConversationOrchestrator | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        api_config: API configuration (default: loaded from config/api.yaml)
        orchestrator: Orchestrator to serve (default: built at startup)

    Returns:
        Configured FastAPI app
    """
    config = api_config or APIConfig()

    app = FastAPI(
        title="Conversational Query API",
        description="Multi-turn natural-language questions over a knowledge base",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.orchestrator = orchestrator

    if config.get("cors.enabled", True):
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.get("cors.allow_origins", ["*"]),
            allow_credentials=True,
            allow_methods=config.get("cors.allow_methods", ["GET", "POST", "DELETE", "OPTIONS"]),
            allow_headers=config.get("cors.allow_headers", ["Content-Type", "Authorization"]),
        )

    app.add_middleware(RequestLoggerMiddleware)

    def get_orchestrator() -> ConversationOrchestrator:
        if app.state.orchestrator is None:
            app.state.orchestrator = build_orchestrator(config)
        return app.state.orchestrator

    # HTTPException handler - unwrap envelope from detail
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Return the envelope carried in detail, or wrap a plain detail in one."""
        if isinstance(exc.detail, dict) and "success" in exc.detail:
            return JSONResponse(status_code=exc.status_code, content=exc.detail)

        return JSONResponse(
            status_code=exc.status_code,
            content=error_envelope(str(exc.detail)).to_content(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Invalid request on {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content=invalid_request_error("Invalid request"))

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions with a generic error envelope."""
        logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content=server_error())

    @app.get("/")
    async def root():
        """API root endpoint."""
        return _json(
            {
                "message": "Conversational Query API",
                "version": VERSION,
                "docs": "/docs",
                "endpoints": {
                    "ask": "/ask",
                    "history": "/history/{conversationId}",
                    "conversation": "/conversation",
                    "health": "/health",
                },
            }
        )

    @app.post("/ask")
    async def ask(request: Request):
        """Answer a question, optionally within an existing conversation."""
        try:
            try:
                payload = await request.json()
            except ValueError as e:
                raise ValueError("Request body must be valid JSON") from e
            ask_request = parse_ask_request(payload)
        except ValueError as e:
            logger.warning(f"Invalid request: {e}")
            raise HTTPException(status_code=400, detail=invalid_request_error(str(e)))

        # Past validation, only an unknown conversation is the caller's fault
        try:
            response = await process_ask(ask_request, get_orchestrator())
            return _json(response.to_json())

        except ConversationNotFoundError as e:
            raise HTTPException(status_code=404, detail=not_found_error(str(e)))

        except Exception as e:
            logger.error(f"Unexpected error in ask: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=server_error())

    @app.get("/history/{conversation_id}")
    async def history(conversation_id: str):
        """Ordered turns of a conversation."""
        try:
            turns = get_history(conversation_id, get_orchestrator())
            return _json([turn.to_json() for turn in turns])

        except ConversationNotFoundError as e:
            raise HTTPException(status_code=404, detail=not_found_error(str(e)))

        except Exception as e:
            logger.error(f"Unexpected error reading history: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=server_error())

    @app.post("/conversation")
    async def new_conversation(request: Request):
        """Create a conversation, optionally owned by a user."""
        try:
            body = await request.body()
            payload = await request.json() if body.strip() else {}

            created = create_conversation(payload, get_orchestrator())
            return _json(created.to_json())

        except ValueError as e:
            logger.warning(f"Invalid request: {e}")
            raise HTTPException(status_code=400, detail=invalid_request_error(str(e)))

        except Exception as e:
            logger.error(f"Unexpected error creating conversation: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=server_error())

    @app.delete("/conversation/{conversation_id}")
    async def remove_conversation(conversation_id: str):
        """Delete a conversation and its history."""
        try:
            return _json(delete_conversation(conversation_id, get_orchestrator()).to_json())

        except Exception as e:
            logger.error(f"Unexpected error deleting conversation: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=server_error())

    @app.post("/conversation/{conversation_id}/clear")
    async def clear(conversation_id: str):
        """Clear a conversation's history while keeping the conversation."""
        try:
            return _json(clear_conversation(conversation_id, get_orchestrator()).to_json())

        except ConversationNotFoundError as e:
            raise HTTPException(status_code=404, detail=not_found_error(str(e)))

        except Exception as e:
            logger.error(f"Unexpected error clearing conversation: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=server_error())

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        status = await check_health(get_orchestrator())
        return _json(status.to_json())

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    server_config = app.state.config.get("server", {})
    reload = server_config.get("reload", False)

    uvicorn.run(
        "main:app",
        host=server_config.get("host", "0.0.0.0"),
        port=server_config.get("port", 3000),
        reload=reload,
        workers=1 if reload else server_config.get("workers", 1),
        log_level=str(app.state.config.get("logging.level", "info")).lower(),
    )
