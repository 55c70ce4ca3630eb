from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

from .api_client import ApiError, StorefrontApiClient
from .config import Settings, load_settings
from .dispatcher import ChatBackend, ConversationDispatcher, SendInProgressError
from .models import ChatRequest, ChatResponse, ConversationSummary, TranscriptResponse

BASE_DIR = Path(__file__).resolve().parent

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)

logger = logging.getLogger("storefront.app")


class ScreenNavigator:
    """Collects navigation instructions for the chat screen to follow."""

    def __init__(self) -> None:
        self._pending: Optional[str] = None

    def navigate(self, target_page: str) -> None:
        self._pending = target_page

    def pop(self) -> Optional[str]:
        target, self._pending = self._pending, None
        return target


def configure_logging(level_name: str) -> None:
    """Purpose: Configure root logging once for the process.
    Inputs/Outputs: Input is a level name such as "INFO"; no return value.
    Side Effects / State: Installs a basicConfig handler if none exists.
    Dependencies: logging.basicConfig.
    Failure Modes: Unknown level names fall back to INFO.
    If Removed: Dispatcher and executor logs are not emitted.
    Testing Notes: Call twice and verify a single handler is installed.
    """
    # Respect handlers installed by an embedding server.
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    logging.getLogger("storefront").setLevel(log_level)


def _transcript(dispatcher: ConversationDispatcher) -> TranscriptResponse:
    state = dispatcher.state
    return TranscriptResponse(
        conversation_id=state.id,
        title=state.title,
        status=state.status,
        phase=state.phase.value,
        messages=dispatcher.messages,
    )


def create_app(settings: Optional[Settings] = None, backend: Optional[ChatBackend] = None) -> FastAPI:
    """Purpose: Build the FastAPI facade around one conversation dispatcher.
    Inputs/Outputs: Inputs are optional Settings and an optional backend; output
        is a FastAPI app.
    Side Effects / State: Creates the API client when no backend is given; the
        lifespan loads the catalog and closes the client on shutdown.
    Dependencies: StorefrontApiClient, ConversationDispatcher, ScreenNavigator.
    Failure Modes: A failed catalog load at startup is logged and ignored.
    If Removed: The chat screen has no HTTP surface.
    Testing Notes: Pass a fake backend and drive it with TestClient.
    """
    # Resolve settings and collaborators, then wire the dispatcher.
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    api_client: Optional[StorefrontApiClient] = None
    if backend is None:
        api_client = StorefrontApiClient(settings)
        backend = api_client

    navigator = ScreenNavigator()
    dispatcher = ConversationDispatcher(
        backend,
        navigator=navigator,
        greeting_text=settings.greeting_text,
        fallback_text=settings.fallback_text,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        await dispatcher.refresh_catalog()
        try:
            yield
        finally:
            if api_client is not None:
                await api_client.aclose()

    app = FastAPI(title="Storefront Chat Assistant", lifespan=lifespan)
    app.state.dispatcher = dispatcher

    @app.get("/health")
    async def health_check() -> Dict[str, Any]:
        """Report whether the storefront session is still logged in."""
        if api_client is None:
            return {"status": "ok", "logged_in": None}
        try:
            connection = await api_client.check_connection()
        except ApiError as exc:
            return {"status": "error", "message": str(exc)}
        return {"status": "ok", "logged_in": bool(connection.get("loggedIn"))}

    @app.post("/api/chat", response_model=ChatResponse)
    async def chat(request: ChatRequest) -> ChatResponse:
        """Purpose: Send one user message through the dispatcher.
        Inputs/Outputs: Input is ChatRequest; output is ChatResponse with the
            assistant message, conversation state and navigation target.
        Side Effects / State: Mutates the dispatcher transcript; may change the cart.
        Dependencies: ConversationDispatcher.send and ScreenNavigator.
        Failure Modes: Blank text -> 400; concurrent send -> 409.
        If Removed: Core chat functionality is unavailable.
        Testing Notes: Send a message and verify the response schema.
        """
        # Transport failures are already folded into the fallback message.
        try:
            result = await dispatcher.send(request.message)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except SendInProgressError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

        state = dispatcher.state
        return ChatResponse(
            message=result.message,
            conversation_id=state.id,
            title=state.title,
            status=state.status,
            phase=state.phase.value,
            navigate_to=navigator.pop(),
            cart_revision=dispatcher.cart_revision,
            trace=result.trace,
        )

    @app.get("/api/chat", response_model=TranscriptResponse)
    async def current_transcript() -> TranscriptResponse:
        return _transcript(dispatcher)

    @app.post("/api/chat/new", response_model=TranscriptResponse)
    async def new_conversation() -> TranscriptResponse:
        dispatcher.start_new()
        return _transcript(dispatcher)

    @app.get("/api/conversations", response_model=List[ConversationSummary])
    async def list_conversations() -> List[ConversationSummary]:
        """Return conversation summaries for the history sidebar."""
        try:
            conversations = await dispatcher.list_conversations()
        except ApiError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return [
            ConversationSummary(id=c.id, title=c.title, status=c.status, created_at=c.created_at)
            for c in conversations
        ]

    @app.post("/api/conversations/{conversation_id}/load", response_model=TranscriptResponse)
    async def load_conversation(conversation_id: str) -> TranscriptResponse:
        """Replace the current transcript with a stored conversation."""
        try:
            await dispatcher.load_by_id(conversation_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=f"conversation {conversation_id} not found") from exc
        except ApiError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return _transcript(dispatcher)

    @app.post("/api/catalog/refresh")
    async def refresh_catalog() -> Dict[str, Any]:
        refreshed = await dispatcher.refresh_catalog()
        return {"refreshed": refreshed, "products": len(dispatcher.catalog)}

    return app


app = create_app()
