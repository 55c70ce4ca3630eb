from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .catalog import parse_products
from .config import Settings
from .models import CartAction, CartLine, CatalogProduct, Conversation, ProductId, SendTurnResult

logger = logging.getLogger("storefront.api")


class ApiError(RuntimeError):
    """Opaque failure of a call to the storefront API."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorefrontApiClient:
    """Async client for the storefront chat, cart and product endpoints."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        """Purpose: Create or adopt an httpx.AsyncClient bound to the API URL.
        Inputs/Outputs: Inputs are Settings and an optional pre-built client; no
            return value.
        Side Effects / State: Owns the client unless one was injected.
        Dependencies: httpx.AsyncClient; cookies carry the login session.
        Failure Modes: None at init; calls raise ApiError.
        If Removed: The dispatcher has no transport for send/load/cart calls.
        Testing Notes: Inject a client built on httpx.MockTransport.
        """
        # Build a shared client so the session cookie persists across calls.
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=httpx.Timeout(settings.request_timeout),
        )

    async def __aenter__(self) -> "StorefrontApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        """Purpose: Issue one request and decode its JSON body.
        Inputs/Outputs: Inputs are method, path and optional JSON body; output is
            the decoded JSON value (None for empty bodies).
        Side Effects / State: Network I/O.
        Dependencies: httpx.AsyncClient.request.
        Failure Modes: Transport errors, non-2xx statuses and undecodable bodies
            all raise ApiError.
        If Removed: Every endpoint would repeat its own error mapping.
        Testing Notes: 500 responses and connect errors both map to ApiError.
        """
        try:
            response = await self._client.request(method, path, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("api %s %s failed status=%d", method, path, status)
            raise ApiError(f"{method} {path} returned {status}", status_code=status) from exc
        except httpx.HTTPError as exc:
            logger.warning("api %s %s transport error=%s", method, path, exc)
            raise ApiError(f"{method} {path} failed: {exc}") from exc

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(f"{method} {path} returned a non-JSON body", response.status_code) from exc

    async def send_turn(self, conversation_id: Optional[ProductId], text: str) -> SendTurnResult:
        """Send one user turn; a new conversation is created when id is None."""
        payload = await self._request("POST", "/api/chat", json={"id": conversation_id, "message": {"text": text}})
        try:
            return SendTurnResult.model_validate(payload)
        except ValidationError as exc:
            raise ApiError("chat reply envelope is malformed") from exc

    async def load_conversations(self) -> List[Conversation]:
        """Fetch all persisted conversations with their stored turns."""
        payload = await self._request("GET", "/api/chat")
        if not isinstance(payload, list):
            raise ApiError("conversation list is not a list")
        try:
            return [Conversation.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise ApiError("conversation list is malformed") from exc

    async def mutate_cart(self, line: CartLine, action: CartAction) -> Any:
        """Purpose: Add or remove one cart line.
        Inputs/Outputs: Inputs are a CartLine and "add"/"remove"; output is the
            decoded server reply.
        Side Effects / State: Changes the remote cart.
        Dependencies: _request.
        Failure Modes: Raises ApiError; the executor records it per line.
        If Removed: Chat-driven cart changes are impossible.
        Testing Notes: add sends selectedPrice, remove sends productId.
        """
        # The cart endpoint keys adds by price id and removals by product id.
        body: Dict[str, Any] = {"action": action, "quantity": line.quantity}
        if action == "add":
            body["selectedPrice"] = line.id
        else:
            body["productId"] = line.id
        return await self._request("POST", "/api/cart", json=body)

    async def list_products(self) -> List[CatalogProduct]:
        payload = await self._request("GET", "/api/products")
        return parse_products(payload)

    async def check_connection(self) -> Dict[str, Any]:
        payload = await self._request("GET", "/api/connection")
        return payload if isinstance(payload, dict) else {"loggedIn": False}
