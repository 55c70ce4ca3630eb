from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

ProductId = Union[int, str]
Role = Literal["user", "assistant"]
EventKind = Literal["message", "suggest", "do"]
ConversationStatus = Literal["active", "needs_human", "archived"]
CartAction = Literal["add", "remove"]


class ProductRef(BaseModel):
    """Partial product reference emitted by the assistant."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: ProductId
    quantity: Optional[int] = None
    title: Optional[str] = None


class CatalogProduct(BaseModel):
    """Canonical product record owned by the product listing."""
    model_config = ConfigDict(extra="allow")

    id: ProductId
    title: str = ""
    price: Optional[float] = None
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class MessageEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["message"] = "message"
    text: str = ""


class SuggestEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["suggest"] = "suggest"
    text: str = ""
    product_refs: List[ProductRef] = Field(default_factory=list)


class DoEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["do"] = "do"
    text: str = ""
    action: str = ""
    product_refs: Optional[List[ProductRef]] = None
    target_page: Optional[str] = None


AssistantEvent = Union[MessageEvent, SuggestEvent, DoEvent]


class Message(BaseModel):
    """One transcript entry; never mutated after creation."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    event: Optional[EventKind] = None
    product_refs: Optional[List[ProductRef]] = None
    action: Optional[str] = None
    target_page: Optional[str] = None


class PersistedTurn(BaseModel):
    """Stored turn as returned by the chat history endpoint.

    ``content`` is the transport envelope: usually a list of ``{"text": ...}``
    parts, occasionally a bare string.
    """
    model_config = ConfigDict(extra="ignore")

    role: str
    content: Any = None


class Conversation(BaseModel):
    """Conversation snapshot reported by the server."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: ProductId
    title: str = ""
    status: ConversationStatus = "active"
    created_at: Optional[str] = None
    turns: List[PersistedTurn] = Field(default_factory=list, alias="messages")


class SendTurnResult(BaseModel):
    """Envelope returned by the chat endpoint for one user turn."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    assistant_reply: Any = Field(default=None, alias="assistantResponse")
    conversation: Conversation


class CartLine(BaseModel):
    """Single cart mutation request line."""
    id: ProductId
    quantity: int = 1


class ChatRequest(BaseModel):
    """Request payload for the chat facade."""
    message: str


class ChatResponse(BaseModel):
    """Response payload returned by the chat facade after one send."""
    message: Message
    conversation_id: Optional[ProductId] = None
    title: str = ""
    status: ConversationStatus = "active"
    phase: str = "new"
    navigate_to: Optional[str] = None
    cart_revision: int = 0
    trace: List[Dict[str, str]] = Field(default_factory=list)


class TranscriptResponse(BaseModel):
    """Current conversation state with its full transcript."""
    conversation_id: Optional[ProductId] = None
    title: str = ""
    status: ConversationStatus = "active"
    phase: str = "new"
    messages: List[Message] = Field(default_factory=list)


class ConversationSummary(BaseModel):
    """Lightweight conversation summary for a history sidebar."""
    id: ProductId
    title: str
    status: ConversationStatus
    created_at: Optional[str] = None
