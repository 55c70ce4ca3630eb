"""Conversation dispatcher for the storefront chat screen.

Role:
    Single entry point per user message. Owns the conversation identity (id,
    title, status) and the append-only transcript, and runs every assistant
    reply through the reply pipeline.

Reply pipeline (one run per successful send):
    Normalize:
        Raw reply (object or JSON string) -> AssistantEvent.
    Conversation Update:
        Copies id/title/status from the reply envelope; status is never guessed.
    Enrichment:
        Fills product ref titles from the catalog index.
    Action:
        Do-events only; cart fan-out or navigation through ActionExecutor.
    Compose:
        Builds the single assistant Message appended to the transcript.

Conversation phases:
    new -> active on the first successful send; needs_human and archived are
    only ever entered from server-reported status.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from .actions import ActionExecutor, ActionOutcome, CartMutator, Navigator
from .catalog import CatalogIndex
from .config import DEFAULT_FALLBACK_MESSAGE, DEFAULT_GREETING
from .enrichment import enrich_product_refs
from .models import (
    AssistantEvent,
    CatalogProduct,
    Conversation,
    ConversationStatus,
    DoEvent,
    Message,
    ProductId,
    ProductRef,
    SendTurnResult,
    SuggestEvent,
)
from .normalizer import normalize_reply
from .pipeline import ReplyPipeline, ReplyStep
from .transcript import decode_transcript, message_from_event

logger = logging.getLogger("storefront.dispatcher")


class ChatBackend(CartMutator, Protocol):
    async def send_turn(self, conversation_id: Optional[ProductId], text: str) -> SendTurnResult:
        ...

    async def load_conversations(self) -> List[Conversation]:
        ...

    async def list_products(self) -> List[CatalogProduct]:
        ...


class SendInProgressError(RuntimeError):
    """Raised when send() is called while another send is pending."""


class ConversationPhase(str, Enum):
    NEW = "new"
    ACTIVE = "active"
    NEEDS_HUMAN = "needs_human"
    ARCHIVED = "archived"


@dataclass
class ConversationState:
    """Identity and server-reported status of the current conversation."""
    id: Optional[ProductId] = None
    title: str = ""
    status: ConversationStatus = "active"

    @property
    def phase(self) -> ConversationPhase:
        if self.id is None:
            return ConversationPhase.NEW
        if self.status == "needs_human":
            return ConversationPhase.NEEDS_HUMAN
        if self.status == "archived":
            return ConversationPhase.ARCHIVED
        return ConversationPhase.ACTIVE


@dataclass
class ReplyContext:
    """Mutable context passed through each reply pipeline step."""
    raw_reply: Any
    envelope: Conversation
    event: Optional[AssistantEvent] = None
    product_refs: Optional[List[ProductRef]] = None
    outcome: Optional[ActionOutcome] = None
    message: Optional[Message] = None
    trace: List[Dict[str, str]] = field(default_factory=list)

    def log(self, step: str, detail: str, status: str = "success") -> None:
        """Append a structured trace entry for the chat screen and debugging."""
        self.trace.append({"step": step, "detail": detail, "status": status})


@dataclass
class SendResult:
    """What one send() produced."""
    message: Message
    delivered: bool
    outcome: Optional[ActionOutcome] = None
    trace: List[Dict[str, str]] = field(default_factory=list)


class ConversationDispatcher:
    def __init__(
        self,
        backend: ChatBackend,
        catalog: Optional[CatalogIndex] = None,
        navigator: Optional[Navigator] = None,
        greeting_text: str = DEFAULT_GREETING,
        fallback_text: str = DEFAULT_FALLBACK_MESSAGE,
        on_cart_changed: Optional[Callable[[], None]] = None,
    ) -> None:
        """Purpose: Initialize the dispatcher, its executor and reply pipeline.
        Inputs/Outputs: Inputs are the chat backend, catalog index, navigator,
            greeting/fallback texts and an optional cart listener; no return value.
        Side Effects / State: Starts in the new phase with a greeting message.
        Dependencies: ActionExecutor, ReplyPipeline, CatalogIndex.
        Failure Modes: None at init.
        If Removed: The chat screen has no state owner.
        Testing Notes: A fresh dispatcher holds exactly one greeting message.
        """
        # Store collaborators and build the ordered reply pipeline.
        self._backend = backend
        self._catalog = catalog if catalog is not None else CatalogIndex()
        self._greeting_text = greeting_text
        self._fallback_text = fallback_text
        self._on_cart_changed = on_cart_changed
        self._executor = ActionExecutor(backend, navigator=navigator, on_cart_changed=self._signal_cart_refresh)
        self._pipeline = ReplyPipeline(
            steps=[
                ReplyStep("normalize", self._step_normalize),
                ReplyStep("conversation_update", self._step_conversation_update),
                ReplyStep("enrichment", self._step_enrichment),
                ReplyStep("action", self._step_action, skip_if=lambda ctx: not isinstance(ctx.event, DoEvent)),
                ReplyStep("compose", self._step_compose),
            ]
        )
        self._state = ConversationState()
        self._messages: List[Message] = []
        self._sending = False
        self._cart_revision = 0
        self.start_new()

    @property
    def state(self) -> ConversationState:
        return ConversationState(id=self._state.id, title=self._state.title, status=self._state.status)

    @property
    def phase(self) -> ConversationPhase:
        return self._state.phase

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def is_sending(self) -> bool:
        return self._sending

    @property
    def cart_revision(self) -> int:
        return self._cart_revision

    @property
    def catalog(self) -> CatalogIndex:
        return self._catalog

    def start_new(self) -> None:
        """Reset to a fresh conversation seeded with the greeting."""
        self._state = ConversationState()
        self._messages = [Message(role="assistant", content=self._greeting_text)]
        logger.info("started new conversation")

    def load(self, conversation: Conversation) -> None:
        """Purpose: Replace the transcript with a persisted conversation.
        Inputs/Outputs: Input is a Conversation snapshot; no return value.
        Side Effects / State: Replaces messages and id/title/status.
        Dependencies: decode_transcript.
        Failure Modes: None; undecodable turns degrade to plain text messages.
        If Removed: Conversation history cannot be reopened.
        Testing Notes: Turn order is preserved and malformed turns survive.
        """
        # Decode first so a snapshot is applied as a whole.
        messages = decode_transcript(conversation.turns)
        self._messages = messages
        self._state = ConversationState(id=conversation.id, title=conversation.title, status=conversation.status)
        logger.info(
            "loaded conversation id=%s status=%s turns=%d", conversation.id, conversation.status, len(messages)
        )

    async def list_conversations(self) -> List[Conversation]:
        return await self._backend.load_conversations()

    async def load_by_id(self, conversation_id: ProductId) -> Conversation:
        """Fetch the conversation list and load the matching one."""
        for conversation in await self._backend.load_conversations():
            if str(conversation.id) == str(conversation_id):
                self.load(conversation)
                return conversation
        raise KeyError(conversation_id)

    async def refresh_catalog(self) -> bool:
        """Reload the catalog index; a failed listing keeps the old index."""
        try:
            products = await self._backend.list_products()
        except Exception:
            logger.warning("catalog refresh failed, keeping %d products", len(self._catalog), exc_info=True)
            return False
        self._catalog.replace(products)
        return True

    async def send(self, text: str) -> SendResult:
        """Purpose: Send one user message and append the assistant's answer.
        Inputs/Outputs: Input is message text; output is a SendResult holding
            the appended assistant Message.
        Side Effects / State: Appends the user message immediately, then one
            assistant message; updates id/title/status from the reply; may run
            cart mutations or navigation.
        Dependencies: ChatBackend.send_turn and the reply pipeline.
        Failure Modes: Blank text raises ValueError; a concurrent send raises
            SendInProgressError. Transport failures append the fallback text
            and leave id/title/status unchanged.
        If Removed: The chat screen cannot talk to the assistant.
        Testing Notes: Fail the backend and check the fallback and state.
        """
        # Reject before touching the transcript so a rejected send leaves no trace.
        if not text or not text.strip():
            raise ValueError("message text is empty")
        if self._sending:
            raise SendInProgressError("a message is already being sent")

        self._sending = True
        try:
            self._messages.append(Message(role="user", content=text))
            conversation_id = self._state.id
            logger.info("conversation=%s sending message length=%d", conversation_id, len(text))
            try:
                reply = await self._backend.send_turn(conversation_id, text)
            except Exception:
                logger.exception("conversation=%s send failed", conversation_id)
                fallback = Message(role="assistant", content=self._fallback_text)
                self._messages.append(fallback)
                return SendResult(message=fallback, delivered=False)

            context = ReplyContext(raw_reply=reply.assistant_reply, envelope=reply.conversation)
            await self._pipeline.run(context)
            self._messages.append(context.message)
            return SendResult(message=context.message, delivered=True, outcome=context.outcome, trace=context.trace)
        finally:
            self._sending = False

    def _step_normalize(self, context: ReplyContext) -> None:
        context.event = normalize_reply(context.raw_reply)
        context.log("normalize", f"event={context.event.kind}")
        logger.info("conversation=%s event=%s", context.envelope.id, context.event.kind)

    def _step_conversation_update(self, context: ReplyContext) -> None:
        envelope = context.envelope
        previous = self._state.status
        self._state = ConversationState(id=envelope.id, title=envelope.title, status=envelope.status)
        if previous != envelope.status:
            logger.info("conversation=%s status %s -> %s", envelope.id, previous, envelope.status)
        context.log("conversation_update", f"status={envelope.status}")

    def _step_enrichment(self, context: ReplyContext) -> None:
        event = context.event
        if isinstance(event, (SuggestEvent, DoEvent)):
            context.product_refs = enrich_product_refs(event.product_refs, self._catalog)
            count = len(context.product_refs or [])
            context.log("enrichment", f"products={count}")

    async def _step_action(self, context: ReplyContext) -> None:
        # Side effects key off the assistant's ids, not the enriched copies.
        outcome = await self._executor.execute(context.event)
        context.outcome = outcome
        status = "success" if outcome.recognized and not outcome.failures else "warning"
        context.log(
            "action",
            f"action={outcome.action} attempted={outcome.attempted} failed={outcome.failed}",
            status=status,
        )

    def _step_compose(self, context: ReplyContext) -> None:
        message = message_from_event(context.event)
        if context.product_refs is not None:
            message = message.model_copy(update={"product_refs": context.product_refs})
        context.message = message

    def _signal_cart_refresh(self) -> None:
        self._cart_revision += 1
        logger.debug("cart revision=%d", self._cart_revision)
        if self._on_cart_changed is not None:
            self._on_cart_changed()
