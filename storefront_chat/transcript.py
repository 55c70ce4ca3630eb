from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping

from .models import AssistantEvent, DoEvent, Message, PersistedTurn, SuggestEvent
from .normalizer import normalize_reply

logger = logging.getLogger("storefront.transcript")


def decode_turn_text(content: Any) -> Any:
    """Purpose: Unwrap the transport envelope of a persisted turn.
    Inputs/Outputs: Input is the stored content (list of {"text"} parts, a bare
        string, or a single part mapping); output is the first part's text.
    Side Effects / State: None.
    Dependencies: None; first decode stage used by decode_turn.
    Failure Modes: None; unreadable envelopes yield an empty string.
    If Removed: Stored turns cannot be rendered at all.
    Testing Notes: [{"text": "hi"}] -> "hi"; [] -> ""; "hi" -> "hi".
    """
    # Only the first part carries text; later parts are attachments.
    if isinstance(content, str):
        return content
    if isinstance(content, Mapping):
        return content.get("text", "")
    if isinstance(content, (list, tuple)):
        if not content:
            return ""
        first = content[0]
        if isinstance(first, Mapping):
            # Assistant parts may already hold the decoded event object.
            return first.get("text", "")
        if isinstance(first, str):
            return first
        return ""
    if content is None:
        return ""
    return str(content)


def message_from_event(event: AssistantEvent) -> Message:
    """Purpose: Convert a normalized event into an assistant transcript message.
    Inputs/Outputs: Input is an AssistantEvent; output is a Message carrying the
        event kind, text and any product refs, action and target page.
    Side Effects / State: None.
    Dependencies: Used by decode_turn and the dispatcher's compose step.
    Failure Modes: None.
    If Removed: Live and replayed replies would render differently.
    Testing Notes: A MessageEvent yields no product refs or action.
    """
    # Only the fields each event kind carries are copied over.
    if isinstance(event, DoEvent):
        return Message(
            role="assistant",
            content=event.text,
            event="do",
            product_refs=event.product_refs,
            action=event.action or None,
            target_page=event.target_page,
        )
    if isinstance(event, SuggestEvent):
        return Message(
            role="assistant",
            content=event.text,
            event="suggest",
            product_refs=event.product_refs,
        )
    return Message(role="assistant", content=event.text, event="message")


def decode_turn(turn: PersistedTurn) -> Message:
    """Decode one stored turn; assistant turns go through the normalizer."""
    raw = decode_turn_text(turn.content)
    if turn.role == "assistant":
        return message_from_event(normalize_reply(raw))
    if turn.role != "user":
        logger.debug("unknown turn role=%r, rendering as user text", turn.role)
    if raw is None:
        raw = ""
    text = raw if isinstance(raw, str) else str(raw)
    return Message(role="user", content=text)


def decode_transcript(turns: Iterable[PersistedTurn]) -> List[Message]:
    """Decode persisted turns into display messages, preserving order."""
    return [decode_turn(turn) for turn in turns]
