"""Assistant reply normalization.

The chat backend answers either with an object shaped like an assistant event
or with the same object JSON-encoded into a string. Everything downstream works
on the closed ``AssistantEvent`` union produced here.

Wire keys:
    event        "message" | "suggest" | "do"
    message      text shown in the chat bubble
    productList  list of {id, quantity?, title?}
    action       "add to cart" | "remove from cart" | "go to page" | other
    page         navigation target for "go to page"
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from pydantic import ValidationError

from .models import AssistantEvent, DoEvent, MessageEvent, ProductRef, SuggestEvent
from .utils import loads_json_object, normalize_label

logger = logging.getLogger("storefront.normalizer")


def normalize_reply(raw: Any) -> AssistantEvent:
    """Purpose: Convert a raw assistant reply into a typed AssistantEvent.
    Inputs/Outputs: Input is a mapping, a JSON string, or any other value;
        output is a MessageEvent, SuggestEvent or DoEvent.
    Side Effects / State: Emits debug logs on decode fallback.
    Dependencies: Uses loads_json_object and event_from_payload.
    Failure Modes: None; undecodable input degrades to a MessageEvent.
    If Removed: Dispatcher and transcript loading cannot classify replies.
    Testing Notes: Object and JSON-string forms of the same reply must match.
    """
    # Structured replies are trusted directly; strings go through a JSON decode.
    if isinstance(raw, Mapping):
        return event_from_payload(raw)
    if isinstance(raw, str):
        payload = loads_json_object(raw)
        if payload is None:
            logger.debug("reply is not a JSON object, using raw text length=%d", len(raw))
            return MessageEvent(text=raw)
        return event_from_payload(payload)
    if raw is None:
        return MessageEvent(text="")
    return MessageEvent(text=str(raw))


def event_from_payload(payload: Mapping[str, Any]) -> AssistantEvent:
    """Build an event from an already-decoded reply object."""
    kind = normalize_label(payload.get("event"))
    text = _text_of(payload.get("message"))

    if kind == "suggest":
        return SuggestEvent(text=text, product_refs=parse_product_refs(payload.get("productList")) or [])
    if kind == "do":
        page = payload.get("page")
        return DoEvent(
            text=text,
            action=payload.get("action") if isinstance(payload.get("action"), str) else "",
            product_refs=parse_product_refs(payload.get("productList")),
            target_page=page if isinstance(page, str) and page else None,
        )
    if kind != "message":
        logger.debug("unrecognized event tag=%r, treating as message", payload.get("event"))
    return MessageEvent(text=text)


def parse_product_refs(value: Any) -> Optional[List[ProductRef]]:
    """Parse a productList value; entries without a usable id are skipped."""
    if value is None:
        return None
    if not isinstance(value, list):
        logger.debug("productList is not a list: %r", type(value).__name__)
        return None
    refs: List[ProductRef] = []
    for entry in value:
        if not isinstance(entry, Mapping) or entry.get("id") is None:
            logger.debug("skipping product entry without id: %r", entry)
            continue
        try:
            refs.append(ProductRef.model_validate(dict(entry)))
        except ValidationError:
            # A bad quantity or title should not lose the id.
            refs.append(ProductRef(id=_coerce_id(entry["id"])))
    return refs


def _coerce_id(value: Any):
    if isinstance(value, (int, str)) and not isinstance(value, bool):
        return value
    return str(value)


def _text_of(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)
