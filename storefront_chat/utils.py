import json
import re
from typing import Any, Dict, Optional


def normalize_label(text: Any) -> str:
    """Purpose: Normalize free-form tags (event kinds, action names) for matching.
    Inputs/Outputs: Input is any value; output is a lowercase string with
        whitespace collapsed to single spaces.
    Side Effects / State: None; pure function.
    Dependencies: Uses regex; called by the normalizer and the action executor.
    Failure Modes: Returns an empty string for None or non-string input.
    If Removed: "Add to cart " and "add to cart" would dispatch differently.
    Testing Notes: Validate "  Add   To Cart" becomes "add to cart".
    """
    # Lowercase and collapse whitespace so labels compare stably.
    if not isinstance(text, str):
        return ""
    return re.sub(r"\s+", " ", text).strip().lower()


def loads_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Purpose: Strictly decode a JSON object from a string.
    Inputs/Outputs: Input is raw text; output is a dict, or None when the text is
        not valid JSON or decodes to something other than an object.
    Side Effects / State: None; pure function.
    Dependencies: Uses json.loads; called by the normalizer.
    Failure Modes: Returns None on any decode error (including oversized
        integers and deep nesting) and on non-object payloads.
    If Removed: Stringified assistant replies cannot be classified.
    Testing Notes: "not json", "42" and "[1]" all return None.
    """
    # Only whole-string JSON objects count; prose around JSON is plain text.
    if not isinstance(text, str) or not text.strip():
        return None
    try:
        data = json.loads(text)
    except (ValueError, RecursionError):
        # Oversized integers and deep nesting fail outside JSONDecodeError.
        return None
    if not isinstance(data, dict):
        return None
    return data
