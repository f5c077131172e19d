"""
json_extract.py: Pull the JSON object out of a free-text model reply.

Text-tier prompts ask for "JSON only", but replies still arrive wrapped in
```json fences or with a sentence of prose in front. The first balanced
object that decodes is the payload.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict

from .errors import MalformedResponse

_OPEN_FENCE_RE = re.compile(r"\A\s*```(?:json)?[ \t]*\n?", re.IGNORECASE)
_CLOSE_FENCE_RE = re.compile(r"\n?[ \t]*```\s*\Z")


def strip_code_fences(text: str) -> str:
    """
    Remove the fence wrapping the whole reply, keeping whatever it wrapped.
    Backticks inside the payload, such as in a string value, are left alone.
    """
    text = _OPEN_FENCE_RE.sub("", text, count=1)
    return _CLOSE_FENCE_RE.sub("", text, count=1).strip()


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Return the first balanced JSON object found in text.

    Raises:
        MalformedResponse: text is empty or holds no decodable object.
    """
    if not text:
        raise MalformedResponse("Empty response from model")

    cleaned = strip_code_fences(text)
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", cleaned):
        try:
            obj, _ = decoder.raw_decode(cleaned, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj

    raise MalformedResponse("No JSON object found in model response")
