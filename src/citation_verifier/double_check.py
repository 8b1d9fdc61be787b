"""High-accuracy mode: have the LLM re-read each parsed reference.

The model compares the parsed fields with the raw citation text. It either
approves the parse or returns corrected references, which may be several
when the raw text turns out to hold more than one citation.
"""

import json
import logging
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from .exceptions import VerifierError
from .models import Reference
from .prompts import DOUBLE_CHECK_PROMPT

logger = logging.getLogger(__name__)

VERIFICATION_FIELDS = {
    "id",
    "raw",
    "status",
    "message",
    "verification_source",
    "fixed_reference",
    "checks_performed",
}
TRAILING_PUNCTUATION = ".,;:!? "


class RawChat(Protocol):
    async def chat_raw(self, prompt: str, system_prompt: str = "") -> str: ...


def _extract_json_array(text: str) -> Optional[list[Any]]:
    start, end = text.find("["), text.rfind("]")
    if start == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, list) else None


def _is_approval(items: list[Any]) -> bool:
    return len(items) == 1 and isinstance(items[0], dict) and items[0].get("ok") is True


async def double_check_reference(reference: Reference, client: RawChat) -> list[Reference]:
    """Return the reference unchanged, or its corrected replacement(s)."""
    parsed = reference.model_dump(
        mode="json", by_alias=True, exclude_none=True, exclude=VERIFICATION_FIELDS
    )
    prompt = DOUBLE_CHECK_PROMPT.format(
        raw=reference.raw, parsed=json.dumps(parsed, indent=2)
    )

    try:
        content = await client.chat_raw(prompt)
    except VerifierError as e:
        logger.warning("ref %s: double check failed, keeping parse: %s", reference.id, e)
        return [reference]

    items = _extract_json_array(content)
    if not items:
        logger.warning("ref %s: double check answer has no JSON array", reference.id)
        return [reference]
    if _is_approval(items):
        return [reference]

    corrected = []
    for n, item in enumerate(i for i in items if isinstance(i, dict) and not i.get("ok")):
        data = dict(item)
        data["id"] = reference.id if n == 0 else f"{reference.id}-{n}"
        if not data.get("raw"):
            data["raw"] = reference.raw
        if isinstance(data.get("title"), str):
            data["title"] = data["title"].rstrip(TRAILING_PUNCTUATION)
        try:
            corrected.append(Reference.model_validate(data))
        except ValidationError as e:
            logger.warning("ref %s: correction rejected: %s", reference.id, e)
            return [reference]

    if not corrected:
        return [reference]
    logger.info("ref %s: corrected into %d reference(s)", reference.id, len(corrected))
    return corrected
