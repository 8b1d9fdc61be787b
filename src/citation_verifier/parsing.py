"""Lenient parsing of the decision step's final answer.

Models wrap JSON in prose and code fences, forget fields, and invent status
spellings. We extract the first balanced ``{...}`` block, decode it, and
repair what is missing instead of discarding the answer.
"""

import json
import logging
from typing import Any, Optional

from .exceptions import MalformedDecisionError
from .models import FinalVerdictPayload, Verdict, VerdictStatus

logger = logging.getLogger(__name__)

ANSWER_STATUSES = {
    VerdictStatus.VERIFIED.value,
    VerdictStatus.UNVERIFIED.value,
    VerdictStatus.NEEDS_HUMAN.value,
}
REPAIRED_MESSAGE = "The verifier gave no explanation; review this reference manually."
UNPARSEABLE_MESSAGE = (
    "The verifier's final answer could not be parsed; the raw answer is "
    "attached for manual review."
)


def extract_json_object(text: str) -> Optional[str]:
    """Return the first balanced ``{...}`` block in ``text``.

    Braces inside JSON strings are ignored. If an opening brace is never
    closed the remainder of the text is returned so the caller sees a
    decode error rather than "no answer". Returns None when there is no
    opening brace at all.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return text[start:]


def _normalize_status(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    status = value.strip().lower().replace("_", "-").replace(" ", "-")
    return status if status in ANSWER_STATUSES else None


def repair_payload(data: dict, raw_reference: str) -> tuple[FinalVerdictPayload, bool]:
    """Fill defaults for missing or invalid fields. Returns (payload, repaired)."""
    repaired = False

    status = _normalize_status(data.get("status"))
    if status is None:
        logger.debug("Final answer status %r repaired to needs-human", data.get("status"))
        status = VerdictStatus.NEEDS_HUMAN.value
        repaired = True

    message = data.get("message")
    if not isinstance(message, str) or not message.strip():
        message = REPAIRED_MESSAGE
        repaired = True

    reference = data.get("reference")
    if not isinstance(reference, str) or not reference.strip():
        reference = raw_reference
        repaired = True

    checks = data.get("checks_performed")
    if not isinstance(checks, list):
        checks = []
    checks = [str(c) for c in checks if c]

    payload = FinalVerdictPayload(
        status=status, message=message, reference=reference, checks_performed=checks
    )
    return payload, repaired


def parse_final_verdict(content: str, raw_reference: str) -> Verdict:
    """Turn final decision content into a Verdict.

    Raises MalformedDecisionError when the content holds no JSON object at
    all, i.e. it is not a final answer attempt. A JSON block that cannot be
    decoded becomes a ``needs-human`` verdict carrying the raw content.
    """
    block = extract_json_object(content or "")
    if block is None:
        raise MalformedDecisionError("Final answer contains no JSON object", content)

    try:
        data = json.loads(block)
    except json.JSONDecodeError as e:
        logger.warning("Final answer is not valid JSON: %s", e)
        data = None

    if not isinstance(data, dict):
        return Verdict(
            status=VerdictStatus.NEEDS_HUMAN,
            message=UNPARSEABLE_MESSAGE,
            raw_content=content,
        )

    payload, repaired = repair_payload(data, raw_reference)
    fixed = payload.reference.strip()
    return Verdict(
        status=payload.status,
        message=payload.message,
        fixed_reference=fixed if fixed != raw_reference.strip() else None,
        checks_performed=payload.checks_performed,
        repaired=repaired,
    )
