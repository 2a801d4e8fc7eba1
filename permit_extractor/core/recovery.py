"""Recovery parser for truncated or malformed model output.

Extraction passes ask for large JSON arrays ("obligations": [...]). When the
model hits its output limit the response stops mid-object, and a plain
``json.loads`` throws away every obligation that was complete. ``recover``
keeps them.

Algorithm:
1. Strip markdown code fences and try a direct parse.
2. Find the named array field (``"obligations": [``, or a bare top-level
   ``[``) and walk the text one character at a time, tracking string state,
   escapes and brace depth. Every top-level object that closes is parsed on
   its own; objects that still fail to parse are skipped.
3. Stop at the array's closing bracket or at the end of the text.

``recover`` never raises. The worst case is an empty list flagged
``failed=True``.

Items only ever come from complete objects. ``json_repair`` is used for one
thing: salvaging scalar top-level fields (``estimated_coverage``, ``gaps``,
``metadata``) of a truncated document so the verification pass keeps its
coverage figure.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from json_repair import repair_json

logger = logging.getLogger(__name__)

RECOVERED_CONFIDENCE = 0.7
"""Confidence hint when objects were salvaged from a broken response."""

MISSING_FIELD_CONFIDENCE = 0.5
"""Confidence hint when the array field could not be located."""

FAILED_CONFIDENCE = 0.3
"""Confidence hint when nothing could be salvaged."""

_FENCE_OPEN = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```\s*$")


@dataclass
class RecoveryResult:
    """Outcome of ``recover``.

    Attributes:
        items: Complete objects from the requested array.
        recovered: True when the direct parse failed and the scanner ran.
        failed: True when the scanner found nothing usable.
        confidence_hint: Suggested pass confidence, None when the model's
                         own metadata should be trusted.
        document: The parsed top-level object (direct parse) or the
                  best-effort salvage of its other fields (recovery).
    """

    items: list[Any] = field(default_factory=list)
    recovered: bool = False
    failed: bool = False
    confidence_hint: float | None = None
    document: dict[str, Any] = field(default_factory=dict)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` wrapper if present."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = _FENCE_OPEN.sub("", stripped, count=1)
        stripped = _FENCE_CLOSE.sub("", stripped, count=1)
    return stripped.strip()


def recover(raw_text: str | None, array_field: str = "obligations") -> RecoveryResult:
    """Extract as many complete array elements as possible from model output.

    Args:
        raw_text: Raw response content. Any value is accepted.
        array_field: Name of the array holding the items.

    Returns:
        RecoveryResult. Never raises.
    """
    try:
        return _recover(raw_text, array_field)
    except Exception as e:  # pragma: no cover
        logger.error("Recovery parser failed unexpectedly: %s", e)
        return RecoveryResult(recovered=True, failed=True, confidence_hint=FAILED_CONFIDENCE)


def _recover(raw_text: str | None, array_field: str) -> RecoveryResult:
    text = strip_code_fences(raw_text) if isinstance(raw_text, str) else ""
    if not text:
        return RecoveryResult(recovered=True, failed=True, confidence_hint=FAILED_CONFIDENCE)

    parsed, ok = _direct_parse(text)
    if ok:
        return _from_document(parsed, array_field)

    logger.warning("JSON parse failed for '%s', attempting recovery", array_field)

    start = _find_array_start(text, array_field)
    if start is None:
        logger.warning("Recovery: array field '%s' not found", array_field)
        return RecoveryResult(
            recovered=True,
            failed=True,
            confidence_hint=MISSING_FIELD_CONFIDENCE,
            document=_salvage_document(text, array_field),
        )

    items = scan_array_objects(text, start)
    document = _salvage_document(text, array_field)
    if not items:
        logger.warning("Recovery: no complete objects in '%s'", array_field)
        return RecoveryResult(
            recovered=True, failed=True, confidence_hint=FAILED_CONFIDENCE, document=document,
        )

    logger.info("Recovery: salvaged %d objects from '%s'", len(items), array_field)
    return RecoveryResult(
        items=items, recovered=True, confidence_hint=RECOVERED_CONFIDENCE, document=document,
    )


def _direct_parse(text: str) -> tuple[Any, bool]:
    try:
        return json.loads(text), True
    except (json.JSONDecodeError, ValueError, RecursionError):
        return None, False


def _from_document(parsed: Any, array_field: str) -> RecoveryResult:
    """Result for output that parsed cleanly."""
    if isinstance(parsed, list):
        return RecoveryResult(items=parsed)
    if not isinstance(parsed, dict):
        return RecoveryResult()

    items = parsed.get(array_field)
    hint = None
    metadata = parsed.get("metadata")
    if isinstance(metadata, dict):
        value = metadata.get("extraction_confidence")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            hint = float(value)

    return RecoveryResult(
        items=items if isinstance(items, list) else [],
        confidence_hint=hint,
        document=parsed,
    )


def _find_array_start(text: str, array_field: str) -> int | None:
    """Index of the '[' that opens the array, or None."""
    match = re.search(r'"' + re.escape(array_field) + r'"\s*:\s*\[', text)
    if match:
        return match.end() - 1
    if text.lstrip().startswith("["):
        return text.index("[")
    return None


def scan_array_objects(text: str, start: int) -> list[Any]:
    """Collect every complete top-level object of the array opened at ``start``.

    ``text[start]`` must be '['. Walks forward tracking:
    - in_string / escape: braces inside string literals do not count
    - depth: brace nesting relative to the array

    Each object that returns to depth 0 is parsed in isolation; one that
    fails is skipped and scanning continues with the next. Scanning stops at
    the array's own ']' or at the end of the text (truncation).
    """
    items: list[Any] = []
    depth = 0
    in_string = False
    escape = False
    obj_start: int | None = None

    for i in range(start + 1, len(text)):
        ch = text[i]

        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            if depth == 0:
                obj_start = i
            depth += 1
        elif ch == "}":
            if depth == 0:
                continue  # stray brace between elements
            depth -= 1
            if depth == 0 and obj_start is not None:
                candidate = text[obj_start:i + 1]
                obj_start = None
                try:
                    items.append(json.loads(candidate))
                except (json.JSONDecodeError, ValueError, RecursionError):
                    logger.debug("Recovery: skipped unparseable object (%d chars)", len(candidate))
        elif ch == "]" and depth == 0:
            break

    return items


def _salvage_document(text: str, array_field: str) -> dict[str, Any]:
    """Best-effort top-level fields of a broken document, minus the array."""
    try:
        repaired = repair_json(text, return_objects=True)
    except Exception as e:
        logger.debug("json_repair could not salvage document: %s", e)
        return {}
    if not isinstance(repaired, dict):
        return {}
    return {k: v for k, v in repaired.items() if k != array_field}
