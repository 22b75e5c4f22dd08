"""Trim and redact raw log records before they are retained."""

from __future__ import annotations

import json
import math
import re
from typing import Any, Dict, List, Optional

from ..utils.logging_utils import get_logger
from .classification import DEFAULT_CLASSIFICATION, FieldClassification

LOGGER = get_logger("redaction.transformer")

_DIGITS = re.compile(r"\d")
_REGEX_LITERALS = re.compile(r"[^\^$.*+?()\[\]{}|\\]")

REGEX_DESCRIPTOR = "$regularExpression"
INT_PLACEHOLDER = 999
FLOAT_PLACEHOLDER = 999.0
_MISSING = object()


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def redact_string(value: str) -> str:
    if len(value) <= 3:
        return "x" * len(value)
    return "xxx"


def redact_int(value: int) -> int:
    # Every digit becomes 9, padded to at least three digits so small values
    # cannot be recovered from their width.
    try:
        digits = str(abs(value))
        redacted = int("9" * max(3, len(digits)))
    except ValueError:
        return INT_PLACEHOLDER
    return -redacted if value < 0 else redacted


def redact_float(value: float) -> float:
    try:
        redacted = float(_DIGITS.sub("9", repr(value)))
    except (ValueError, OverflowError):
        return FLOAT_PLACEHOLDER
    # 1e300 becomes 9e+399, which parses as inf.
    return redacted if math.isfinite(redacted) else FLOAT_PLACEHOLDER


def redact_regex_pattern(pattern: str) -> str:
    return _REGEX_LITERALS.sub("x", pattern)


def _is_regex_descriptor(value: Any) -> bool:
    if not isinstance(value, dict) or len(value) != 1:
        return False
    inner = value.get(REGEX_DESCRIPTOR)
    return isinstance(inner, dict)


class FieldTransformer:
    """Two-stage JSON rewrite: trim always, redact on request.

    Both stages take and return record text. When the text does not parse, or
    either stage fails, the input text is returned unchanged.
    """

    def __init__(self, classification: FieldClassification = DEFAULT_CLASSIFICATION) -> None:
        self.classification = classification

    # ------------------------------------------------------------------
    # Public entry points

    def process(self, text: str, *, redact: bool = False) -> str:
        processed = self.trim(text)
        if redact:
            processed = self.redact(processed)
        return processed

    def trim(self, text: str) -> str:
        try:
            tree = json.loads(text)
            trimmed = self._trim_value(tree, None)
            if trimmed is _MISSING:
                trimmed = {}
            return _dumps(trimmed)
        except (ValueError, TypeError, RecursionError):
            LOGGER.debug("Trim skipped for unparseable record", exc_info=True)
            return text

    def redact(self, text: str) -> str:
        try:
            tree = json.loads(text)
            if isinstance(tree, dict):
                redacted = self._redact_record(tree)
            else:
                redacted = self._redact_value(tree)
            return _dumps(redacted)
        except (ValueError, TypeError, RecursionError):
            LOGGER.debug("Redaction skipped for unparseable record", exc_info=True)
            return text

    def is_truncated(self, text: Optional[str]) -> bool:
        """True when the server already shortened the record (``truncated``/``errMsg``)."""

        if not text:
            return False
        try:
            tree = json.loads(text)
        except ValueError:
            return '"truncated"' in text and '"errMsg"' in text
        return _has_truncation_marker(tree)

    def transform_for(self, redact: bool):
        """Return a single-argument callable suitable for sample selection."""

        def _transform(text: str) -> str:
            return self.process(text, redact=redact)

        return _transform

    # ------------------------------------------------------------------
    # Trim

    def _trim_value(self, value: Any, field: Optional[str]) -> Any:
        cls = self.classification
        if isinstance(value, dict):
            trimmed: Dict[str, Any] = {}
            for name, child in value.items():
                if name in cls.trim:
                    continue
                result = self._trim_value(child, name)
                if result is _MISSING:
                    continue
                trimmed[name] = result
            if not trimmed and field is not None:
                return _MISSING
            return trimmed

        if isinstance(value, list):
            if len(value) > cls.array_limit and field not in cls.preserve_array:
                dropped = len(value) - 1
                return [self._trim_element(value[0], field), f"<truncated {dropped} elements>"]
            return [self._trim_element(item, field) for item in value]

        if isinstance(value, str):
            if len(value) > cls.string_limit and field not in cls.preserve_text:
                return value[: cls.string_limit] + "..."
            return value

        return value

    def _trim_element(self, item: Any, field: Optional[str]) -> Any:
        # Array elements keep their slot even when they trim down to nothing.
        result = self._trim_value(item, field)
        return {} if result is _MISSING else result

    # ------------------------------------------------------------------
    # Redaction

    def _redact_record(self, record: Dict[str, Any]) -> Dict[str, Any]:
        cls = self.classification
        redacted: Dict[str, Any] = {}
        for name, value in record.items():
            if cls.is_query_field(name):
                redacted[name] = self._redact_value(value)
            elif name == cls.attributes_field and isinstance(value, dict):
                redacted[name] = self._redact_attributes(value)
            elif name in cls.preserve:
                redacted[name] = value
            else:
                redacted[name] = self._redact_value(value)
        return redacted

    def _redact_attributes(self, attributes: Dict[str, Any]) -> Dict[str, Any]:
        cls = self.classification
        redacted: Dict[str, Any] = {}
        for name, value in attributes.items():
            if cls.is_query_field(name):
                redacted[name] = self._redact_value(value)
            elif name in cls.preserve:
                redacted[name] = value
            else:
                redacted[name] = self._redact_value(value)
        return redacted

    def _redact_value(self, value: Any) -> Any:
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, int):
            return redact_int(value)
        if isinstance(value, float):
            return redact_float(value)
        if isinstance(value, str):
            return redact_string(value)
        if isinstance(value, list):
            return [self._redact_value(item) for item in value]
        if isinstance(value, dict):
            if _is_regex_descriptor(value):
                return {REGEX_DESCRIPTOR: self._redact_regex(value[REGEX_DESCRIPTOR])}
            return {name: self._redact_value(child) for name, child in value.items()}
        return value

    def _redact_regex(self, descriptor: Dict[str, Any]) -> Dict[str, Any]:
        redacted: Dict[str, Any] = {}
        for name, value in descriptor.items():
            if name == "pattern" and isinstance(value, str):
                redacted[name] = redact_regex_pattern(value)
            elif name == "options":
                redacted[name] = value
            else:
                redacted[name] = self._redact_value(value)
        return redacted


def _has_truncation_marker(value: Any) -> bool:
    if isinstance(value, dict):
        marker = value.get("truncated")
        if isinstance(marker, dict) and _contains_key(marker, "errMsg"):
            return True
        return any(_has_truncation_marker(child) for child in value.values())
    if isinstance(value, list):
        return any(_has_truncation_marker(item) for item in value)
    return False


def _contains_key(value: Any, key: str) -> bool:
    if isinstance(value, dict):
        if key in value:
            return True
        return any(_contains_key(child, key) for child in value.values())
    if isinstance(value, list):
        return any(_contains_key(item, key) for item in value)
    return False

