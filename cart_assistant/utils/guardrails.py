"""Guardrails for inbound chat messages."""

import re
from typing import NamedTuple, Optional

from cart_assistant.analytics.logger import logger
from cart_assistant.utils.exceptions import ValidationError


class SanitizedInput(NamedTuple):
    ok: bool
    message: str
    reason: Optional[str] = None


class InputSanitizer:
    """Best-effort cleanup and prompt-injection screening.

    Control characters are stripped and the message is cut to
    ``MAX_MESSAGE_LENGTH`` code points. Messages containing a known
    injection phrase are rejected outright rather than edited. This is a
    heuristic filter; it does not make prompt injection impossible.
    """

    CONTROL_CHARS = re.compile(r"[\x00-\x1F\x7F]")

    INJECTION_PATTERNS = [
        r"ignore\s+previous\s+instructions",
        r"disregard\s+all\s+prior",
        r"system\s+prompt",
        r"reveal\s+instructions",
    ]

    MAX_MESSAGE_LENGTH = 500

    def __init__(self, max_length: int = MAX_MESSAGE_LENGTH):
        self.max_length = max_length
        self.injection_patterns = [
            re.compile(pattern, re.IGNORECASE) for pattern in self.INJECTION_PATTERNS
        ]

    def check(self, raw: Optional[str]) -> SanitizedInput:
        """Clean ``raw`` and report whether it may be forwarded to the model."""
        if not isinstance(raw, str):
            return SanitizedInput(False, "", "not_a_string")

        cleaned = self.CONTROL_CHARS.sub("", raw)
        # str slicing counts code points, not bytes
        cleaned = cleaned[: self.max_length].strip()

        if not cleaned:
            return SanitizedInput(False, "", "empty")

        for pattern in self.injection_patterns:
            if pattern.search(cleaned):
                logger.warning(f"Prompt injection pattern matched: {pattern.pattern}")
                return SanitizedInput(False, cleaned, "prompt_injection")

        return SanitizedInput(True, cleaned)

    def sanitize(self, raw: Optional[str]) -> str:
        """Return the cleaned message or raise ValidationError."""
        result = self.check(raw)
        if not result.ok:
            raise ValidationError("Invalid message", reason=result.reason)
        return result.message
