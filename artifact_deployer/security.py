"""Secret masking helpers for log output."""

from __future__ import annotations

import re
import threading
from typing import Final

POTENTIAL_SECRET_PATTERNS: tuple[tuple[str, str], ...] = (
    ("github_token", r"gh[pousr]_[A-Za-z0-9]{20,}"),
    ("npm_token", r"npm_[A-Za-z0-9]{20,}"),
    ("jwt_token", r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"),
    ("bearer_token", r"(?i)bearer\s+[A-Za-z0-9._~+/=-]{16,}"),
)

SENSITIVE_KEY_PATTERN: Final[str] = (
    r"[A-Za-z0-9_.-]*(?:token|secret|password|passphrase|_authToken)[A-Za-z0-9_.-]*"
)

_SENSITIVE_INLINE_VALUE_PATTERN: Final[re.Pattern[str]] = re.compile(
    rf"(?i)(\b{SENSITIVE_KEY_PATTERN}\b)(\s*[:=]\s*)([^\s,;&]+)"
)
_BASIC_AUTH_HEADER_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)(authorization\s*:\s*(?:basic|token)\s+)[A-Za-z0-9+/=._-]+"
)
_URL_CREDENTIALS_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)(https?://[^:\s/@]+:)[^@\s/]+@"
)

MASK: Final[str] = "***"


class SecretMask:
    """Registry of literal secret values that must never reach a log sink."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: set[str] = set()

    def register(self, value: str) -> None:
        """Add a secret; empty values are ignored."""
        if not value:
            return
        with self._lock:
            self._values.add(value)

    def clear(self) -> None:
        """Forget all registered secrets."""
        with self._lock:
            self._values.clear()

    def apply(self, text: str) -> str:
        """Replace every registered secret in text with the mask."""
        with self._lock:
            # Longest first so a secret containing another is masked whole.
            values = sorted(self._values, key=len, reverse=True)
        for value in values:
            text = text.replace(value, MASK)
        return text


SECRETS = SecretMask()


def register_secret(value: str) -> None:
    """Register a secret with the process-wide mask."""
    SECRETS.register(value)


def find_potential_secrets(text: str) -> list[str]:
    """Return labels for secret-like substrings found in text."""
    findings: list[str] = []
    for label, pattern in POTENTIAL_SECRET_PATTERNS:
        if re.search(pattern, text):
            findings.append(label)
    return findings


def redact_sensitive_text(text: str, mask: SecretMask | None = None) -> str:
    """Replace registered secrets and secret-like values with placeholders."""
    redacted = (mask or SECRETS).apply(text)
    for label, pattern in POTENTIAL_SECRET_PATTERNS:
        redacted = re.sub(pattern, f"[REDACTED:{label}]", redacted)
    redacted = _SENSITIVE_INLINE_VALUE_PATTERN.sub(r"\1\2[REDACTED:value]", redacted)
    redacted = _BASIC_AUTH_HEADER_PATTERN.sub(r"\1[REDACTED:value]", redacted)
    redacted = _URL_CREDENTIALS_PATTERN.sub(r"\1[REDACTED:value]@", redacted)
    return redacted
