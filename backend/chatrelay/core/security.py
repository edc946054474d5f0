from __future__ import annotations

import re

SECRET_PATTERN = re.compile(r"(sk-[A-Za-z0-9]{6,})")
URL_CREDENTIALS_PATTERN = re.compile(r"(https?://)[^/\s:@]+:[^/\s@]+@")


def redact_secrets(text: str) -> str:
    """Redact API keys and URL credentials from a string."""

    text = SECRET_PATTERN.sub("sk-***", text)
    return URL_CREDENTIALS_PATTERN.sub(r"\1***:***@", text)


def sanitize_text(text: str, max_length: int) -> str:
    """Trim and clamp user-provided text to a safe length."""

    cleaned = text.strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned
