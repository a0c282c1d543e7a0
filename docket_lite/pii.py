"""
PII masking helpers for logs.
"""

import re
from typing import Any

EMAIL_RE = re.compile(r"([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})")
SENSITIVE_KEYS = ("password", "token", "secret", "authorization")


def mask_email(email: str) -> str:
    if not email or "@" not in email:
        return email
    local, domain = email.split("@", 1)
    return f"{local[:1]}***@{domain}"


def mask_phone(phone: str) -> str:
    if not phone:
        return phone
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


def mask_token(token: str) -> str:
    if not token:
        return token
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def sanitize_for_log(value: Any) -> Any:
    """Recursively mask secrets and emails in a JSON-like structure."""
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            if isinstance(key, str) and _is_sensitive_key(key):
                cleaned[key] = "***"
            elif isinstance(key, str) and "phone" in key.lower() and isinstance(item, str):
                cleaned[key] = mask_phone(item)
            else:
                cleaned[key] = sanitize_for_log(item)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [sanitize_for_log(item) for item in value]
    if isinstance(value, str):
        return EMAIL_RE.sub(lambda m: f"{m.group(1)}***{m.group(3)}", value)
    return value
