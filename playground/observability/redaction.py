from __future__ import annotations

import re
from typing import Any

_SENSITIVE_KEYWORDS = ("authorization", "access_token", "accesstoken", "api_key", "apikey", "token", "secret", "cookie")
_BEARER_PATTERN = re.compile(r"(?i)bearer\s+[a-z0-9_\-\.]+")
_HF_TOKEN_PATTERN = re.compile(r"\bhf_[A-Za-z0-9]{8,}\b")


def _is_sensitive_key(key: str) -> bool:
    normalized = key.lower().replace("-", "_")
    return any(word in normalized for word in _SENSITIVE_KEYWORDS)


def _redact_string(key: str, value: str) -> str:
    if _is_sensitive_key(key):
        return "<redacted>"
    value = _BEARER_PATTERN.sub("Bearer <redacted>", value)
    return _HF_TOKEN_PATTERN.sub("hf_<redacted>", value)


def redact(value: Any, key: str = "") -> Any:
    if isinstance(value, dict):
        return {k: redact(v, str(k)) for k, v in value.items()}
    if isinstance(value, list):
        return [redact(item, key) for item in value]
    if isinstance(value, str):
        return _redact_string(key, value)
    return value
