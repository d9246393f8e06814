"""Redaction module to mask secrets in outputs and logs."""
import re
from typing import Any, Dict

REDACTED = "[REDACTED]"

# Cookies that authenticate or identify a visitor
SECRET_COOKIES = ("_m_h5_tk", "_m_h5_tk_enc", "_tb_token_", "cookie2", "unb", "sgcookie", "cna", "t")


def redact_string(text: str) -> str:
    """Redact secrets from a string."""
    if not text:
        return text

    cookie_names = "|".join(re.escape(name) for name in SECRET_COOKIES)
    patterns = [
        (rf'(?<![\w-])({cookie_names})=([^;,\s]+)', rf'\1={REDACTED}'),
        (r'bot\d+:[\w-]+', f'bot{REDACTED}'),
        (r'([?&]sign=)[0-9a-f]{32}', rf'\1{REDACTED}'),
    ]

    result = text
    for pattern, replacement in patterns:
        result = re.sub(pattern, replacement, result)

    return result


def redact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively redact secrets from a dictionary."""
    if not isinstance(data, dict):
        return data

    redacted = {}
    for key, value in data.items():
        name = str(key)
        if name in SECRET_COOKIES or name.lower() in ("cookie", "cookies_header", "bot_token", "sign"):
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact_dict(value)
        elif isinstance(value, list):
            redacted[key] = [redact_json(item) for item in value]
        elif isinstance(value, str):
            redacted[key] = redact_string(value)
        else:
            redacted[key] = value

    return redacted


def redact_json(data: Any) -> Any:
    """Redact secrets from JSON-serializable data."""
    if isinstance(data, dict):
        return redact_dict(data)
    elif isinstance(data, list):
        return [redact_json(item) for item in data]
    elif isinstance(data, str):
        return redact_string(data)
    else:
        return data
