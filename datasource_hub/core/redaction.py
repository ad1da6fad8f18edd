"""
Helpers that keep credentials out of logs and error messages.
"""

import re
from typing import Any, Dict, Mapping, Optional

REDACTED = "***"

_SECRET_KEY_PARTS = ("password", "secret", "token", "credential", "private_key", "access_key", "api_key")
_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.\-]*://)(?P<user>[^:/@\s]+):(?P<password>[^@\s]+)@")
_KEY_VALUE_SECRETS = re.compile(
    r"(?P<key>password|pwd|secret|token|secretaccesskey|secret_access_key)(?P<sep>\s*[=:]\s*)(?P<value>[^\s;,'\"]+)",
    re.IGNORECASE,
)


def is_secret_key(key: str, secret_keys: Optional[set] = None) -> bool:
    """Decide whether a config key holds a credential."""
    if secret_keys and key in secret_keys:
        return True
    lowered = key.lower().replace("-", "_")
    compact = lowered.replace("_", "")
    return any(part in lowered or part.replace("_", "") in compact for part in _SECRET_KEY_PARTS)


def redact_config(config: Mapping[str, Any], secret_keys: Optional[set] = None) -> Dict[str, Any]:
    """Return a copy of ``config`` safe to log."""
    redacted: Dict[str, Any] = {}
    for key, value in config.items():
        if value is not None and is_secret_key(str(key), secret_keys):
            redacted[key] = REDACTED
        elif isinstance(value, str):
            redacted[key] = scrub_message(value)
        else:
            redacted[key] = value
    return redacted


def scrub_message(message: str) -> str:
    """Remove inline credentials (URL userinfo, key=value secrets) from text."""
    cleaned = _URL_CREDENTIALS.sub(lambda m: f"{m.group('scheme')}{m.group('user')}:{REDACTED}@", message)
    return _KEY_VALUE_SECRETS.sub(lambda m: f"{m.group('key')}{m.group('sep')}{REDACTED}", cleaned)


def preview_query(query: Any, limit: int = 200) -> str:
    """Truncated, credential-free rendering of a query for diagnostics."""
    text = query if isinstance(query, str) else str(query)
    text = scrub_message(" ".join(text.split()))
    if len(text) > limit:
        return text[:limit] + "..."
    return text
