"""Redaction of credentials in scenario documents and log output."""
import re
from typing import List, Pattern

SENSITIVE_PATTERNS: List[Pattern] = [
    re.compile(r'mongodb(\+srv)?://[^:/@\s]+:[^@\s]+@', re.IGNORECASE),
    re.compile(r'(password|passwd|pwd|secret|token)\s*[:=]\s*[\'"]?[\w\-/+=]+[\'"]?', re.IGNORECASE),
    re.compile(r'(secretAccessKey|sessionToken|clientSecret|privateKey)\s*[:=]\s*[\'"]?[\w\-/+=]+[\'"]?', re.IGNORECASE),
    re.compile(r'AKIA[A-Z0-9]{16}'),
    re.compile(r'bearer\s+[\w\-_.~+/]+=*', re.IGNORECASE),
]

REDACTED = '[REDACTED]'

SENSITIVE_KEYS = [
    'password', 'passwd', 'pwd', 'secret', 'token', 'secretaccesskey',
    'sessiontoken', 'clientsecret', 'privatekey', 'private_key', 'key',
    'authorization', 'credential',
]


def sanitize(message: str) -> str:
    """Remove credentials from a message."""
    if not message:
        return message

    result = message
    for pattern in SENSITIVE_PATTERNS:
        result = pattern.sub(REDACTED, result)

    return result


def sanitize_document(data: dict, sensitive_keys: List[str] = None) -> dict:
    """Recursively redact sensitive values in a scenario sub-document.

    Used on entity specs (``kmsProviders``, ``uriOptions``) before they are
    rendered into assertion context or log lines.
    """
    keys_lower = [k.lower() for k in (sensitive_keys or SENSITIVE_KEYS)]

    def _sanitize_value(key, value, key_is_sensitive: bool = False):
        key_lower = key.lower() if isinstance(key, str) else ''
        is_sensitive_key = key_lower in keys_lower

        if isinstance(value, dict):
            return {k: _sanitize_value(k, v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_sanitize_value('', item, is_sensitive_key) for item in value]
        elif is_sensitive_key or key_is_sensitive:
            return REDACTED
        elif isinstance(value, str):
            return sanitize(value)

        return value

    return {k: _sanitize_value(k, v) for k, v in data.items()}


class SecureLogger:
    """Logger wrapper that sanitizes all output."""

    def __init__(self, logger):
        self._logger = logger

    def _sanitize_args(self, args):
        return tuple(sanitize(arg) if isinstance(arg, str) else arg for arg in args)

    def debug(self, msg, *args, **kwargs):
        self._logger.debug(sanitize(msg), *self._sanitize_args(args), **kwargs)

    def info(self, msg, *args, **kwargs):
        self._logger.info(sanitize(msg), *self._sanitize_args(args), **kwargs)

    def warning(self, msg, *args, **kwargs):
        self._logger.warning(sanitize(msg), *self._sanitize_args(args), **kwargs)

    def error(self, msg, *args, **kwargs):
        self._logger.error(sanitize(msg), *self._sanitize_args(args), **kwargs)

    def exception(self, msg, *args, **kwargs):
        self._logger.exception(sanitize(msg), *self._sanitize_args(args), **kwargs)
