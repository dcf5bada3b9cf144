import logging
import os
from typing import Any

_CONFIGURED = False

# Chatty at DEBUG; kept at WARNING unless the gateway itself runs at DEBUG.
_THIRD_PARTY_LOGGERS = ("web3", "urllib3", "httpx", "httpcore")


def _resolve_level(level: str | None = None) -> int:
    name = level or os.getenv("LOG_LEVEL")
    if name:
        return getattr(logging, name.upper(), logging.INFO)
    if os.getenv("DEBUG") == "1":
        return logging.DEBUG
    return logging.INFO


def configure_logging(level: str | None = None) -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    resolved = _resolve_level(level)
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if resolved > logging.DEBUG:
        for name in _THIRD_PARTY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    _CONFIGURED = True


def get_logger(name: str | None = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name or "x402_gateway")


# Relayer keys, signatures and raw payment headers are never logged in clear.
_SENSITIVE_KEYS = frozenset({"private_key", "relayer_private_keys", "secret", "signature", "x-payment"})
_SENSITIVE_MARKERS = ("private_key", "private-key", "_secret", "_signature", "x-payment")


def is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    return key_lower in _SENSITIVE_KEYS or any(marker in key_lower for marker in _SENSITIVE_MARKERS)


def redact(value: Any, *, sensitive: bool = False) -> Any:
    """Copy `value` with every string or bytes under a sensitive key masked."""
    match value:
        case dict():
            return {
                key: redact(item, sensitive=sensitive or is_sensitive(str(key)))
                for key, item in value.items()
            }
        case list():
            return [redact(item, sensitive=sensitive) for item in value]
        case tuple():
            return tuple(redact(item, sensitive=sensitive) for item in value)
        case str() if sensitive:
            return f"<redacted:{len(value)} chars>"
        case bytes() | bytearray():
            prefix = "redacted:bytes" if sensitive else "bytes"
            return f"<{prefix}:{len(value)}>"
        case _:
            return value


def log_json(logger: logging.Logger, level: int, message: str, data: Any) -> None:
    if logger.isEnabledFor(level):
        logger.log(level, "%s: %s", message, redact(data))
