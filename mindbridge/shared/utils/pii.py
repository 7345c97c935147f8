"""PII handling utilities: no raw student identifiers or content in logs.

Every student identifier is hashed before it reaches application logs,
and message text only ever appears as a fingerprint or as a bounded
snippet stored on a crisis alert.
"""
import hashlib
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)


# Salt is loaded from the environment (or Secrets Manager) at startup
_PII_SALT: Optional[str] = None

_WHITESPACE = re.compile(r"\s+")


def configure_pii_salt(salt: str) -> None:
    """Configure the PII hashing salt.

    Must be called during application startup before any PII hashing.

    Args:
        salt: Secret salt value

    Raises:
        ValueError: If salt is empty or too short
    """
    global _PII_SALT
    if not salt or len(salt) < 32:
        logger.critical(
            "PII_SALT_CONFIGURATION_FAILED",
            extra={"reason": "Salt too short or empty", "min_length": 32}
        )
        raise ValueError("PII salt must be at least 32 characters")

    _PII_SALT = salt
    logger.info("PII_SALT_CONFIGURED", extra={"salt_length": len(salt)})


def hash_pii(value: str) -> str:
    """Hash a PII value for safe logging.

    Uses SHA-256 with a secret salt to create a consistent,
    non-reversible hash of student identifiers.

    Args:
        value: The PII value to hash (user ID, email, etc.)

    Returns:
        64-char hex string safe for logging

    Raises:
        RuntimeError: If PII salt has not been configured
    """
    if _PII_SALT is None:
        logger.critical(
            "PII_HASH_FAILED",
            extra={"reason": "Salt not configured", "action": "call configure_pii_salt()"}
        )
        raise RuntimeError("PII salt not configured. Call configure_pii_salt() first.")

    salted = f"{_PII_SALT}{value}"
    return hashlib.sha256(salted.encode("utf-8", errors="surrogatepass")).hexdigest()


def hash_text_for_audit(text: str) -> str:
    """Fingerprint message text without exposing content.

    Also used as a stable stand-in content id for chat messages that
    arrive without one, so repeated submissions still deduplicate.
    Lone surrogates from JSON escapes are hashed, not rejected.
    """
    return hashlib.sha256(text.encode("utf-8", errors="surrogatepass")).hexdigest()


def privacy_snippet(text: str, max_length: int = 200) -> str:
    """Collapse whitespace and truncate content for storage on an alert.

    Args:
        text: Raw content
        max_length: Maximum snippet length including the ellipsis

    Returns:
        Bounded snippet, suffixed with an ellipsis when truncated
    """
    if max_length < 1:
        raise ValueError("max_length must be positive")

    collapsed = _WHITESPACE.sub(" ", text).strip()
    if len(collapsed) <= max_length:
        return collapsed
    if max_length == 1:
        return "…"
    return collapsed[: max_length - 1].rstrip() + "…"
