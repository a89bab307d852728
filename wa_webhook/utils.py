"""
Utility functions for the webhook service.
"""

import hmac
import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional, Union

logger = logging.getLogger(__name__)

GROUP_JID_SUFFIX = "@g.us"
SIGNATURE_PREFIX = "sha256="

# Epoch values above this are treated as milliseconds
_EPOCH_MILLIS_THRESHOLD = 10**12


def verify_hmac_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify HMAC-SHA256 signature.

    Args:
        body: Raw request body bytes, exactly as received
        signature: Hex-encoded signature from the signature header,
            optionally prefixed with "sha256=" (any case)
        secret: WEBHOOK_SECRET

    Returns:
        True if signature is valid, False otherwise (including when the
        header is missing or not valid hex)
    """
    logger.debug(f"Verifying HMAC signature over {len(body)} bytes")

    received = (signature or "").strip()
    if received[:len(SIGNATURE_PREFIX)].lower() == SIGNATURE_PREFIX:
        received = received[len(SIGNATURE_PREFIX):].strip()

    try:
        received_digest = bytes.fromhex(received)
    except ValueError:
        logger.info("HMAC signature verification: malformed header")
        return False

    expected_digest = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).digest()

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(expected_digest, received_digest)
    logger.info(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


def is_group_jid(jid: Optional[str]) -> bool:
    """Return True if the jid addresses a group chat."""
    return bool(jid) and jid.endswith(GROUP_JID_SUFFIX)


def utc_now_iso() -> str:
    """Current server time as ISO-8601 UTC with Z suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def normalize_timestamp(value: Union[str, int, float, None]) -> Optional[str]:
    """
    Normalize a provider timestamp to ISO-8601 UTC with Z suffix.

    Accepts ISO-8601 strings (with or without offset) and Unix epoch values
    in seconds or milliseconds, either as numbers or numeric strings.
    Returns None when the value is empty or cannot be interpreted.
    """
    if value is None or value == "":
        return None

    if isinstance(value, str):
        stripped = value.strip()
        try:
            value = float(stripped)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(stripped.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Unparseable timestamp: {value!r}")
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.warning(f"Unsupported timestamp type: {type(value).__name__}")
        return None

    seconds = float(value)
    if seconds > _EPOCH_MILLIS_THRESHOLD:
        seconds = seconds / 1000
    try:
        parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning(f"Timestamp out of range: {value!r}")
        return None
    return parsed.strftime("%Y-%m-%dT%H:%M:%SZ")
