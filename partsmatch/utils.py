"""
Utility functions for the PartsMatch API.
"""

import hashlib
import hmac
import logging
import secrets

logger = logging.getLogger(__name__)

PASSWORD_HASH_ITERATIONS = 240_000


def compute_hmac_signature(body: bytes, secret: str) -> str:
    """
    Compute a hex HMAC-SHA256 signature of body.

    Used to sign outbound notification payloads (X-Signature header).
    """
    return hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()


def verify_hmac_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify HMAC-SHA256 signature.

    Receiver-side counterpart of compute_hmac_signature: a service
    consuming match notifications checks the X-Signature header against
    the raw request body with the shared NOTIFICATION_SECRET.

    Args:
        body: Raw body bytes
        signature: Hex-encoded signature
        secret: Shared secret

    Returns:
        True if signature is valid, False otherwise
    """
    expected_signature = compute_hmac_signature(body, secret)

    # Use constant-time comparison to prevent timing attacks
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.debug(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


def hash_password(password: str) -> str:
    """
    Hash a password with PBKDF2-SHA256 and a random salt.

    Returns:
        "<iterations>$<salt hex>$<digest hex>"
    """
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PASSWORD_HASH_ITERATIONS)
    return f"{PASSWORD_HASH_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        iterations, salt_hex, digest_hex = stored.split("$")
        digest = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations)
        )
    except ValueError:
        logger.error("Malformed password hash")
        return False
    return hmac.compare_digest(digest.hex(), digest_hex)


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


def hash_session_token(token: str) -> str:
    """Sessions are looked up by the SHA-256 of the bearer token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
