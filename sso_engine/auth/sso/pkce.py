"""
Random values and PKCE helpers for authorization flows.

All values come from the `secrets` CSPRNG. The code challenge uses the S256
method: base64url(SHA-256(verifier)) without padding.
"""

import base64
import hashlib
import re
import secrets

CODE_CHALLENGE_METHOD = "S256"

# RFC 7636 unreserved characters
_VERIFIER_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~"
)
MIN_VERIFIER_LENGTH = 43
MAX_VERIFIER_LENGTH = 128

_BASE64URL_RE = re.compile(r"[A-Za-z0-9_-]*")


def generate_state() -> str:
    """Generate a CSRF state parameter (256 bits, URL-safe)."""
    return secrets.token_urlsafe(32)


def generate_nonce() -> str:
    """Generate an ID token replay-protection nonce."""
    return secrets.token_urlsafe(32)


def generate_code_verifier(length: int = MAX_VERIFIER_LENGTH) -> str:
    """
    Generate a PKCE code verifier.

    Args:
        length: Verifier length, between 43 and 128 characters

    Returns:
        Random string over the unreserved URL-safe alphabet
    """
    if not MIN_VERIFIER_LENGTH <= length <= MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"PKCE verifier length must be between {MIN_VERIFIER_LENGTH} "
            f"and {MAX_VERIFIER_LENGTH}, got {length}"
        )
    return "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(length))


def code_challenge(code_verifier: str) -> str:
    """Derive the S256 code challenge for a verifier."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def base64url_decode(segment: str) -> bytes:
    """
    Decode unpadded base64url, as used by JWTs and JWKs.

    Raises ValueError on characters outside the base64url alphabet or an
    impossible length.
    """
    if not _BASE64URL_RE.fullmatch(segment):
        raise ValueError("not base64url")
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded)


def base64url_to_int(segment: str) -> int:
    """Decode a base64url big-endian unsigned integer (JWK 'n' / 'e')."""
    return int.from_bytes(base64url_decode(segment), "big")
