"""
PKCE (RFC 7636) and state token generation.

Only the S256 challenge method is supported.
"""

from __future__ import annotations

import base64
import hashlib
import re
import secrets

CODE_CHALLENGE_METHOD = "S256"

# RFC 7636 section 4.1: 43-128 characters of [A-Za-z0-9-._~]
_VERIFIER_PATTERN = re.compile(r"[A-Za-z0-9\-._~]{43,128}")

_RANDOM_BYTES = 32


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_state() -> str:
    """Opaque anti-CSRF token with 256 bits of entropy."""
    return _b64url(secrets.token_bytes(_RANDOM_BYTES))


def generate_code_verifier() -> str:
    """43-character verifier drawn from the unreserved URL alphabet."""
    return _b64url(secrets.token_bytes(_RANDOM_BYTES))


def generate_code_challenge(code_verifier: str) -> str:
    return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def is_valid_code_verifier(value: str) -> bool:
    return _VERIFIER_PATTERN.fullmatch(value) is not None
