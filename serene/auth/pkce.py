from __future__ import annotations

import base64
import hashlib
import secrets


def _base64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def make_code_verifier() -> str:
    """PKCE verifier within the 43..128 character bounds."""
    return secrets.token_urlsafe(64)  # ~86 chars


def code_challenge(verifier: str) -> str:
    """S256 challenge for ``verifier``."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _base64url_encode(digest)
