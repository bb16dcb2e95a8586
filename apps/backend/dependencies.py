"""
Centralized FastAPI dependencies.

The completion callback authenticates itself with the provider signature;
these dependencies cover the signature verifier instance and the internal
API key that guards wallet mutations coming from the game backend.
"""

import hmac
import os
from typing import Optional

from fastapi import Header, HTTPException

from services.ssv import SignatureVerifier, build_default_verifier

INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "")

_verifier: Optional[SignatureVerifier] = None


def get_signature_verifier() -> SignatureVerifier:
    """Process-wide verifier so the provider key cache is shared across requests."""
    global _verifier
    if _verifier is None:
        _verifier = build_default_verifier()
    return _verifier


async def require_internal_key(x_internal_api_key: Optional[str] = Header(None)) -> None:
    """
    Require the internal API key header when INTERNAL_API_KEY is configured.

    Raises HTTPException(401) on a missing or wrong key.
    """
    if not INTERNAL_API_KEY:
        return
    if not x_internal_api_key or not hmac.compare_digest(x_internal_api_key, INTERNAL_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid internal API key")
