"""
Server-side verification (SSV) of rewarded-ad completion callbacks.

The ad network signs each callback with ECDSA (P-256, SHA-256). The signed
content is the raw query string up to, but excluding, ``&signature=``; the
signature itself is web-safe base64 DER and ``key_id`` names the public key
to check it with. Public keys come from a JSON document hosted by the
network::

    {"keys": [{"keyId": 3335741209, "pem": "-----BEGIN PUBLIC KEY-----...", "base64": "..."}]}

Keys are cached and refetched when the cache goes stale or a callback names a
key id we have not seen, which is how key rotation shows up.
"""

import asyncio
import base64
import binascii
import logging
import time
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import parse_qsl, urlencode

import httpx
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

import config
from exceptions import InvalidSignatureError, KeyFetchError
from observability.metrics import ssv_key_fetch_total, ssv_cached_keys

logger = logging.getLogger(__name__)

SIGNATURE_MARKER = "&signature="

# An unknown key id forces a refetch at most this often, so forged key ids
# cannot turn every callback into a request to the key host.
MIN_FORCED_REFRESH_SECONDS = 60.0


def extract_signed_content(query_string: str) -> Tuple[str, str, str]:
    """
    Split a callback query string into (signed_content, signature, key_id).

    Raises InvalidSignatureError if the signature or key id is missing, or if
    anything else trails the signature.
    """
    marker = query_string.find(SIGNATURE_MARKER)
    if marker <= 0:
        raise InvalidSignatureError("Callback is missing a signature")

    signed_content = query_string[:marker]
    trailer = parse_qsl(query_string[marker + 1:], keep_blank_values=True)
    names = [name for name, _ in trailer]
    if sorted(names) != ["key_id", "signature"]:
        raise InvalidSignatureError("Only signature and key_id may follow the signed content")
    signature = dict(trailer)["signature"]
    key_id = dict(trailer)["key_id"]
    if not signature or not key_id:
        raise InvalidSignatureError("Callback is missing a signature or key_id")
    return signed_content, signature, key_id


def _decode_signature(signature: str) -> bytes:
    padded = signature + "=" * (-len(signature) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def load_public_key(pem: Optional[str] = None, der_base64: Optional[str] = None) -> ec.EllipticCurvePublicKey:
    """Load an EC public key from PEM text or base64 DER."""
    if pem:
        key = serialization.load_pem_public_key(pem.encode("utf-8"))
    elif der_base64:
        key = serialization.load_der_public_key(base64.b64decode(der_base64))
    else:
        raise ValueError("Key entry has neither pem nor base64")
    if not isinstance(key, ec.EllipticCurvePublicKey):
        raise ValueError(f"Expected an EC public key, got {type(key).__name__}")
    return key


def verify_signature(public_key: ec.EllipticCurvePublicKey, content: str, signature: str) -> bool:
    try:
        public_key.verify(_decode_signature(signature), content.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
        return True
    except (InvalidSignature, binascii.Error, ValueError, UnicodeEncodeError):
        return False


def sign_content(private_key: ec.EllipticCurvePrivateKey, content: str) -> str:
    """Sign callback content the way the ad network does (used by the simulated provider)."""
    der = private_key.sign(content.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
    return base64.urlsafe_b64encode(der).decode("ascii").rstrip("=")


def build_signed_query(params, private_key: ec.EllipticCurvePrivateKey, key_id: str) -> str:
    """Encode `params` as a query string and append signature and key_id."""
    content = urlencode(list(params.items()) if isinstance(params, dict) else list(params))
    signature = sign_content(private_key, content)
    return f"{content}&{urlencode([('signature', signature), ('key_id', key_id)])}"


class PublicKeyCache:
    """
    Provider public keys by key id, fetched over HTTP and cached.

    `static_keys` are always trusted in addition to the fetched document; the
    simulated provider's key is registered this way in development.
    """

    def __init__(
        self,
        keys_url: Optional[str] = config.SSV_PUBLIC_KEYS_URL,
        *,
        ttl_seconds: float = config.SSV_KEY_CACHE_TTL_SECONDS,
        static_keys: Optional[Dict[str, ec.EllipticCurvePublicKey]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = config.SSV_KEY_FETCH_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.keys_url = keys_url
        self.ttl_seconds = ttl_seconds
        self.static_keys = dict(static_keys or {})
        self._http_client = http_client
        self._timeout = timeout
        self._clock = clock
        self._keys: Dict[str, ec.EllipticCurvePublicKey] = {}
        self._fetched_at: Optional[float] = None
        self._last_forced_refresh: Optional[float] = None
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        return self._fetched_at is not None and self._clock() - self._fetched_at < self.ttl_seconds

    def _forced_refresh_allowed(self) -> bool:
        if self._last_forced_refresh is None:
            return True
        return self._clock() - self._last_forced_refresh >= MIN_FORCED_REFRESH_SECONDS

    async def get_key(self, key_id: str) -> Optional[ec.EllipticCurvePublicKey]:
        """
        Return the public key for `key_id`, or None if the provider does not publish it.

        Raises KeyFetchError if the key is not cached and the document could not be fetched.
        """
        if key_id in self.static_keys:
            return self.static_keys[key_id]
        if key_id in self._keys and self._is_fresh():
            return self._keys[key_id]
        if not self.keys_url:
            return self._keys.get(key_id)

        async with self._lock:
            # Another callback may have refreshed while we waited
            if key_id in self._keys and self._is_fresh():
                return self._keys[key_id]

            stale = not self._is_fresh()
            if not stale and not self._forced_refresh_allowed():
                return None
            if not stale:
                self._last_forced_refresh = self._clock()

            try:
                await self._refresh()
            except KeyFetchError:
                # Keep serving what we have through a key host outage
                if key_id in self._keys:
                    logger.warning(f"[SSV] Using stale key {key_id} after refresh failure")
                    return self._keys[key_id]
                raise

            return self._keys.get(key_id)

    async def _refresh(self) -> None:
        try:
            if self._http_client is not None:
                response = await self._http_client.get(self.keys_url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self.keys_url)
            response.raise_for_status()
            document = response.json()
        except (httpx.HTTPError, ValueError) as e:
            ssv_key_fetch_total.labels(status="error").inc()
            logger.error(f"[SSV] Failed to fetch public keys from {self.keys_url}: {e}")
            raise KeyFetchError("Could not fetch provider public keys", detail={"url": self.keys_url}) from e

        keys: Dict[str, ec.EllipticCurvePublicKey] = {}
        for entry in document.get("keys", []):
            key_id = str(entry.get("keyId", "")).strip()
            if not key_id:
                continue
            try:
                keys[key_id] = load_public_key(entry.get("pem"), entry.get("base64"))
            except (ValueError, UnsupportedAlgorithm) as e:
                logger.warning(f"[SSV] Skipping unusable key {key_id}: {e}")

        self._keys = keys
        self._fetched_at = self._clock()
        ssv_key_fetch_total.labels(status="ok").inc()
        ssv_cached_keys.set(len(keys))
        logger.info(f"[SSV] Loaded {len(keys)} provider public keys")

    def snapshot(self) -> Dict[str, object]:
        age = None if self._fetched_at is None else round(self._clock() - self._fetched_at, 1)
        return {
            "cached_keys": len(self._keys) + len(self.static_keys),
            "fetched_age_seconds": age,
            "fresh": self._is_fresh(),
        }


class SignatureVerifier:
    """Checks a callback's signature against the cached provider keys."""

    def __init__(self, key_cache: PublicKeyCache):
        self.key_cache = key_cache

    async def verify(self, signed_content: str, signature: str, key_id: str) -> None:
        """Raise InvalidSignatureError unless `signature` is valid for `signed_content`."""
        if not signature or not key_id:
            raise InvalidSignatureError("Missing signature or key_id")

        public_key = await self.key_cache.get_key(key_id)
        if public_key is None:
            raise InvalidSignatureError("Unknown signing key", detail={"key_id": key_id})

        if not verify_signature(public_key, signed_content, signature):
            raise InvalidSignatureError("Signature does not match callback content", detail={"key_id": key_id})


def build_default_verifier() -> SignatureVerifier:
    """Verifier for the configured key URL plus the simulated provider key, if any."""
    static_keys = {}
    if config.SIMULATED_SSV_PUBLIC_KEY_PEM:
        static_keys[config.SIMULATED_SSV_KEY_ID] = load_public_key(config.SIMULATED_SSV_PUBLIC_KEY_PEM)
        logger.warning(f"[SSV] Trusting simulated provider key {config.SIMULATED_SSV_KEY_ID}")
    return SignatureVerifier(PublicKeyCache(static_keys=static_keys))
