# drop_relay/core/key_cache.py
"""Public key resolution against a VKS keyserver, with a TTL cache.

Resolutions that produced key material (valid or revoked) are cached in the
``key_cache`` table. A keyserver 404 is never cached, so repeated lookups of
an absent fingerprint always go upstream.
"""

import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

import pgpy
from pgpy.errors import PGPError
import requests
from sqlalchemy.exc import SQLAlchemyError

from drop_relay.core.clock import Clock, utc_now
from drop_relay.core.errors import KeyserverUnavailable, RateLimited, StorageError
from drop_relay.infra.database import Database
from drop_relay.models.key_cache import KeyCacheEntry

logger = logging.getLogger(__name__)

FINGERPRINT_RE = re.compile(r"^[A-Fa-f0-9]{40}$")
VKS_BY_FINGERPRINT = "/vks/v1/by-fingerprint/"

# What PGPy raises on malformed or unsupported key material
KEY_PARSE_ERRORS = (ValueError, NotImplementedError, PGPError)


class KeyStatus(str, Enum):
    VALID = "valid"
    REVOKED = "revoked"
    NOT_FOUND = "not_found"


@dataclass
class KeyValidation:
    status: KeyStatus
    key: Optional[pgpy.PGPKey] = None

    @property
    def is_valid(self) -> bool:
        return self.status == KeyStatus.VALID


def normalize_fingerprint(fingerprint: Optional[str]) -> str:
    """Uppercase, no ``0x`` prefix, no spaces. Empty string for missing input."""
    if not fingerprint:
        return ""
    fp = str(fingerprint).strip().replace(" ", "").upper()
    if fp.startswith("0X"):
        fp = fp[2:]
    return fp


def load_key(armored_key: str) -> pgpy.PGPKey:
    key, _ = pgpy.PGPKey.from_blob(armored_key)
    return key


def is_revoked(key: pgpy.PGPKey) -> bool:
    return any(True for _ in key.revocation_signatures)


class KeyValidationCache:
    """Resolves fingerprints to key status and key material.

    Args:
        database: Database holding the ``key_cache`` table
        keyserver_url: Base URL of a VKS keyserver
        ttl_seconds: How long a cached resolution is trusted
        timeout: Bound on a single keyserver request, in seconds
        session: HTTP session (anything with a requests-style ``get``)
        clock: Callable returning naive UTC now
    """

    def __init__(
        self,
        database: Database,
        keyserver_url: str = "https://keys.openpgp.org",
        ttl_seconds: int = 600,
        timeout: float = 10.0,
        session=None,
        clock: Clock = utc_now,
    ):
        self.database = database
        self.keyserver_url = keyserver_url.rstrip("/")
        self.ttl = timedelta(seconds=ttl_seconds)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.clock = clock

    def resolve(self, fingerprint: Optional[str]) -> KeyValidation:
        fp = normalize_fingerprint(fingerprint)
        if not fp:
            return KeyValidation(KeyStatus.NOT_FOUND)

        cached = self._cached(fp)
        if cached is not None:
            logger.debug("Using cached validation result", extra={"fingerprint": fp})
            return cached

        armored_key = self._fetch(fp)
        if armored_key is None:
            logger.info("Key not found on keyserver", extra={"fingerprint": fp})
            return KeyValidation(KeyStatus.NOT_FOUND)

        try:
            key = load_key(armored_key)
        except KEY_PARSE_ERRORS as e:
            logger.error("Keyserver returned an unparseable key", extra={"fingerprint": fp})
            raise KeyserverUnavailable(f"Unparseable key for {fp}") from e

        status = KeyStatus.REVOKED if is_revoked(key) else KeyStatus.VALID
        self._store(fp, armored_key, status)
        logger.info("Resolved public key", extra={"fingerprint": fp, "status": status.value})
        return KeyValidation(status, key)

    # =========================
    # CACHE
    # =========================

    def _cached(self, fp: str) -> Optional[KeyValidation]:
        try:
            with self.database.session() as session:
                entry = session.get(KeyCacheEntry, fp)
        except SQLAlchemyError as e:
            logger.error("Key cache lookup failed", exc_info=True, extra={"fingerprint": fp})
            raise StorageError() from e

        if entry is None:
            return None
        if self.clock() - entry.validated_at >= self.ttl:
            return None

        try:
            key = load_key(entry.armored_key)
        except KEY_PARSE_ERRORS:
            logger.warning("Discarding unreadable cache entry", extra={"fingerprint": fp})
            return None
        return KeyValidation(KeyStatus(entry.status), key)

    def _store(self, fp: str, armored_key: str, status: KeyStatus):
        # merge() replaces any previous row for this fingerprint wholesale
        try:
            with self.database.session() as session:
                session.merge(KeyCacheEntry(
                    fingerprint=fp,
                    armored_key=armored_key,
                    status=status.value,
                    validated_at=self.clock(),
                ))
        except SQLAlchemyError as e:
            logger.error("Key cache write failed", exc_info=True, extra={"fingerprint": fp})
            raise StorageError() from e

    # =========================
    # KEYSERVER
    # =========================

    def _fetch(self, fp: str) -> Optional[str]:
        """Armored key text, or None when the keyserver does not know the key."""
        url = f"{self.keyserver_url}{VKS_BY_FINGERPRINT}{fp}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.Timeout as e:
            logger.warning("Keyserver request timed out", extra={"fingerprint": fp})
            raise KeyserverUnavailable("Keyserver request timed out") from e
        except requests.RequestException as e:
            logger.warning("Keyserver request failed", extra={"fingerprint": fp, "error": str(e)})
            raise KeyserverUnavailable("Keyserver request failed") from e

        if response.status_code == 404:
            return None
        if response.status_code == 429:
            raise RateLimited()
        if not response.ok:
            raise KeyserverUnavailable(f"VKS API error: {response.status_code}")
        return response.text
