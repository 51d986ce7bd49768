# drop_relay/services/relay_service.py

import logging
from dataclasses import dataclass
from typing import List, Optional

from drop_relay.core.errors import (
    InvalidFingerprintFormat,
    PayloadTooLarge,
    RecipientKeyInvalid,
    RequesterKeyInvalid,
    SenderKeyInvalid,
    StorageError,
    UnknownOrInvalidKey,
)
from drop_relay.core.key_cache import FINGERPRINT_RE, KeyValidationCache, normalize_fingerprint
from drop_relay.core.message import MessageStore
from drop_relay.core.security import IdentityVerifier

logger = logging.getLogger(__name__)


def send_signing_payload(to_public_key: str, encrypted_data: str, timestamp: int) -> str:
    """The exact string a sender signs for a send request."""
    return f"{to_public_key}|{encrypted_data}|{timestamp}"


def poll_signing_payload(timestamp: int) -> str:
    return str(timestamp)


@dataclass
class HealthReport:
    healthy: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        if self.healthy:
            return {"status": "healthy"}
        return {"status": "unhealthy", "error": self.error}


class RelayService:
    """Send, poll and health, wired over the verifier, key cache and store."""

    def __init__(
        self,
        verifier: IdentityVerifier,
        keys: KeyValidationCache,
        store: MessageStore,
        max_payload_bytes: int = 1024 * 1024,
    ):
        self.verifier = verifier
        self.keys = keys
        self.store = store
        self.max_payload_bytes = max_payload_bytes

    def send(self, to_public_key: str, encrypted_data: str, timestamp: int, signature: str) -> int:
        if not FINGERPRINT_RE.match(to_public_key or ""):
            raise InvalidFingerprintFormat()

        size = len(encrypted_data.encode("utf-8"))
        if size > self.max_payload_bytes:
            logger.warning("Encrypted data exceeds 1MB limit", extra={"size": size})
            raise PayloadTooLarge()

        signed = send_signing_payload(to_public_key, encrypted_data, timestamp)
        try:
            from_fingerprint = self.verifier.verify(signature, signed, timestamp)
        except UnknownOrInvalidKey as e:
            raise SenderKeyInvalid() from e

        if not self.keys.resolve(from_fingerprint).is_valid:
            logger.warning("Sender public key not valid", extra={"fingerprint": from_fingerprint})
            raise SenderKeyInvalid()

        to_fingerprint = normalize_fingerprint(to_public_key)
        if not self.keys.resolve(to_fingerprint).is_valid:
            logger.warning("Recipient public key not valid", extra={"fingerprint": to_fingerprint})
            raise RecipientKeyInvalid()

        return self.store.send(from_fingerprint, to_fingerprint, encrypted_data)

    def poll(self, timestamp: int, signature: str) -> List[dict]:
        try:
            requester = self.verifier.verify(signature, poll_signing_payload(timestamp), timestamp)
        except UnknownOrInvalidKey as e:
            raise RequesterKeyInvalid() from e

        # The signature over the timestamp is the only credential for a mailbox
        if not self.keys.resolve(requester).is_valid:
            logger.warning("Public key not valid", extra={"fingerprint": requester})
            raise RequesterKeyInvalid()

        return [m.to_dict() for m in self.store.poll(requester)]

    def health(self) -> HealthReport:
        try:
            self.store.ping()
        except StorageError:
            logger.error("Health check failed", exc_info=True)
            return HealthReport(False, "Database connection failed")
        return HealthReport(True)
