# drop_relay/core/security.py
"""Anonymous sender identification from detached OpenPGP signatures.

The signer is never asserted by the client. It is read from the signature's
own IssuerFingerprint subpacket, the key is resolved through the key cache,
and only then is the signature checked cryptographically.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import pgpy
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from pgpy.errors import PGPError

from drop_relay.core.clock import Clock, unix_seconds, utc_now
from drop_relay.core.errors import ExpiredTimestamp, InvalidSignature, UnknownOrInvalidKey
from drop_relay.core.key_cache import KeyValidationCache, is_revoked, normalize_fingerprint

logger = logging.getLogger(__name__)


def parse_signature(signature_text: str) -> pgpy.PGPSignature:
    try:
        return pgpy.PGPSignature.from_blob(signature_text)
    except (ValueError, TypeError, NotImplementedError, PGPError) as e:
        raise InvalidSignature() from e


def issuer_fingerprint(signature: pgpy.PGPSignature) -> str:
    """Issuer fingerprint embedded in the signature, or "" if it carries none."""
    return normalize_fingerprint(signature.signer_fingerprint)


def _signing_key(key: pgpy.PGPKey, signature: pgpy.PGPSignature) -> Optional[pgpy.PGPKey]:
    issuer = issuer_fingerprint(signature)
    for candidate in [key] + list(key.subkeys.values()):
        if candidate.fingerprint.keyid == signature.signer or (
            issuer and normalize_fingerprint(candidate.fingerprint) == issuer
        ):
            # The primary's own revocation is handled by the key cache
            if not candidate.is_primary and is_revoked(candidate):
                logger.warning("Signing subkey is revoked", extra={"subkey": str(candidate.fingerprint)})
                return None
            return candidate
    return None


def key_expired(key: pgpy.PGPKey, at: datetime) -> bool:
    """Whether ``key`` (primary or subkey) has passed its expiry at naive UTC ``at``."""
    expires = key.expires_at
    if expires is None:
        # Subkeys and UID-less primaries carry their lifetime on the binding
        # or direct-key signature, which expires_at does not look at
        lifetimes = [sig.key_expiration for sig in key.self_signatures if sig.key_expiration is not None]
        if not lifetimes:
            return False
        expires = key.created + lifetimes[-1]
    if expires.tzinfo is not None:
        expires = expires.astimezone(timezone.utc).replace(tzinfo=None)
    return expires <= at


def verify_pgp_signature(
    key: pgpy.PGPKey, signature: pgpy.PGPSignature, data: str, at: Optional[datetime] = None
) -> bool:
    """
    Check a detached signature over ``data`` with ``key`` or one of its subkeys.

    Works on the key material and signature packet directly. PGPKey.verify
    looks up signing usage flags through the primary user's self-signature,
    which rejects keys published without any user ID; those keys are still
    cryptographically sound for this purpose. Revoked signing subkeys and
    keys expired at ``at`` (default: now) do not verify.
    """
    signing_key = _signing_key(key, signature)
    if signing_key is None:
        return False

    at = at or utc_now()
    try:
        if key_expired(key, at) or key_expired(signing_key, at):
            logger.warning("Signing key is expired", extra={"fingerprint": str(signing_key.fingerprint)})
            return False

        hash_alg = getattr(hashes, signature.hash_algorithm.name)()
        verified = signing_key._key.verify(signature.hashdata(data), signature.__sig__, hash_alg)
    except (AttributeError, ValueError, TypeError, UnsupportedAlgorithm, PGPError) as e:
        logger.warning("Signature could not be checked", extra={"error": str(e)})
        return False

    if verified is NotImplemented:
        logger.warning("Unsupported signing algorithm", extra={"algorithm": str(signature.key_algorithm)})
        return False
    return bool(verified)


class IdentityVerifier:
    """Turns (signature, signed data, timestamp) into a trusted fingerprint."""

    def __init__(self, keys: KeyValidationCache, skew_seconds: int = 300, clock: Clock = utc_now):
        self.keys = keys
        self.skew_seconds = skew_seconds
        self.clock = clock

    def verify(self, signature_text: str, data: str, timestamp: int) -> str:
        signature = parse_signature(signature_text)
        fingerprint = issuer_fingerprint(signature)

        validation = self.keys.resolve(fingerprint)
        if not validation.is_valid or validation.key is None:
            logger.warning(
                "Signature issued by an unusable key",
                extra={"fingerprint": fingerprint, "status": validation.status.value},
            )
            raise UnknownOrInvalidKey(fingerprint, validation.status.value)

        if not verify_pgp_signature(validation.key, signature, data, at=self.clock()):
            logger.warning("Signature verification failed", extra={"fingerprint": fingerprint})
            raise InvalidSignature()

        # Checked after the signature so a replayed valid signature is told
        # apart from a forged one
        drift = abs(unix_seconds(self.clock()) - int(timestamp))
        if drift > self.skew_seconds:
            logger.warning(
                "Timestamp validation failed",
                extra={"fingerprint": fingerprint, "drift": drift},
            )
            raise ExpiredTimestamp()

        return normalize_fingerprint(validation.key.fingerprint)
