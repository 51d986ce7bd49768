"""Tests for IdentityVerifier: signer extraction, signature checks, timestamp window."""

from datetime import datetime, timedelta, timezone

import pgpy
import pytest
from pgpy.constants import EllipticCurveOID, HashAlgorithm, KeyFlags, PubKeyAlgorithm, RevocationReason

from conftest import fingerprint_of, sign
from drop_relay.core.errors import ExpiredTimestamp, InvalidSignature, UnknownOrInvalidKey
from drop_relay.core.security import issuer_fingerprint, parse_signature, verify_pgp_signature


def flip_last_bit(armored_signature: str) -> str:
    """Re-armor a signature with the low bit of its signature MPI flipped."""
    raw = bytearray(bytes(pgpy.PGPSignature.from_blob(armored_signature)))
    raw[-1] ^= 0x01
    return str(pgpy.PGPSignature.from_blob(bytes(raw)))


def ed25519_key(name: str, created=None, **prefs) -> pgpy.PGPKey:
    key = pgpy.PGPKey.new(PubKeyAlgorithm.EdDSA, EllipticCurveOID.Ed25519, created=created)
    prefs.setdefault("usage", {KeyFlags.Sign, KeyFlags.Certify})
    key.add_uid(pgpy.PGPUID.new(name, email=f"{name.lower()}@example.com"), hashes=[HashAlgorithm.SHA256], **prefs)
    return key


def with_signing_subkey(name: str):
    """A certify-only primary and the subkey it delegates signing to."""
    primary = ed25519_key(name, usage={KeyFlags.Certify})
    subkey = pgpy.PGPKey.new(PubKeyAlgorithm.EdDSA, EllipticCurveOID.Ed25519)
    primary.add_subkey(subkey, usage={KeyFlags.Sign})
    return primary, primary.subkeys[subkey.fingerprint.keyid]


def publish_under_both(keyserver, primary, subkey, armored: str):
    # VKS answers lookups by primary and by subkey fingerprint alike
    keyserver.publish(armored, fingerprint_of(primary))
    keyserver.publish(armored, fingerprint_of(subkey))


class TestSignatureParsing:

    def test_issuer_fingerprint_comes_from_signature(self, alice_key):
        signature = parse_signature(sign(alice_key, "hello"))
        assert issuer_fingerprint(signature) == fingerprint_of(alice_key)

    def test_garbage_signature_is_invalid(self):
        with pytest.raises(InvalidSignature):
            parse_signature("not a signature")

    def test_wrong_key_does_not_verify(self, alice_key, bob_key):
        signature = parse_signature(sign(alice_key, "hello"))
        assert not verify_pgp_signature(bob_key.pubkey, signature, "hello")


class TestVerify:

    def test_round_trip_returns_signer_fingerprint(self, verifier, alice_key, clock):
        data = str(clock.unix)
        assert verifier.verify(sign(alice_key, data), data, clock.unix) == fingerprint_of(alice_key)

    def test_tampered_data_is_invalid(self, verifier, alice_key, clock):
        signature = sign(alice_key, "A|payload|1")
        with pytest.raises(InvalidSignature):
            verifier.verify(signature, "A|payloae|1", clock.unix)

    def test_flipped_signature_bit_is_invalid(self, verifier, alice_key, clock):
        data = str(clock.unix)
        with pytest.raises(InvalidSignature):
            verifier.verify(flip_last_bit(sign(alice_key, data)), data, clock.unix)

    def test_unknown_key_is_rejected_before_crypto(self, verifier, alice_key, keyserver, clock):
        keyserver.keys.clear()
        data = str(clock.unix)
        with pytest.raises(UnknownOrInvalidKey) as exc:
            verifier.verify(sign(alice_key, data), data, clock.unix)
        assert exc.value.status == "not_found"

    def test_revoked_key_is_rejected(self, verifier, revoked_key, clock):
        key, _ = revoked_key
        data = str(clock.unix)
        with pytest.raises(UnknownOrInvalidKey) as exc:
            verifier.verify(sign(key, data), data, clock.unix)
        assert exc.value.status == "revoked"

    def test_key_without_user_id_is_accepted(self, verifier, uidless_key, clock):
        key, _ = uidless_key
        data = str(clock.unix)
        assert verifier.verify(sign(key, data), data, clock.unix) == fingerprint_of(key)


class TestSigningSubkeys:

    def test_subkey_signature_is_credited_to_primary(self, verifier, keyserver, clock):
        primary, subkey = with_signing_subkey("Erin")
        publish_under_both(keyserver, primary, subkey, str(primary.pubkey))

        data = str(clock.unix)
        signature = str(subkey.sign(data))
        assert issuer_fingerprint(parse_signature(signature)) == fingerprint_of(subkey)
        assert verifier.verify(signature, data, clock.unix) == fingerprint_of(primary)

    def test_revoked_subkey_is_rejected(self, verifier, keyserver, clock):
        primary, subkey = with_signing_subkey("Frank")
        pub, _ = pgpy.PGPKey.from_blob(str(primary.pubkey))
        published_subkey = pub.subkeys[subkey.fingerprint.keyid]
        published_subkey |= primary.revoke(published_subkey, reason=RevocationReason.Compromised, comment="stolen")
        publish_under_both(keyserver, primary, subkey, str(pub))

        # The primary itself is still good, only the signing subkey is burned
        data = str(clock.unix)
        assert verifier.keys.resolve(fingerprint_of(primary)).is_valid
        with pytest.raises(InvalidSignature):
            verifier.verify(str(subkey.sign(data)), data, clock.unix)


class TestKeyExpiry:

    @pytest.fixture
    def short_lived_key(self, keyserver):
        """Created 2020-01-01, expires 30 days later."""
        key = ed25519_key(
            "Grace",
            created=datetime(2020, 1, 1, tzinfo=timezone.utc),
            key_expiration=timedelta(days=30),
        )
        keyserver.publish(str(key.pubkey), fingerprint_of(key))
        return key

    def test_expired_key_is_rejected(self, verifier, short_lived_key, clock):
        data = str(clock.unix)
        with pytest.raises(InvalidSignature):
            verifier.verify(sign(short_lived_key, data), data, clock.unix)

    def test_key_is_accepted_before_it_expires(self, verifier, short_lived_key, clock):
        clock.current = datetime(2020, 1, 15, 12, 0, 0)
        data = str(clock.unix)
        assert verifier.verify(sign(short_lived_key, data), data, clock.unix) == fingerprint_of(short_lived_key)

    def test_expiry_boundary_counts_as_expired(self, short_lived_key):
        signature = parse_signature(sign(short_lived_key, "x"))
        expires = datetime(2020, 1, 31)
        assert verify_pgp_signature(short_lived_key.pubkey, signature, "x", at=expires - timedelta(seconds=1))
        assert not verify_pgp_signature(short_lived_key.pubkey, signature, "x", at=expires)


class TestTimestampWindow:

    @pytest.mark.parametrize("offset", [-300, 0, 300])
    def test_inside_window_passes(self, verifier, alice_key, clock, offset):
        ts = clock.unix + offset
        assert verifier.verify(sign(alice_key, str(ts)), str(ts), ts) == fingerprint_of(alice_key)

    @pytest.mark.parametrize("offset", [-301, 301])
    def test_outside_window_expires(self, verifier, alice_key, clock, offset):
        ts = clock.unix + offset
        with pytest.raises(ExpiredTimestamp):
            verifier.verify(sign(alice_key, str(ts)), str(ts), ts)

    def test_forged_and_stale_reports_invalid_signature(self, verifier, alice_key, clock):
        ts = clock.unix - 3600
        with pytest.raises(InvalidSignature):
            verifier.verify(sign(alice_key, "something else"), str(ts), ts)
