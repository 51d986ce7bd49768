# drop_relay/core/errors.py
"""Error taxonomy for the relay.

Every error carries the HTTP status it surfaces as. Revoked and unknown keys
share one 404 message per operation so callers cannot tell them apart.
"""


class RelayError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        self.message = message or self.message


# =========================
# 400
# =========================

class ClientError(RelayError):
    status_code = 400


class MissingFields(ClientError):
    message = "Missing required fields"


class InvalidFingerprintFormat(MissingFields):
    """A recipient that is not a 40-hex fingerprint; reported like any malformed field."""


class PayloadTooLarge(ClientError):
    message = "Encrypted data exceeds 1MB limit"


# =========================
# 401
# =========================

class AuthError(RelayError):
    status_code = 401
    message = "Invalid signature or timestamp"


class InvalidSignature(AuthError):
    pass


class ExpiredTimestamp(AuthError):
    pass


class UnknownOrInvalidKey(AuthError):
    """The signing key did not resolve to a valid key.

    Raised by the verifier only; the relay service translates it into the
    404 that matches the operation in progress.
    """

    def __init__(self, fingerprint: str, status: str):
        super().__init__(f"Invalid or missing public key: {status}")
        self.fingerprint = fingerprint
        self.status = status


# =========================
# 404
# =========================

class KeyNotValidError(RelayError):
    status_code = 404


class SenderKeyInvalid(KeyNotValidError):
    message = "Sender public key not valid"


class RecipientKeyInvalid(KeyNotValidError):
    message = "Recipient public key not valid"


class RequesterKeyInvalid(KeyNotValidError):
    message = "Public key not valid"


# =========================
# 500
# =========================

class UpstreamError(RelayError):
    message = "Keyserver request failed"


class KeyserverUnavailable(UpstreamError):
    pass


class RateLimited(UpstreamError):
    message = "Rate limit exceeded"


class StorageError(RelayError):
    message = "Storage unavailable"
