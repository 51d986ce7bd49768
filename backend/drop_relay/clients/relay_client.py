# drop_relay/clients/relay_client.py

import logging
import time
from typing import List, Optional

import pgpy
import requests

from drop_relay.core.key_cache import VKS_BY_FINGERPRINT, normalize_fingerprint
from drop_relay.services.relay_service import poll_signing_payload, send_signing_payload

logger = logging.getLogger(__name__)

# =========================
# CONFIGURATION
# =========================

TOR_PROXY = {
    'http': 'socks5h://127.0.0.1:9050',
    'https': 'socks5h://127.0.0.1:9050'
}

RELAY_URL = "http://127.0.0.1:8787"
KEYSERVER_URL = "https://keys.openpgp.org"
REQUEST_TIMEOUT = 30


class RelayClientError(Exception):
    def __init__(self, status_code: int, error: str):
        super().__init__(f"{status_code}: {error}")
        self.status_code = status_code
        self.error = error


def create_tor_session():
    """Create a requests session that routes through Tor"""
    session = requests.Session()
    session.proxies = TOR_PROXY
    return session


# =========================
# RELAY CLIENT
# =========================

class RelayClient:
    """Signs and submits send/poll requests for one private key.

    Payloads must already be encrypted for the recipient; the client only
    signs and transports them.
    """

    def __init__(
        self,
        private_key: pgpy.PGPKey,
        relay_url: str = RELAY_URL,
        keyserver_url: str = KEYSERVER_URL,
        use_tor: bool = False,
        session=None,
    ):
        if private_key.is_public:
            raise ValueError("RelayClient needs a private key")
        self.private_key = private_key
        self.relay_url = relay_url.rstrip("/")
        self.keyserver_url = keyserver_url.rstrip("/")
        self.session = session or (create_tor_session() if use_tor else requests.Session())

    @property
    def fingerprint(self) -> str:
        return normalize_fingerprint(self.private_key.fingerprint)

    def sign(self, data: str) -> str:
        """Armored detached signature over ``data``."""
        return str(self.private_key.sign(data))

    def send(self, to_fingerprint: str, encrypted_data: str, timestamp: Optional[int] = None):
        """Queue ``encrypted_data`` in the recipient's mailbox."""
        to_fingerprint = normalize_fingerprint(to_fingerprint)
        timestamp = int(time.time()) if timestamp is None else timestamp
        body = {
            "to_public_key": to_fingerprint,
            "encrypted_data": encrypted_data,
            "timestamp": timestamp,
            "signature": self.sign(send_signing_payload(to_fingerprint, encrypted_data, timestamp)),
        }
        resp = self.session.post(f"{self.relay_url}/api/v1/send", json=body, timeout=REQUEST_TIMEOUT)
        if resp.status_code != 201:
            raise RelayClientError(resp.status_code, self._error(resp))
        logger.info("Message sent", extra={"to_fingerprint": to_fingerprint})

    def poll(self, timestamp: Optional[int] = None) -> List[dict]:
        """Collect pending messages. Each message is returned by the relay only once."""
        timestamp = int(time.time()) if timestamp is None else timestamp
        body = {
            "timestamp": timestamp,
            "signature": self.sign(poll_signing_payload(timestamp)),
        }
        resp = self.session.post(f"{self.relay_url}/api/v1/poll", json=body, timeout=REQUEST_TIMEOUT)
        if resp.status_code != 200:
            raise RelayClientError(resp.status_code, self._error(resp))
        return resp.json()

    def get_public_key(self, fingerprint: str) -> str:
        """Fetch an armored public key from the keyserver."""
        url = f"{self.keyserver_url}{VKS_BY_FINGERPRINT}{normalize_fingerprint(fingerprint)}"
        resp = self.session.get(url, timeout=REQUEST_TIMEOUT)
        if not resp.ok:
            raise RelayClientError(resp.status_code, resp.reason or "Failed to get public key")
        return resp.text

    @staticmethod
    def _error(resp) -> str:
        try:
            return resp.json().get("error", resp.text)
        except ValueError:
            return resp.text
