"""Device authentication against the orchestrator.

The device proves its identity by signing a server-issued challenge with its
Ed25519 private key (``DEVICE_PRIVATE_KEY``, base64 of the 32 raw bytes). The
orchestrator answers with a JWT that is reused until shortly before it
expires.
"""

from __future__ import annotations

import base64
import binascii
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.hazmat.primitives.asymmetric import ed25519

from .orchestrator import OrchestratorClient, OrchestratorError

DEFAULT_TOKEN_LIFETIME = 3600


class DeviceAuthError(OrchestratorError):
    """The challenge/verify exchange did not produce a token."""


def load_private_key(encoded: str) -> ed25519.Ed25519PrivateKey:
    try:
        raw = base64.b64decode(encoded.strip(), validate=True)
        return ed25519.Ed25519PrivateKey.from_private_bytes(raw)
    except (binascii.Error, ValueError) as exc:
        raise DeviceAuthError(f"DEVICE_PRIVATE_KEY is not a valid Ed25519 key: {exc}") from exc


def sign_challenge(private_key: ed25519.Ed25519PrivateKey, challenge: str, timestamp: str) -> str:
    """Base64 signature over ``"<challenge>:<timestamp>"``."""
    message = f"{challenge}:{timestamp}".encode()
    return base64.b64encode(private_key.sign(message)).decode()


@dataclass(frozen=True)
class DeviceToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return bool(self.value) and now < self.expires_at


class DeviceAuthenticator:
    """Obtain and cache the device bearer token."""

    def __init__(
        self,
        client: OrchestratorClient,
        device_id: str,
        private_key: str,
        *,
        refresh_buffer: int = 300,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self._client = client
        self._device_id = device_id
        self._encoded_key = private_key
        self._key: ed25519.Ed25519PrivateKey | None = None
        self._refresh_buffer = refresh_buffer
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._token: DeviceToken | None = None

    @property
    def token(self) -> DeviceToken | None:
        return self._token

    def invalidate(self) -> None:
        """Forget the cached token so the next call re-authenticates."""
        self._token = None

    async def ensure_token(self) -> str:
        """Return a token that has not reached its (buffered) expiry."""
        token = self._token
        if token is None or not token.is_valid(self._clock()):
            token = await self.authenticate()
        return token.value

    async def authenticate(self) -> DeviceToken:
        self._logger.info("Authenticating device...")
        if self._key is None:
            self._key = load_private_key(self._encoded_key)

        challenge_payload = await self._client.request_challenge(self._device_id)
        challenge = str(challenge_payload.get("challenge") or "")
        timestamp = str(challenge_payload.get("timestamp") or "")
        if not challenge or not timestamp:
            raise DeviceAuthError("Invalid challenge response")

        signature = sign_challenge(self._key, challenge, timestamp)
        verify_payload = await self._client.verify_challenge(self._device_id, challenge, signature)
        jwt_token = str(verify_payload.get("jwt_token") or "")
        if not jwt_token:
            raise DeviceAuthError("No JWT token in response")
        try:
            expires_in = int(verify_payload.get("expires_in", DEFAULT_TOKEN_LIFETIME))
        except (TypeError, ValueError):
            expires_in = DEFAULT_TOKEN_LIFETIME

        self._token = DeviceToken(
            value=jwt_token,
            expires_at=self._clock() + expires_in - self._refresh_buffer,
        )
        self._logger.info("Authentication successful")
        return self._token
