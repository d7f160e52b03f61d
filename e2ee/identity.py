"""
Identity key management.

The device owns one long-lived RSA key pair. It is generated on first run,
persisted in durable storage as base64 DER text, and loaded on every later
start.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from .codec import decode_private_key, decode_public_key, encode_private_key, encode_public_key
from .errors import DecodeError, NotInitializedError
from .primitives import generate_asymmetric_keypair

logger = logging.getLogger(__name__)

PRIVATE_KEY = "private_key"
PUBLIC_KEY = "public_key"


class KeyValueStore(Protocol):
    """Durable settings store. `set` must be durable before it returns."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class MemoryStore:
    """Non-durable KeyValueStore, for tests and throwaway sessions"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


@dataclass(frozen=True)
class IdentityKeyPair:
    """
    The device's identity.

    Attributes:
        private_key: RSA private key, never leaves the device
        public_key: RSA public key, attached to outbound envelopes
    """
    private_key: RSAPrivateKey
    public_key: RSAPublicKey

    def encoded_public_key(self) -> str:
        return encode_public_key(self.public_key)


class IdentityManager:
    """
    Owns the identity key pair.

    State machine: uninitialized -> loaded. Accessors return None until
    initialize() has completed.
    """

    def __init__(self, store: KeyValueStore):
        """
        Args:
            store: Durable store holding the encoded key pair
        """
        self.store = store
        self._key_pair: Optional[IdentityKeyPair] = None

    def initialize(self) -> IdentityKeyPair:
        """
        Load the persisted key pair, or generate and persist a new one.

        A stored pair that fails to decode is replaced. Peers holding the old
        public key can no longer authenticate this device until a fresh key
        exchange.

        Returns:
            The loaded or generated key pair
        """
        stored_private = self.store.get(PRIVATE_KEY)
        stored_public = self.store.get(PUBLIC_KEY)

        if stored_private is not None and stored_public is not None:
            try:
                self._key_pair = IdentityKeyPair(
                    private_key=decode_private_key(stored_private),
                    public_key=decode_public_key(stored_public)
                )
                logger.debug("Loaded identity key pair from storage")
                return self._key_pair
            except DecodeError as e:
                logger.warning("Stored identity key pair is corrupt, regenerating: %s", e)

        return self._generate_and_store()

    def _generate_and_store(self) -> IdentityKeyPair:
        private_key, public_key = generate_asymmetric_keypair()
        # Persist both halves before the pair becomes usable
        self.store.set(PRIVATE_KEY, encode_private_key(private_key))
        self.store.set(PUBLIC_KEY, encode_public_key(public_key))
        self._key_pair = IdentityKeyPair(private_key=private_key, public_key=public_key)
        logger.info("Generated new identity key pair")
        return self._key_pair

    @property
    def is_initialized(self) -> bool:
        return self._key_pair is not None

    @property
    def public_key(self) -> Optional[RSAPublicKey]:
        return self._key_pair.public_key if self._key_pair else None

    @property
    def private_key(self) -> Optional[RSAPrivateKey]:
        return self._key_pair.private_key if self._key_pair else None

    def encoded_public_key(self) -> Optional[str]:
        """Shareable base64 public key, or None before initialize()"""
        return self._key_pair.encoded_public_key() if self._key_pair else None

    def require(self) -> IdentityKeyPair:
        """
        Return the key pair for an operation that depends on it.

        Raises:
            NotInitializedError: If initialize() has not completed
        """
        if self._key_pair is None:
            raise NotInitializedError("Identity key pair not initialized")
        return self._key_pair
