"""
Secure messaging protocol.

Hybrid encryption for chat messages: each message body is encrypted with a
per-peer AES session key, the session key is wrapped with the recipient's RSA
public key, and the plaintext is signed with the sender's identity key. The
envelope carries the sender's public key, so a recipient needs nothing but its
own private key to open it.

Key exchange envelopes deliver a fresh session key ahead of time, signed over
the key's base64 text.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from . import primitives
from .codec import b64decode, b64encode, decode_public_key, encode_symmetric_key
from .envelopes import KeyExchangeEnvelope, PlainEnvelope, SecureEnvelope
from .errors import CryptoError, SignatureInvalid
from .identity import IdentityManager
from .session_store import SessionKeyStore

logger = logging.getLogger(__name__)

UNKNOWN_SENDER = "unknown"


@dataclass(frozen=True)
class DecryptedMessage:
    """
    Result of opening a SecureEnvelope.

    Attributes:
        sender: Sender username from the envelope
        content: Decrypted plaintext
        authentic: Signature verified against the embedded sender key
    """
    sender: str
    content: str
    authentic: bool = True


def _now_millis() -> int:
    return int(time.time() * 1000)


def _public_key(key) -> RSAPublicKey:
    if isinstance(key, str):
        return decode_public_key(key)
    return key


class SecureMessagingProtocol:
    """
    The encryption operations the chat layer calls.

    Every operation needs the identity key pair, so the IdentityManager must
    be initialized first.
    """

    def __init__(self, identity: IdentityManager, session_keys: SessionKeyStore, username: Optional[str] = None):
        """
        Args:
            identity: Owner of our RSA key pair
            session_keys: Peer -> session key map
            username: Our username, written into the `sender` field
        """
        self.identity = identity
        self.session_keys = session_keys
        self.username = username

    def encrypt_for_peer(self, plaintext: str, peer_id: str, peer_public_key) -> SecureEnvelope:
        """
        Encrypt a chat message for one peer.

        Args:
            plaintext: Message text
            peer_id: Peer username (session key slot)
            peer_public_key: Peer's RSA public key, or its base64 encoding

        Returns:
            SecureEnvelope ready for the transport

        Raises:
            NotInitializedError: Identity not loaded yet
            DecodeError: Peer public key is malformed
            CryptoError: Wrapping failed
        """
        key_pair = self.identity.require()
        recipient_key = _public_key(peer_public_key)

        session_key = self.session_keys.get_or_create(peer_id, primitives.generate_symmetric_key)
        payload = primitives.encrypt(plaintext, session_key)
        wrapped = primitives.wrap_key(session_key, recipient_key)
        signature = primitives.sign(plaintext, key_pair.private_key)

        return SecureEnvelope(
            encrypted_payload=payload,
            wrapped_session_key=b64encode(wrapped),
            signature=b64encode(signature),
            sender_public_key=key_pair.encoded_public_key(),
            timestamp=_now_millis(),
            sender=self.username
        )

    def decrypt_envelope(self, envelope: SecureEnvelope) -> DecryptedMessage:
        """
        Open a SecureEnvelope addressed to us.

        The signature is checked over the decrypted plaintext. Only an
        authentic message updates the session key slot for its sender.

        Returns:
            DecryptedMessage marked authentic

        Raises:
            NotInitializedError: Identity not loaded yet
            CryptoError: Unwrap or decryption failed (includes DecodeError)
            SignatureInvalid: Decrypted, but the signature did not verify
        """
        key_pair = self.identity.require()

        session_key = primitives.unwrap_key(b64decode(envelope.wrapped_session_key), key_pair.private_key)
        plaintext_bytes = primitives.decrypt(envelope.encrypted_payload, session_key)
        try:
            plaintext = plaintext_bytes.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CryptoError("Decrypted payload is not UTF-8 text") from e

        sender = envelope.sender or UNKNOWN_SENDER
        sender_key = decode_public_key(envelope.sender_public_key)
        signature = b64decode(envelope.signature)
        if not primitives.verify(plaintext, signature, sender_key):
            raise SignatureInvalid(f"Signature from {sender} did not verify")

        self.session_keys.put(sender, session_key)
        return DecryptedMessage(sender=sender, content=plaintext, authentic=True)

    def create_key_exchange(self, peer_public_key) -> KeyExchangeEnvelope:
        """
        Build a key exchange carrying a fresh session key for one peer.

        Args:
            peer_public_key: Peer's RSA public key, or its base64 encoding

        Raises:
            NotInitializedError: Identity not loaded yet
            DecodeError: Peer public key is malformed
        """
        key_pair = self.identity.require()
        recipient_key = _public_key(peer_public_key)

        session_key = primitives.generate_symmetric_key()
        wrapped = primitives.wrap_key(session_key, recipient_key)
        signature = primitives.sign(encode_symmetric_key(session_key), key_pair.private_key)

        return KeyExchangeEnvelope(
            sender_public_key=key_pair.encoded_public_key(),
            wrapped_session_key=b64encode(wrapped),
            signature=b64encode(signature),
            timestamp=_now_millis(),
            sender=self.username
        )

    def process_key_exchange(self, envelope: KeyExchangeEnvelope) -> bool:
        """
        Accept a session key from a peer.

        Returns:
            True if the key was unwrapped, authenticated and stored; False on
            any failure, in which case the session key store is unchanged
        """
        private_key = self.identity.private_key
        if private_key is None:
            logger.warning("Key exchange received before identity initialization")
            return False

        sender = envelope.sender or UNKNOWN_SENDER
        try:
            session_key = primitives.unwrap_key(b64decode(envelope.wrapped_session_key), private_key)
            sender_key = decode_public_key(envelope.sender_public_key)
            signature = b64decode(envelope.signature)
        except CryptoError as e:
            logger.warning("Key exchange from %s rejected: %s", sender, e)
            return False

        if not primitives.verify(encode_symmetric_key(session_key), signature, sender_key):
            logger.warning("Key exchange from %s rejected: bad signature", sender)
            return False

        self.session_keys.put(sender, session_key)
        logger.info("Session key established with %s", sender)
        return True

    def plain_text(self, content: str) -> PlainEnvelope:
        """Unencrypted, unauthenticated message"""
        return PlainEnvelope(content=content, sender=self.username)
