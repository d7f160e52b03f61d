"""
End-to-end encryption for CipherTalk chat.

Hybrid scheme:
- RSA-2048 identity keys (OAEP key wrap, SHA256withRSA signatures)
- AES-256-GCM per-peer session keys for message bodies
"""

from .errors import (
    E2EEError,
    CryptoError,
    DecodeError,
    SignatureInvalid,
    NotInitializedError,
    FrameError
)
from .envelopes import (
    EncryptedPayload,
    PlainEnvelope,
    SecureEnvelope,
    KeyExchangeEnvelope,
    Envelope
)
from .identity import IdentityManager, IdentityKeyPair, MemoryStore
from .session_store import SessionKeyStore
from .protocol import SecureMessagingProtocol, DecryptedMessage
from .dispatch import ChatMessage, MessageDispatcher, parse_frame

__all__ = [
    'E2EEError',
    'CryptoError',
    'DecodeError',
    'SignatureInvalid',
    'NotInitializedError',
    'FrameError',
    'EncryptedPayload',
    'PlainEnvelope',
    'SecureEnvelope',
    'KeyExchangeEnvelope',
    'Envelope',
    'IdentityManager',
    'IdentityKeyPair',
    'MemoryStore',
    'SessionKeyStore',
    'SecureMessagingProtocol',
    'DecryptedMessage',
    'ChatMessage',
    'MessageDispatcher',
    'parse_frame'
]
