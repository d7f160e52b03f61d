"""
Cryptographic Primitives for End-to-End Encryption

This module wraps the primitives used by the hybrid encryption scheme:
- RSA-2048 identity keys, OAEP (SHA-256) for wrapping session keys
- AES-256-GCM for message bodies
- SHA256withRSA (PKCS#1 v1.5) signatures
"""

import os
import hmac
import hashlib
from typing import Tuple, Union

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .codec import SYMMETRIC_KEY_LENGTH, b64decode, b64encode
from .envelopes import EncryptedPayload
from .errors import CryptoError, DecodeError

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537
AES_KEY_SIZE = SYMMETRIC_KEY_LENGTH * 8
GCM_NONCE_LENGTH = 12
GCM_TAG_LENGTH = 16

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None
)


def _to_bytes(message: Union[str, bytes]) -> bytes:
    if isinstance(message, str):
        return message.encode("utf-8")
    return bytes(message)


def generate_asymmetric_keypair() -> Tuple[RSAPrivateKey, RSAPublicKey]:
    """
    Generate an RSA identity keypair.

    Returns:
        Tuple of (private_key, public_key)
    """
    private_key = rsa.generate_private_key(
        public_exponent=RSA_PUBLIC_EXPONENT,
        key_size=RSA_KEY_SIZE
    )
    return private_key, private_key.public_key()


def generate_symmetric_key() -> bytes:
    """Generate a fresh AES-256 session key"""
    return AESGCM.generate_key(bit_length=AES_KEY_SIZE)


def wrap_key(symmetric_key: bytes, recipient_public_key: RSAPublicKey) -> bytes:
    """
    Encrypt a session key's raw bytes for one recipient.

    Args:
        symmetric_key: 32-byte AES key
        recipient_public_key: Recipient's RSA public key

    Returns:
        RSA-OAEP ciphertext

    Raises:
        CryptoError: If the key or input is malformed
    """
    if not isinstance(recipient_public_key, RSAPublicKey):
        raise CryptoError("Recipient key is not an RSA public key")
    if len(symmetric_key) != SYMMETRIC_KEY_LENGTH:
        raise CryptoError(f"Session key must be {SYMMETRIC_KEY_LENGTH} bytes")
    try:
        return recipient_public_key.encrypt(bytes(symmetric_key), _OAEP)
    except ValueError as e:
        raise CryptoError(f"Key wrap failed: {e}") from e


def unwrap_key(wrapped: bytes, own_private_key: RSAPrivateKey) -> bytes:
    """
    Recover a session key wrapped with wrap_key.

    Raises:
        CryptoError: If the ciphertext was not made for this private key,
            is corrupted, or does not hold an AES-256 key
    """
    if not isinstance(own_private_key, RSAPrivateKey):
        raise CryptoError("Own key is not an RSA private key")
    try:
        key = own_private_key.decrypt(bytes(wrapped), _OAEP)
    except ValueError as e:
        raise CryptoError(f"Key unwrap failed: {e}") from e
    if len(key) != SYMMETRIC_KEY_LENGTH:
        raise CryptoError(f"Unwrapped key has wrong length: {len(key)}")
    return key


def encrypt(plaintext: Union[str, bytes], symmetric_key: bytes) -> EncryptedPayload:
    """
    Encrypt a message using AES-256-GCM.

    A new random nonce is drawn for every call.

    Args:
        plaintext: Message to encrypt (str is UTF-8 encoded)
        symmetric_key: 32-byte session key

    Returns:
        EncryptedPayload with base64 ciphertext (tag appended) and nonce
    """
    if len(symmetric_key) != SYMMETRIC_KEY_LENGTH:
        raise CryptoError(f"Session key must be {SYMMETRIC_KEY_LENGTH} bytes")
    nonce = os.urandom(GCM_NONCE_LENGTH)
    ciphertext = AESGCM(symmetric_key).encrypt(nonce, _to_bytes(plaintext), None)
    return EncryptedPayload(ciphertext=b64encode(ciphertext), nonce=b64encode(nonce))


def decrypt(payload: EncryptedPayload, symmetric_key: bytes) -> bytes:
    """
    Decrypt an AES-256-GCM payload.

    Args:
        payload: Output of encrypt()
        symmetric_key: 32-byte session key

    Returns:
        Decrypted plaintext bytes

    Raises:
        CryptoError: If the tag does not verify or the payload is malformed
    """
    if len(symmetric_key) != SYMMETRIC_KEY_LENGTH:
        raise CryptoError(f"Session key must be {SYMMETRIC_KEY_LENGTH} bytes")

    nonce = b64decode(payload.nonce)
    ciphertext = b64decode(payload.ciphertext)
    if len(nonce) != GCM_NONCE_LENGTH:
        raise DecodeError(f"Nonce must be {GCM_NONCE_LENGTH} bytes, got {len(nonce)}")
    if len(ciphertext) < GCM_TAG_LENGTH:
        raise CryptoError("Ciphertext too short")

    try:
        return AESGCM(symmetric_key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise CryptoError("Decryption failed: authentication tag mismatch") from e


def sign(message: Union[str, bytes], private_key: RSAPrivateKey) -> bytes:
    """
    Sign a message with SHA256withRSA.

    Args:
        message: Message to sign (str is UTF-8 encoded)
        private_key: Identity private key

    Returns:
        Signature bytes
    """
    if not isinstance(private_key, RSAPrivateKey):
        raise CryptoError("Signing key is not an RSA private key")
    return private_key.sign(_to_bytes(message), padding.PKCS1v15(), hashes.SHA256())


def verify(message: Union[str, bytes], signature: bytes, public_key: RSAPublicKey) -> bool:
    """
    Verify a SHA256withRSA signature.

    Returns:
        True if valid, False for an invalid signature or any malformed input
    """
    if not isinstance(public_key, RSAPublicKey):
        return False
    try:
        public_key.verify(bytes(signature), _to_bytes(message), padding.PKCS1v15(), hashes.SHA256())
        return True
    except (InvalidSignature, ValueError, TypeError):
        return False


def sha256(data: Union[str, bytes]) -> bytes:
    """SHA-256 digest"""
    return hashlib.sha256(_to_bytes(data)).digest()


def random_bytes(length: int) -> bytes:
    """Cryptographically secure random bytes"""
    return os.urandom(length)


def hash_password(password: str, salt: bytes) -> str:
    """
    Salted SHA-256 password digest.

    Args:
        password: Password text
        salt: Salt bytes, prepended to the password

    Returns:
        base64 digest
    """
    return b64encode(sha256(salt + password.encode("utf-8")))


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """
    Constant-time comparison to prevent timing attacks.

    Args:
        a: First byte string
        b: Second byte string

    Returns:
        True if equal, False otherwise
    """
    return hmac.compare_digest(a, b)
