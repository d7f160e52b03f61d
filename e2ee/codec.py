"""
Key codec.

Converts RSA and AES key material to and from the textual form used on the
wire and in durable storage: standard base64 (no line wrapping) over

- DER SubjectPublicKeyInfo for public keys
- DER PKCS#8 for private keys
- raw bytes for AES keys
"""

import base64
import binascii

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey

from .errors import CryptoError, DecodeError

SYMMETRIC_KEY_LENGTH = 32  # AES-256


def b64encode(data: bytes) -> str:
    """Encode bytes as standard base64 text"""
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    """
    Decode standard base64 text.

    Raises:
        DecodeError: If the text is not valid base64
    """
    if not isinstance(text, str):
        raise DecodeError(f"Expected base64 text, got {type(text).__name__}")
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise DecodeError(f"Invalid base64: {e}") from e


def encode_public_key(public_key: RSAPublicKey) -> str:
    """Serialize an RSA public key to base64 DER (SubjectPublicKeyInfo)"""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return b64encode(der)


def encode_private_key(private_key: RSAPrivateKey) -> str:
    """Serialize an RSA private key to base64 DER (PKCS#8, unencrypted)"""
    der = private_key.private_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    return b64encode(der)


def encode_symmetric_key(key: bytes) -> str:
    """Serialize a raw AES key to base64"""
    if len(key) != SYMMETRIC_KEY_LENGTH:
        raise CryptoError(f"Symmetric key must be {SYMMETRIC_KEY_LENGTH} bytes, got {len(key)}")
    return b64encode(key)


def decode_public_key(text: str) -> RSAPublicKey:
    """
    Deserialize a base64 DER public key.

    Args:
        text: Output of encode_public_key

    Returns:
        RSA public key

    Raises:
        DecodeError: On bad base64, bad DER or a non-RSA key
    """
    der = b64decode(text)
    try:
        key = serialization.load_der_public_key(der)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise DecodeError(f"Invalid public key: {e}") from e
    if not isinstance(key, RSAPublicKey):
        raise DecodeError(f"Expected an RSA public key, got {type(key).__name__}")
    return key


def decode_private_key(text: str) -> RSAPrivateKey:
    """
    Deserialize a base64 DER (PKCS#8) private key.

    Raises:
        DecodeError: On bad base64, bad DER or a non-RSA key
    """
    der = b64decode(text)
    try:
        key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise DecodeError(f"Invalid private key: {e}") from e
    if not isinstance(key, RSAPrivateKey):
        raise DecodeError(f"Expected an RSA private key, got {type(key).__name__}")
    return key


def decode_symmetric_key(text: str) -> bytes:
    """
    Deserialize a base64 AES key.

    Raises:
        DecodeError: On bad base64 or a key that is not 32 bytes
    """
    key = b64decode(text)
    if len(key) != SYMMETRIC_KEY_LENGTH:
        raise DecodeError(f"Symmetric key must be {SYMMETRIC_KEY_LENGTH} bytes, got {len(key)}")
    return key
