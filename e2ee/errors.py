"""
Exception hierarchy for the end-to-end encryption subsystem.
"""


class E2EEError(Exception):
    """Base exception for the encryption subsystem"""
    pass


class CryptoError(E2EEError):
    """A cryptographic primitive failed (bad key, tag mismatch, wrong key type)"""
    pass


class DecodeError(CryptoError):
    """Key or ciphertext text encoding is malformed"""
    pass


class SignatureInvalid(CryptoError):
    """
    Raised by the messaging protocol when a signature does not verify.

    The primitive `verify()` itself only ever returns False; this exception is
    how the protocol reports that outcome as a failed message.
    """
    pass


class NotInitializedError(E2EEError):
    """The identity key pair has not been loaded yet"""
    pass


class FrameError(E2EEError):
    """An inbound transport frame could not be parsed into an envelope"""
    pass
