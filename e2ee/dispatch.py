"""
Inbound frame dispatch.

Raw transport text is decoded once into an Envelope and matched on its
concrete type. The result is a ChatMessage ready for display: decrypted text,
a decryption-failure placeholder, or a system notice about a key exchange.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import TypeAdapter, ValidationError

from .envelopes import TEXT, Envelope, KeyExchangeEnvelope, PlainEnvelope, SecureEnvelope
from .errors import CryptoError, FrameError, NotInitializedError
from .protocol import SecureMessagingProtocol

logger = logging.getLogger(__name__)

ERROR = "ERROR"
SYSTEM = "SYSTEM"

DECRYPT_FAILED = "[Failed to decrypt message]"
KEY_EXCHANGE_OK = "[Secure connection established]"
KEY_EXCHANGE_FAILED = "[Key exchange failed]"

_envelope_adapter = TypeAdapter(Envelope)


@dataclass(frozen=True)
class ChatMessage:
    """
    A message as shown to the user.

    Attributes:
        content: Text to display
        sender: Sender username, if known
        type: TEXT, ERROR or SYSTEM
    """
    content: str
    sender: Optional[str] = None
    type: str = TEXT


def parse_frame(text: str) -> Envelope:
    """
    Decode a transport frame into an envelope.

    A frame without a `type` field, or with a type other than SECURE or
    KEY_EXCHANGE, is read as plain text.

    Raises:
        FrameError: If the frame is not JSON or does not match its envelope
    """
    try:
        data = json.loads(text)
    except (ValueError, TypeError, RecursionError) as e:
        raise FrameError(f"Frame is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise FrameError("Frame is not a JSON object")

    try:
        return _envelope_adapter.validate_python(data)
    except ValidationError as e:
        raise FrameError(f"Malformed {data.get('type', TEXT)} frame: {e.error_count()} error(s)") from e


class MessageDispatcher:
    """Routes inbound frames to the messaging protocol"""

    def __init__(self, protocol: SecureMessagingProtocol):
        self.protocol = protocol

    def handle(self, text: str) -> Optional[ChatMessage]:
        """
        Process one inbound frame.

        Returns:
            ChatMessage to display, or None if the frame was malformed and
            dropped
        """
        try:
            envelope = parse_frame(text)
        except FrameError as e:
            logger.warning("Dropping inbound frame: %s", e)
            return None

        if isinstance(envelope, SecureEnvelope):
            return self._handle_secure(envelope)
        elif isinstance(envelope, KeyExchangeEnvelope):
            return self._handle_key_exchange(envelope)
        elif isinstance(envelope, PlainEnvelope):
            return ChatMessage(content=envelope.content, sender=envelope.sender, type=TEXT)
        raise TypeError(f"Unhandled envelope type: {type(envelope).__name__}")

    def _handle_secure(self, envelope: SecureEnvelope) -> ChatMessage:
        try:
            message = self.protocol.decrypt_envelope(envelope)
        except (CryptoError, NotInitializedError) as e:
            logger.warning("Could not decrypt message from %s: %s", envelope.sender, e)
            return ChatMessage(content=DECRYPT_FAILED, sender=envelope.sender, type=ERROR)
        return ChatMessage(content=message.content, sender=message.sender, type=TEXT)

    def _handle_key_exchange(self, envelope: KeyExchangeEnvelope) -> ChatMessage:
        success = self.protocol.process_key_exchange(envelope)
        return ChatMessage(
            content=KEY_EXCHANGE_OK if success else KEY_EXCHANGE_FAILED,
            sender=envelope.sender,
            type=SYSTEM
        )
