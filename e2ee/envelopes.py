"""
Wire envelopes exchanged over the chat transport.

Every frame is a JSON object carrying a `type` discriminant:

- "TEXT": unauthenticated, unencrypted chat text
- "SECURE": hybrid-encrypted, signed chat text
- "KEY_EXCHANGE": a signed session key wrapped for one recipient

Field names on the wire are camelCase and must stay byte-compatible with
existing peers.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Tag
from pydantic.alias_generators import to_camel

TEXT = "TEXT"
SECURE = "SECURE"
KEY_EXCHANGE = "KEY_EXCHANGE"


class WireModel(BaseModel):
    """Base for immutable models serialized with camelCase field names"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> str:
        """Serialize to a compact JSON text frame"""
        return self.model_dump_json(by_alias=True)


class EncryptedPayload(WireModel):
    """
    AES-GCM output.

    Attributes:
        ciphertext: base64 of ciphertext with the 16-byte tag appended
        nonce: base64 of the 12-byte nonce
    """
    ciphertext: str
    nonce: str


class PlainEnvelope(WireModel):
    """Plain text chat message. Any unrecognised `type` is read as one of these."""
    content: str
    sender: Optional[str] = None
    type: str = TEXT


class SecureEnvelope(WireModel):
    """Self-describing encrypted message; the recipient only needs its own private key"""
    encrypted_payload: EncryptedPayload
    wrapped_session_key: str
    signature: str
    sender_public_key: str
    timestamp: int
    sender: Optional[str] = None
    type: Literal["SECURE"] = SECURE


class KeyExchangeEnvelope(WireModel):
    """Delivers a fresh session key to one peer"""
    sender_public_key: str
    wrapped_session_key: str
    signature: str
    timestamp: int
    sender: Optional[str] = None
    type: Literal["KEY_EXCHANGE"] = KEY_EXCHANGE


def _envelope_tag(value: Any) -> str:
    if isinstance(value, dict):
        kind = value.get("type", TEXT)
    else:
        kind = getattr(value, "type", TEXT)
    return kind if kind in (SECURE, KEY_EXCHANGE) else TEXT


Envelope = Annotated[
    Union[
        Annotated[PlainEnvelope, Tag(TEXT)],
        Annotated[SecureEnvelope, Tag(SECURE)],
        Annotated[KeyExchangeEnvelope, Tag(KEY_EXCHANGE)],
    ],
    Discriminator(_envelope_tag),
]
