"""
Chat session.

Ties the messaging protocol to the transport and the public key directory:
sends plain or encrypted messages, announces session keys when encryption is
switched on, and turns inbound frames into displayable messages.
"""

import logging
from typing import List, Optional

from e2ee import E2EEError, SecureMessagingProtocol
from e2ee.dispatch import ChatMessage, MessageDispatcher
from e2ee.envelopes import TEXT

from .directory import PublicKeyDirectory, UserPublicKey
from .transport import WebSocketTransport

logger = logging.getLogger(__name__)


class ChatSession:
    """
    One logged-in user's view of the chat room.

    Attributes:
        messages: Messages shown to the user, in arrival order
        public_keys: Known peers and their public keys
        encryption_enabled: Whether outgoing messages are encrypted
    """

    def __init__(self, username: str, protocol: SecureMessagingProtocol,
                 transport: WebSocketTransport, directory: PublicKeyDirectory):
        self.username = username
        self.protocol = protocol
        self.transport = transport
        self.directory = directory
        self.dispatcher = MessageDispatcher(protocol)

        self.messages: List[ChatMessage] = []
        self.public_keys: List[UserPublicKey] = []
        self.encryption_enabled = False

    async def start(self) -> bool:
        """Connect the transport and load peer public keys"""
        await self.refresh_public_keys()
        return await self.transport.connect()

    async def refresh_public_keys(self):
        self.public_keys = await self.directory.get_all_public_keys()
        logger.debug("Loaded %d public keys", len(self.public_keys))

    def _peers(self) -> List[UserPublicKey]:
        return [entry for entry in self.public_keys if entry.username != self.username]

    async def send_message(self, content: str) -> bool:
        """
        Send a chat message to the room.

        With encryption on, one SECURE envelope goes to every known peer;
        otherwise a single TEXT envelope is sent. The message is echoed into
        the local history either way.

        Returns:
            True if every frame was handed to the transport
        """
        if not content or not content.strip():
            return False
        content = content.strip()

        if self.encryption_enabled:
            sent = await self._send_secure(content)
        else:
            sent = await self.transport.send(self.protocol.plain_text(content).to_wire())

        self.messages.append(ChatMessage(content=content, sender=self.username, type=TEXT))
        return sent

    async def _send_secure(self, content: str) -> bool:
        all_sent = True
        for peer in self._peers():
            try:
                envelope = self.protocol.encrypt_for_peer(content, peer.username, peer.public_key)
            except E2EEError as e:
                logger.error("Could not encrypt message for %s: %s", peer.username, e)
                all_sent = False
                continue
            if not await self.transport.send(envelope.to_wire()):
                all_sent = False
        return all_sent

    async def toggle_encryption(self) -> bool:
        """
        Flip encryption on or off.

        Turning it on sends a key exchange to every known peer.

        Returns:
            The new state
        """
        self.encryption_enabled = not self.encryption_enabled
        if self.encryption_enabled:
            await self.send_key_exchanges()
        return self.encryption_enabled

    async def send_key_exchanges(self) -> int:
        """
        Send a fresh session key to every known peer.

        Returns:
            Number of key exchanges sent
        """
        sent = 0
        for peer in self._peers():
            try:
                envelope = self.protocol.create_key_exchange(peer.public_key)
            except E2EEError as e:
                logger.error("Could not create key exchange for %s: %s", peer.username, e)
                continue
            if await self.transport.send(envelope.to_wire()):
                sent += 1
        return sent

    def handle_frame(self, frame: str) -> Optional[ChatMessage]:
        """Dispatch one inbound frame and record the resulting message"""
        message = self.dispatcher.handle(frame)
        if message is not None:
            self.messages.append(message)
        return message

    async def receive_loop(self, on_message=None):
        """
        Process inbound frames until the transport closes.

        Args:
            on_message: Optional callback invoked with each ChatMessage
        """
        async for frame in self.transport.frames():
            message = self.handle_frame(frame)
            if message is not None and on_message is not None:
                on_message(message)

    def my_public_key(self) -> Optional[str]:
        return self.protocol.identity.encoded_public_key()

    def clear_messages(self):
        self.messages = []

    async def logout(self):
        """Forget all session keys and close connections"""
        self.protocol.session_keys.clear()
        self.encryption_enabled = False
        await self.transport.close()
        await self.directory.aclose()
