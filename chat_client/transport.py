"""
WebSocket transport.

Carries opaque UTF-8 text frames to and from the chat server. Reconnection
is left to the caller.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

import websockets

logger = logging.getLogger(__name__)


class WebSocketTransport:
    """Text-frame transport over a single WebSocket connection"""

    def __init__(self, url: str, token: Optional[str] = None):
        """
        Args:
            url: ws:// or wss:// endpoint
            token: Bearer token sent in the handshake, if any
        """
        self.url = url
        self.token = token
        self.websocket = None

    @property
    def connected(self) -> bool:
        return self.websocket is not None

    async def connect(self) -> bool:
        """
        Open the connection.

        Returns:
            True if connected
        """
        if self.websocket is not None:
            return True

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        try:
            self.websocket = await websockets.connect(self.url, additional_headers=headers)
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            logger.error("WebSocket connection to %s failed: %s", self.url, e)
            return False

        logger.info("Connected to %s", self.url)
        return True

    async def send(self, frame: str) -> bool:
        """
        Send one text frame.

        Returns:
            False if not connected or the connection is closed
        """
        if self.websocket is None:
            return False
        try:
            await self.websocket.send(frame)
            return True
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning("Send failed, connection closed: %s", e)
            return False

    async def frames(self) -> AsyncIterator[str]:
        """Yield inbound text frames until the connection closes"""
        if self.websocket is None:
            return
        try:
            async for frame in self.websocket:
                if isinstance(frame, bytes):
                    frame = frame.decode("utf-8", errors="replace")
                yield frame
        except websockets.exceptions.ConnectionClosed as e:
            logger.info("Connection closed: %s", e)

    async def close(self):
        if self.websocket is not None:
            await self.websocket.close(code=1000, reason="Normal closure")
            self.websocket = None
