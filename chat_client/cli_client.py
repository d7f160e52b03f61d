#!/usr/bin/env python3
"""
CLI Client for End-to-End Encrypted Chat

Provides a command-line interface for:
- First-run identity key generation and durable storage
- Session key exchange with every known peer
- Sending plain or hybrid-encrypted messages to the room
"""

import asyncio
import contextlib
import sys
import getpass
import logging
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout

from e2ee import IdentityManager, SessionKeyStore, SecureMessagingProtocol
from e2ee.dispatch import ChatMessage, ERROR, SYSTEM

from .config import ClientSettings
from .directory import PublicKeyDirectory
from .session import ChatSession
from .storage import EncryptedStorage
from .transport import WebSocketTransport

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  /encrypt - Toggle encryption (sends key exchanges when turned on)
  /key - Show your public key
  /peers - Reload and list peers with public keys
  /clear - Clear the message list
  /quit - Quit application"""


def format_message(message: ChatMessage) -> str:
    sender = message.sender or "?"
    if message.type == SYSTEM:
        return f"[{sender}] {message.content}"
    if message.type == ERROR:
        return f"{sender}: {message.content} (!)"
    return f"{sender}: {message.content}"


async def stop_task(task: asyncio.Task) -> Optional[BaseException]:
    """
    Cancel a background task and wait for it to finish.

    Returns:
        The exception the task died with, or None if it ended cleanly or was
        cancelled
    """
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        try:
            await task
        except Exception as e:
            logger.exception("Background task failed")
            return e
    return None


class ChatClient:
    """
    Interactive terminal front end for a ChatSession.
    """

    def __init__(self, settings: ClientSettings):
        self.settings = settings
        self.storage: Optional[EncryptedStorage] = None
        self.chat: Optional[ChatSession] = None
        self.running = False

    def open(self, username: str, password: str) -> bool:
        """
        Unlock local storage and load (or create) the identity key pair.

        Returns:
            True if ready to connect
        """
        self.storage = EncryptedStorage(username, self.settings.storage_dir)
        if not self.storage.unlock(password):
            print("Failed to unlock storage with this password")
            return False

        identity = IdentityManager(self.storage)
        identity.initialize()
        protocol = SecureMessagingProtocol(identity, SessionKeyStore(), username=username)

        self.chat = ChatSession(
            username=username,
            protocol=protocol,
            transport=WebSocketTransport(self.settings.ws_url, self.settings.auth_token),
            directory=PublicKeyDirectory(
                self.settings.api_base_url,
                token=self.settings.auth_token,
                timeout=self.settings.http_timeout
            )
        )
        return True

    def _print_message(self, message: ChatMessage):
        if message.sender != self.chat.username:
            print(format_message(message))

    async def run_interactive(self):
        """Run interactive chat session"""
        if not await self.chat.start():
            print("Could not connect to server")
            await self.chat.logout()
            return

        self.running = True
        receive_task = asyncio.create_task(self.chat.receive_loop(self._print_message))
        session = PromptSession()

        print(f"Connected as {self.chat.username}. {len(self.chat.public_keys)} public keys loaded.")
        print(HELP_TEXT)
        print()

        try:
            while self.running and not receive_task.done():
                try:
                    lock = "secure" if self.chat.encryption_enabled else "plain"
                    with patch_stdout():
                        user_input = await session.prompt_async(f"[{lock}] > ")

                    if not user_input:
                        continue

                    if user_input.startswith("/"):
                        await self._handle_command(user_input)
                    else:
                        await self.chat.send_message(user_input)

                except KeyboardInterrupt:
                    break
                except EOFError:
                    break

        finally:
            self.running = False
            error = await stop_task(receive_task)
            if error is not None:
                print(f"Connection lost: {error}")
            await self.chat.logout()
            if self.storage:
                self.storage.close()

    async def _handle_command(self, command: str):
        """Handle slash commands"""
        cmd = command.split(maxsplit=1)[0].lower()

        if cmd == "/encrypt":
            enabled = await self.chat.toggle_encryption()
            print("Encryption enabled" if enabled else "Encryption disabled")
        elif cmd == "/key":
            print(self.chat.my_public_key())
        elif cmd == "/peers":
            await self.chat.refresh_public_keys()
            print("Peers with public keys:")
            for entry in self.chat.public_keys:
                if entry.username != self.chat.username:
                    print(f"  - {entry.username}")
        elif cmd == "/clear":
            self.chat.clear_messages()
        elif cmd == "/quit":
            self.running = False
        elif cmd == "/help":
            print(HELP_TEXT)
        else:
            print("Unknown command. Type /help for help.")


async def main():
    """Main entry point"""
    settings = ClientSettings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    print("=" * 50)
    print("CipherTalk Encrypted Chat Client")
    print("=" * 50)
    print()

    username = settings.username or input("Username: ").strip()
    password = settings.storage_password or getpass.getpass("Storage password: ")

    client = ChatClient(settings)
    if client.open(username, password):
        await client.run_interactive()

    print("\nGoodbye!")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)


if __name__ == "__main__":
    run()
