"""
Encrypted local storage for the chat client.

A durable key-value store for settings such as the identity key pair and the
auth token. Values are encrypted on disk with a key derived from the user's
password.
"""

import os
import sqlite3
import logging
from typing import Optional
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
NONCE_LENGTH = 12
KDF_ITERATIONS = 100000
PASSWORD_CHECK = "password_check"


class StorageLockedError(Exception):
    """Raised when the store is used before unlock()"""
    pass


class EncryptedStorage:
    """
    Encrypted SQLite key-value store, one database per user.

    set() commits before returning, so a value is durable once the call
    completes.
    """

    def __init__(self, username: str, storage_dir: str = "client_data"):
        """
        Initialize encrypted storage.

        Args:
            username: Username for this storage
            storage_dir: Directory to store encrypted data
        """
        self.username = username
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        self.db_path = self.storage_dir / f"{username}.db"
        self.salt_path = self.storage_dir / f"{username}.salt"
        self.encryption_key: Optional[bytes] = None
        self.db: Optional[sqlite3.Connection] = None

    def derive_key(self, password: str, salt: bytes) -> bytes:
        """
        Derive encryption key from password using PBKDF2.

        Args:
            password: User's password
            salt: Salt for key derivation

        Returns:
            32-byte encryption key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return kdf.derive(password.encode())

    def unlock(self, password: str) -> bool:
        """
        Unlock storage with password.

        A new store is created on first use. For an existing store the
        password is checked against a stored marker value.

        Args:
            password: User's password

        Returns:
            True if unlocked, False for a wrong password or a missing salt
        """
        if not self.db_path.exists():
            salt = os.urandom(SALT_LENGTH)
            with open(self.salt_path, "wb") as f:
                f.write(salt)

            self.encryption_key = self.derive_key(password, salt)
            self._init_database()
            self.set(PASSWORD_CHECK, self.username)
            logger.info("Created encrypted storage at %s", self.db_path)
            return True

        if not self.salt_path.exists():
            logger.error("Salt file missing for %s", self.db_path)
            return False

        with open(self.salt_path, "rb") as f:
            salt = f.read()

        self.encryption_key = self.derive_key(password, salt)
        self._init_database()

        if self.get(PASSWORD_CHECK) != self.username:
            logger.warning("Wrong password for storage %s", self.db_path)
            self.close()
            self.encryption_key = None
            return False
        return True

    def _init_database(self):
        """Initialize SQLite database"""
        self.db = sqlite3.connect(str(self.db_path))
        cursor = self.db.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                encrypted_value BLOB NOT NULL
            )
        """)
        self.db.commit()

    def _require_unlocked(self) -> sqlite3.Connection:
        if not self.encryption_key or not self.db:
            raise StorageLockedError("Storage not unlocked")
        return self.db

    def _encrypt(self, data: bytes) -> bytes:
        """Encrypt data with storage key"""
        nonce = os.urandom(NONCE_LENGTH)
        aesgcm = AESGCM(self.encryption_key)
        return nonce + aesgcm.encrypt(nonce, data, None)

    def _decrypt(self, encrypted_data: bytes) -> bytes:
        """Decrypt data with storage key"""
        nonce = encrypted_data[:NONCE_LENGTH]
        ciphertext = encrypted_data[NONCE_LENGTH:]
        aesgcm = AESGCM(self.encryption_key)
        return aesgcm.decrypt(nonce, ciphertext, None)

    def get(self, key: str) -> Optional[str]:
        """
        Read a setting.

        Returns:
            The stored value, or None if absent or unreadable
        """
        db = self._require_unlocked()
        cursor = db.cursor()
        cursor.execute("SELECT encrypted_value FROM settings WHERE key = ?", (key,))
        result = cursor.fetchone()
        if not result:
            return None

        try:
            return self._decrypt(result[0]).decode()
        except (InvalidTag, ValueError) as e:
            logger.warning("Stored value for %r could not be decrypted: %s", key, e)
            return None

    def set(self, key: str, value: str):
        """Write a setting and commit it"""
        db = self._require_unlocked()
        encrypted = self._encrypt(value.encode())
        cursor = db.cursor()
        cursor.execute(
            "INSERT OR REPLACE INTO settings (key, encrypted_value) VALUES (?, ?)",
            (key, encrypted)
        )
        db.commit()

    def delete(self, key: str):
        """Remove a setting"""
        db = self._require_unlocked()
        db.execute("DELETE FROM settings WHERE key = ?", (key,))
        db.commit()

    def close(self):
        """Close database connection"""
        if self.db:
            self.db.close()
            self.db = None
