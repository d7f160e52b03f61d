"""
In-memory session key store.

Maps a peer username to the AES session key currently used with that peer.
Keys live for the process lifetime only and are never persisted.
"""

import threading
from typing import Callable, Dict, List, Optional


class SessionKeyStore:
    """
    Lock-guarded peer -> session key map.

    Shared by the inbound dispatch path, the outbound send path and logout,
    so every operation is atomic. One slot per peer holds whichever key was
    most recently generated for, or accepted from, that peer.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: Dict[str, bytes] = {}

    def get(self, peer_id: str) -> Optional[bytes]:
        with self._lock:
            return self._keys.get(peer_id)

    def get_or_create(self, peer_id: str, factory: Callable[[], bytes]) -> bytes:
        """
        Return the key for a peer, creating it with `factory` if absent.

        The check and the insert happen under one lock acquisition, so two
        concurrent senders never end up with different keys for one peer.
        """
        with self._lock:
            key = self._keys.get(peer_id)
            if key is None:
                key = factory()
                self._keys[peer_id] = key
            return key

    def put(self, peer_id: str, key: bytes):
        with self._lock:
            self._keys[peer_id] = key

    def clear(self):
        """Drop every key (logout)"""
        with self._lock:
            self._keys.clear()

    def peers(self) -> List[str]:
        with self._lock:
            return list(self._keys)

    def __contains__(self, peer_id: str) -> bool:
        with self._lock:
            return peer_id in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
