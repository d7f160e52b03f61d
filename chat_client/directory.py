"""
Public key directory client.

Looks up peers' identity public keys on the chat server's REST API.
"""

import logging
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class UserPublicKey(BaseModel):
    """Directory entry: a username and its base64 RSA public key"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str
    public_key: str


class PublicKeyDirectory:
    """Async REST client for the public key endpoints"""

    def __init__(self, base_url: str, token: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        """
        Args:
            base_url: Server base URL, e.g. "http://localhost:8080/"
            token: Bearer token for authenticated requests
            client: Preconfigured client (tests pass one with a mock transport)
            timeout: Request timeout in seconds
        """
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.http_client = client or httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)

    async def get_user_public_key(self, username: str) -> Optional[str]:
        """
        Fetch one user's public key.

        Returns:
            base64 public key, or None if unknown or the request failed
        """
        try:
            response = await self.http_client.get(f"api/users/{username}/public-key")
        except httpx.HTTPError as e:
            logger.warning("Public key lookup for %s failed: %s", username, e)
            return None

        if response.status_code != 200:
            logger.info("No public key for %s (HTTP %d)", username, response.status_code)
            return None

        try:
            return UserPublicKey.model_validate(response.json()).public_key
        except (ValueError, ValidationError) as e:
            logger.warning("Bad public key response for %s: %s", username, e)
            return None

    async def get_all_public_keys(self) -> List[UserPublicKey]:
        """
        Fetch every registered user's public key.

        Returns:
            Directory entries; empty if the request failed
        """
        try:
            response = await self.http_client.get("api/users/public-keys")
        except httpx.HTTPError as e:
            logger.warning("Public key listing failed: %s", e)
            return []

        if response.status_code != 200:
            logger.warning("Public key listing failed (HTTP %d)", response.status_code)
            return []

        try:
            return [UserPublicKey.model_validate(entry) for entry in response.json()]
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning("Bad public key listing: %s", e)
            return []

    async def aclose(self):
        await self.http_client.aclose()
