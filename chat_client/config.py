"""
Client settings.

Read from CIPHERTALK_* environment variables or a local .env file.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    # Server
    server_url: str = "http://localhost:8080"
    ws_path: str = "/ws/chat"
    ws_url_override: Optional[str] = Field(default=None, validation_alias="CIPHERTALK_WS_URL")
    http_timeout: float = 10.0  # seconds

    # Account
    username: Optional[str] = None
    auth_token: Optional[str] = None

    # Local storage
    storage_dir: str = "client_data"
    storage_password: Optional[str] = None

    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_prefix="CIPHERTALK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def ws_url(self) -> str:
        """WebSocket URL, derived from server_url unless overridden"""
        if self.ws_url_override:
            return self.ws_url_override
        return self.server_url.replace("http", "ws", 1).rstrip("/") + self.ws_path

    @property
    def api_base_url(self) -> str:
        return self.server_url.rstrip("/") + "/"
