"""
Token store: persisted credentials, device identity and cached user.
"""
import json
import time
import secrets
from enum import Enum
from threading import RLock
from typing import Dict, Optional

from portal_client.config.settings import settings
from portal_client.core.errors import StorageError
from portal_client.models.credentials import TokenPair
from portal_client.models.user import UserProfile
from portal_client.storage.key_value import KeyValueStore
from portal_client.utils.logger import logger


class StorageKey(Enum):
    ACCESS_TOKEN = "accessToken"
    REFRESH_TOKEN = "refreshToken"
    DEVICE_ID = "deviceId"
    USER_DATA = "userData"


def generate_device_id(platform: Optional[str] = None) -> str:
    """Build a new installation identifier: ``<platform>-<epoch ms>-<random>``."""
    platform = platform or settings.PLATFORM
    return f"{platform}-{int(time.time() * 1000)}-{secrets.token_hex(6)}"


class TokenStore:
    """
    Never-failing facade over a KeyValueStore for the four session entries.

    Values written during this process are mirrored in memory and the
    mirror wins over the backend, so a failed disk write still leaves the
    current process consistent.
    """

    def __init__(self, backend: KeyValueStore):
        self._backend = backend
        self._mirror: Dict[StorageKey, Optional[str]] = {}
        self._lock = RLock()

    def get(self, key: StorageKey) -> Optional[str]:
        with self._lock:
            if key in self._mirror:
                return self._mirror[key]
            try:
                value = self._backend.get(key.value)
            except StorageError as e:
                logger.error(f"Error reading {key.value}: {e}")
                return None
            self._mirror[key] = value
            return value

    def set(self, key: StorageKey, value: str) -> None:
        with self._lock:
            self._mirror[key] = value
            try:
                self._backend.set(key.value, value)
            except StorageError as e:
                logger.error(f"Error storing {key.value}, keeping it in memory only: {e}")

    def clear(self, key: StorageKey) -> None:
        with self._lock:
            self._mirror[key] = None
            try:
                self._backend.delete(key.value)
            except StorageError as e:
                logger.error(f"Error clearing {key.value}: {e}")

    def clear_all(self) -> None:
        for key in StorageKey:
            self.clear(key)

    # Tokens

    def get_tokens(self) -> TokenPair:
        return TokenPair(
            access_token=self.get(StorageKey.ACCESS_TOKEN),
            refresh_token=self.get(StorageKey.REFRESH_TOKEN),
        )

    def save_tokens(self, tokens: TokenPair) -> None:
        """Persist whichever halves of the pair are present."""
        if tokens.access_token:
            self.set(StorageKey.ACCESS_TOKEN, tokens.access_token)
            logger.debug("Access token stored")
        if tokens.refresh_token:
            self.set(StorageKey.REFRESH_TOKEN, tokens.refresh_token)
            logger.debug("Refresh token stored")

    def clear_tokens(self) -> None:
        self.clear(StorageKey.ACCESS_TOKEN)
        self.clear(StorageKey.REFRESH_TOKEN)

    # Device identity

    def get_device_id(self) -> str:
        """Return the stored device id, generating and persisting one if absent."""
        with self._lock:
            device_id = self.get(StorageKey.DEVICE_ID)
            if device_id:
                return device_id
            device_id = generate_device_id()
            self.set(StorageKey.DEVICE_ID, device_id)
            logger.info(f"Generated device ID: {device_id}")
            return device_id

    # Cached user

    def get_user(self) -> Optional[UserProfile]:
        raw = self.get(StorageKey.USER_DATA)
        if not raw:
            return None
        try:
            return UserProfile.from_dict(json.loads(raw))
        except ValueError as e:
            logger.error(f"Error getting user data: {e}")
            return None

    def save_user(self, user: UserProfile) -> None:
        self.set(StorageKey.USER_DATA, json.dumps(user.to_dict()))

    def clear_user(self) -> None:
        self.clear(StorageKey.USER_DATA)
