"""
Security utilities for local data protection.
"""
import os
import base64
from pathlib import Path
from typing import Optional

import keyring
import keyring.errors
from cryptography.fernet import Fernet, InvalidToken

from portal_client.config.settings import settings
from portal_client.core.errors import StorageError
from portal_client.utils.logger import logger


class KeyManager:
    """
    Owns the symmetric key protecting the on-device store.

    Uses the system keyring when a backend is available and falls back to a
    key file with restrictive permissions next to the store.
    """

    KEY_NAME = "storage_encryption_key"

    def __init__(self, service_name: Optional[str] = None, key_file: Optional[Path] = None):
        self.service_name = service_name or settings.CREDENTIAL_STORE_SERVICE
        self.key_file = key_file or (settings.CONFIG_DIR / ".key")
        self._key: Optional[bytes] = None

    def get_key(self) -> bytes:
        """Return the encryption key, creating and storing one on first use."""
        if self._key:
            return self._key

        key = self._load_from_keyring() or self._load_key_locally()
        if key is None:
            key = Fernet.generate_key()
            if not self._store_in_keyring(key):
                logger.warning("Keyring not available, using weaker local key storage")
                self._store_key_locally(key)
        self._key = key
        return key

    def _load_from_keyring(self) -> Optional[bytes]:
        try:
            key_b64 = keyring.get_password(self.service_name, self.KEY_NAME)
        except keyring.errors.KeyringError as e:
            logger.debug(f"Keyring lookup failed: {e}")
            return None
        return base64.b64decode(key_b64) if key_b64 else None

    def _store_in_keyring(self, key: bytes) -> bool:
        try:
            keyring.set_password(self.service_name, self.KEY_NAME, base64.b64encode(key).decode())
            return True
        except keyring.errors.KeyringError as e:
            logger.debug(f"Keyring store failed: {e}")
            return False

    def _store_key_locally(self, key: bytes):
        """Store encryption key locally (less secure fallback)."""
        try:
            self.key_file.parent.mkdir(parents=True, exist_ok=True)
            self.key_file.write_text(base64.b64encode(key).decode(), encoding='utf-8')
            # Set restrictive permissions (Unix-like systems)
            if hasattr(os, 'chmod'):
                os.chmod(self.key_file, 0o600)
        except OSError as e:
            logger.error(f"Failed to store encryption key: {e}")

    def _load_key_locally(self) -> Optional[bytes]:
        """Load encryption key from local storage."""
        try:
            if self.key_file.exists():
                return base64.b64decode(self.key_file.read_text(encoding='utf-8').strip())
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load encryption key: {e}")
        return None


class Cipher:
    """Fernet wrapper raising StorageError on failure."""

    def __init__(self, key: bytes):
        self._fernet = Fernet(key)

    def encrypt(self, data: str) -> str:
        return self._fernet.encrypt(data.encode('utf-8')).decode('ascii')

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode('ascii')).decode('utf-8')
        except (InvalidToken, ValueError) as e:
            raise StorageError("Stored value could not be decrypted") from e


def mask_sensitive_data(data: Optional[str], mask_char: str = "*", visible_chars: int = 4) -> str:
    """
    Mask sensitive data for log lines.

    Args:
        data: Sensitive data to mask
        mask_char: Character to use for masking
        visible_chars: Number of characters to show at the end

    Returns:
        Masked string
    """
    if not data or len(data) <= visible_chars:
        return mask_char * len(data) if data else ""

    return mask_char * (len(data) - visible_chars) + data[-visible_chars:]
