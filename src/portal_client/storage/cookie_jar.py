"""
Cookie jar adapter: mirrors server Set-Cookie headers into local storage
and rebuilds the Cookie header for outgoing requests.
"""
import json
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from threading import Lock
from typing import Dict, List, Optional, Tuple

import requests

from portal_client.core.errors import StorageError
from portal_client.storage.key_value import KeyValueStore
from portal_client.utils.logger import logger

COOKIES_KEY = "cookies"


def parse_set_cookie(header: str) -> Optional[Tuple[str, str, bool]]:
    """
    Parse one Set-Cookie header value.

    Returns:
        (name, value, expired) or None if the header has no name=value pair
    """
    parts = header.split(";")
    pair = parts[0]
    if "=" not in pair:
        return None
    name, value = pair.split("=", 1)
    name, value = name.strip(), value.strip().strip('"')
    if not name:
        return None

    expired = False
    for attribute in parts[1:]:
        attr_name, _, attr_value = attribute.partition("=")
        attr_name = attr_name.strip().lower()
        attr_value = attr_value.strip()
        if attr_name == "max-age":
            try:
                expired = int(attr_value) <= 0
            except ValueError:
                continue
        elif attr_name == "expires" and not expired:
            try:
                expires_at = parsedate_to_datetime(attr_value)
            except (TypeError, ValueError):
                continue
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            expired = expires_at <= datetime.now(timezone.utc)
    return name, value, expired


def set_cookie_headers(response: requests.Response) -> List[str]:
    """All Set-Cookie header values of a response, unfolded."""
    raw_headers = getattr(getattr(response, "raw", None), "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        return list(raw_headers.getlist("Set-Cookie"))
    value = response.headers.get("Set-Cookie")
    return [value] if value else []


class CookieJarAdapter:
    """Name/value cookie store persisted next to the token store."""

    def __init__(self, backend: KeyValueStore):
        self._backend = backend
        self._lock = Lock()
        self._cookies: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        try:
            raw = self._backend.get(COOKIES_KEY)
            if not raw:
                return {}
            cookies = json.loads(raw)
        except (StorageError, ValueError) as e:
            logger.error(f"Error loading cookies: {e}")
            return {}
        return {str(k): str(v) for k, v in cookies.items()} if isinstance(cookies, dict) else {}

    def _persist(self) -> None:
        try:
            if self._cookies:
                self._backend.set(COOKIES_KEY, json.dumps(self._cookies))
            else:
                self._backend.delete(COOKIES_KEY)
        except StorageError as e:
            logger.error(f"Error persisting cookies: {e}")

    def cookies(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._cookies)

    def apply_set_cookie(self, headers: List[str]) -> int:
        """
        Apply Set-Cookie header values to the jar.

        Returns:
            Number of cookies stored or removed
        """
        changed = 0
        with self._lock:
            for header in headers:
                parsed = parse_set_cookie(header)
                if parsed is None:
                    logger.warning("Ignoring malformed Set-Cookie header")
                    continue
                name, value, expired = parsed
                if expired or not value:
                    if self._cookies.pop(name, None) is not None:
                        changed += 1
                else:
                    self._cookies[name] = value
                    changed += 1
            if changed:
                self._persist()
        return changed

    def update_from_response(self, response: requests.Response) -> int:
        headers = set_cookie_headers(response)
        if not headers:
            return 0
        changed = self.apply_set_cookie(headers)
        logger.debug(f"Stored {changed} cookie(s) from response")
        return changed

    def clear(self) -> None:
        with self._lock:
            self._cookies.clear()
            self._persist()
