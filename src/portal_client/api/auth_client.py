"""
Authentication API Client for the College Portal backend.

Wraps the four ``/users`` auth endpoints. None of these calls are allowed
to trigger the 401 refresh-and-replay path themselves.
"""
from typing import Any, Optional

from .base_client import ApiResponse, HttpClient
from portal_client.config.settings import settings
from portal_client.models.user import UserProfile
from portal_client.utils.logger import logger
from portal_client.utils.security import mask_sensitive_data


def user_from_payload(payload: Any) -> Optional[UserProfile]:
    """
    Extract the user from a response ``data`` object.

    Login and refresh wrap it as ``{"user": {...}}``; ``/users/me`` returns
    the user document directly.
    """
    if not isinstance(payload, dict):
        return None
    document = payload.get("user") if isinstance(payload.get("user"), dict) else payload
    if not (document.get("_id") or document.get("id")):
        return None
    try:
        return UserProfile.from_dict(document)
    except ValueError as e:
        logger.error(f"Invalid user data in response: {e}")
        return None


class AuthClient:
    """
    Authentication API client for login, logout, token refresh and profile.
    """

    def __init__(self, http: HttpClient, platform: Optional[str] = None):
        """Initialize authentication client."""
        self._http = http
        self.platform = platform or settings.PLATFORM
        self._endpoints = settings.get_api_endpoints()

    def login(self, email: str, password: str, device_id: str) -> ApiResponse:
        """
        Exchange credentials for a user profile and (optionally) tokens.

        Args:
            email: User's email
            password: User's password
            device_id: This installation's device identity

        Returns:
            ApiResponse; on success ``payload`` holds ``user`` and tokens
        """
        logger.info(f"Attempting login for user: {email} (platform={self.platform})")
        return self._http.post(
            self._endpoints["login"],
            allow_auth_retry=False,
            json={
                "email": email,
                "password": password,
                "deviceId": device_id,
                "platform": self.platform,
            },
        )

    def refresh(self, device_id: str, refresh_token: Optional[str]) -> ApiResponse:
        """
        Mint a new token pair.

        ``refresh_token`` may be None when the server keeps it in a cookie.
        """
        logger.info(
            f"Refreshing token for device {device_id} "
            f"(refresh token {mask_sensitive_data(refresh_token) or 'from cookie'})"
        )
        return self._http.post(
            self._endpoints["refresh"],
            allow_auth_retry=False,
            json={
                "deviceId": device_id,
                "platform": self.platform,
                "refreshToken": refresh_token,
            },
        )

    def logout(self, device_id: Optional[str]) -> ApiResponse:
        """Tell the server this device is signing out."""
        logger.info(f"Logging out with device ID: {device_id}")
        return self._http.post(
            self._endpoints["logout"],
            allow_auth_retry=False,
            json={"deviceId": device_id, "platform": self.platform},
        )

    def current_user(self, allow_auth_retry: bool = True) -> ApiResponse:
        """
        Fetch the signed-in user's profile.

        Unlike the other calls this one may go through refresh-and-replay.
        """
        logger.debug("Fetching current user info")
        return self._http.get(self._endpoints["current_user"], allow_auth_retry=allow_auth_retry)
