"""
Session manager: the authentication state machine seen by the rest of the app.

States move INITIALIZING -> AUTHENTICATED / UNAUTHENTICATED at start-up and
between the latter two on login, logout and refresh outcomes. Listeners get
a fresh ``Session`` snapshot after every change.
"""
from dataclasses import dataclass
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List, Optional

from portal_client.api.auth_client import AuthClient, user_from_payload
from portal_client.api.refresh_coordinator import RefreshCoordinator
from portal_client.core.errors import ApiError, AuthError, RefreshThrottledError
from portal_client.core.refresh_guard import RefreshGuard
from portal_client.models.user import UserProfile
from portal_client.services.toast import Toast
from portal_client.storage.cookie_jar import CookieJarAdapter
from portal_client.storage.token_store import StorageKey, TokenStore
from portal_client.utils.logger import logger


class SessionState(Enum):
    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class Session:
    """Immutable snapshot of the current authentication state."""
    state: SessionState = SessionState.INITIALIZING
    user: Optional[UserProfile] = None
    is_loading: bool = True
    device_id: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED and self.user is not None


class SessionManager:
    """
    Owns the session state and the auth actions that change it.

    ``login`` raises on failure so the UI can show the server's title and
    message; ``logout``, ``refresh_token`` and ``start`` never raise.
    """

    def __init__(
        self,
        auth_client: AuthClient,
        token_store: TokenStore,
        cookie_jar: CookieJarAdapter,
        guard: RefreshGuard,
        coordinator: RefreshCoordinator,
        toast: Optional[Toast] = None,
    ):
        self._auth_client = auth_client
        self._token_store = token_store
        self._cookie_jar = cookie_jar
        self._guard = guard
        self._coordinator = coordinator
        self._toast = toast or Toast()

        self._session = Session()
        self._lock = RLock()
        self._listeners: List[Callable[[Session], None]] = []

        coordinator.add_session_renewed_callback(self._on_session_renewed)
        coordinator.add_refresh_failed_callback(self._on_refresh_failed)

    # State access

    @property
    def session(self) -> Session:
        with self._lock:
            return self._session

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def user(self) -> Optional[UserProfile]:
        return self.session.user

    @property
    def is_authenticated(self) -> bool:
        return self.session.is_authenticated

    @property
    def is_loading(self) -> bool:
        return self.session.is_loading

    @property
    def device_id(self) -> Optional[str]:
        return self.session.device_id

    def add_listener(self, callback: Callable[[Session], None]):
        """Add callback for session changes."""
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[Session], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _update(self, **changes: Any) -> Session:
        with self._lock:
            current = self._session
            values = {
                "state": current.state,
                "user": current.user,
                "is_loading": current.is_loading,
                "device_id": current.device_id,
            }
            values.update(changes)
            if values["user"] is None and values["state"] is SessionState.AUTHENTICATED:
                values["state"] = SessionState.UNAUTHENTICATED
            self._session = Session(**values)
            snapshot = self._session

        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in session listener: {e}")
        return snapshot

    def _authenticated(self, user: UserProfile, device_id: Optional[str]) -> Session:
        return self._update(
            state=SessionState.AUTHENTICATED,
            user=user,
            is_loading=False,
            device_id=device_id,
        )

    def _unauthenticated(self, device_id: Optional[str]) -> Session:
        return self._update(
            state=SessionState.UNAUTHENTICATED,
            user=None,
            is_loading=False,
            device_id=device_id,
        )

    # Lifecycle

    def start(self) -> Session:
        """
        Restore the session persisted by a previous run.

        A cached user is verified against the server. If the server cannot be
        reached the cached user is kept and the session is optimistically
        authenticated; the next authenticated call re-checks it.
        """
        self._update(state=SessionState.INITIALIZING, is_loading=True)

        device_id = self._token_store.get_device_id()
        logger.info(f"Device ID: {device_id}")

        cached_user = self._token_store.get_user()
        if cached_user is None:
            logger.info("No stored user data")
            return self._unauthenticated(device_id)

        logger.info("Found stored user data, verifying authentication status")
        response = self._auth_client.current_user()

        if response.success:
            user = user_from_payload(response.payload)
            if user is None:
                logger.info("User is not authenticated")
                self._token_store.clear_user()
                return self._unauthenticated(device_id)
            logger.info("User is authenticated")
            self._token_store.save_user(user)
            return self._authenticated(user, device_id)

        if isinstance(response.to_error(), AuthError):
            logger.info(f"Stored session rejected by server: {response.error}")
            self._token_store.clear_user()
            return self._unauthenticated(self._token_store.get(StorageKey.DEVICE_ID))

        if self._token_store.get_user() is None:
            # a failed refresh during verification already signed us out
            return self._unauthenticated(self._token_store.get(StorageKey.DEVICE_ID))

        logger.warning(f"Could not verify session ({response.error}); keeping cached user")
        return self._authenticated(cached_user, device_id)

    def login(self, email: str, password: str) -> UserProfile:
        """
        Sign in with email and password.

        Raises:
            AuthError: credentials rejected or account blocked
            NetworkError: the server could not be reached
            ApiError: any other failure
        """
        self._update(is_loading=True)

        device_id = self._token_store.get_device_id()
        response = self._auth_client.login(email, password, device_id)

        user = user_from_payload(response.payload) if response.success else None
        if user is None:
            if response.success:
                error: ApiError = AuthError(
                    (response.data if isinstance(response.data, dict) else {}).get("message") or "No user data received",
                    status_code=response.status_code,
                    title="Login Error",
                )
            else:
                error = response.to_error()
            logger.error(f"Login failed: {error}")
            self._unauthenticated(device_id)
            self._toast.error(error.title, error.message)
            raise error

        # tokens were already stored by the response stage
        self._token_store.save_user(user)
        self._guard.reset()
        self._authenticated(user, device_id)
        logger.info("Login successful")
        self._toast.success("Welcome", f"Signed in as {user.full_name or user.email}")
        return user

    def refresh_token(self) -> bool:
        """
        Proactively renew the credentials.

        Returns:
            True if a refresh ran and succeeded; False if it was throttled or failed
        """
        try:
            self._coordinator.exchange()
            return True
        except RefreshThrottledError:
            logger.info("Token refresh skipped by guard")
            return False
        except ApiError as e:
            logger.error(f"Error refreshing token: {e}")
            return False
        except Exception as e:
            logger.exception(f"Unexpected error refreshing token: {e}")
            return False

    def logout(self) -> None:
        """
        Sign out. The server is told on a best-effort basis; local state is
        always cleared.
        """
        self._update(is_loading=True)

        # get device id before clearing storage
        device_id = self._token_store.get(StorageKey.DEVICE_ID)
        try:
            response = self._auth_client.logout(device_id)
            if response.success:
                logger.info("Logout API call successful")
            else:
                logger.warning(f"Error calling logout API: {response.error}")
        except Exception as e:
            # continue with local logout even if the API call fails
            logger.warning(f"Error calling logout API: {e}")

        self._token_store.clear_all()
        self._cookie_jar.clear()
        self._guard.reset()
        self._unauthenticated(None)
        logger.info("User data cleared")

    def update_user(self, changes: Dict[str, Any]) -> Optional[UserProfile]:
        """
        Merge ``changes`` into the current user locally and persist it.

        Changes the profile cannot hold (an unknown role, say) are rejected
        as a whole and the current user is returned unchanged.

        Returns:
            The updated user, or None when nobody is signed in
        """
        with self._lock:
            current = self._session.user
            if current is None:
                return None
            try:
                updated = current.merged(changes)
            except ValueError as e:
                logger.warning(f"Rejected user update: {e}")
                return current
            self._update(user=updated)
        self._token_store.save_user(updated)
        return updated

    def sync_user(self, user: UserProfile) -> bool:
        """Replace the signed-in user with a fresh server copy."""
        with self._lock:
            if self._session.user is None:
                return False
            self._update(user=user)
        self._token_store.save_user(user)
        return True

    # Refresh coordinator callbacks

    def _on_session_renewed(self, user: UserProfile) -> None:
        self._update(
            state=SessionState.AUTHENTICATED,
            user=user,
            is_loading=False,
        )

    def _on_refresh_failed(self, error: ApiError) -> None:
        logger.warning(f"Session ended after failed token refresh: {error}")
        self.logout()
