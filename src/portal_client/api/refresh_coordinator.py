"""
Refresh coordinator: renews credentials when a request comes back 401 and
replays that request once.

All refresh exchanges, reactive or proactive, go through ``exchange`` and
therefore through the same RefreshGuard.
"""
import time
from typing import Callable, List, Optional

from .auth_client import AuthClient, user_from_payload
from .base_client import ApiResponse, HttpClient, PreparedCall
from portal_client.config.settings import settings
from portal_client.core.errors import ApiError, AuthError, RefreshThrottledError
from portal_client.core.refresh_guard import RefreshGuard
from portal_client.models.credentials import TokenPair
from portal_client.models.user import UserProfile
from portal_client.storage.token_store import StorageKey, TokenStore
from portal_client.utils.logger import logger

FAIL_FAST = "fail_fast"
WAIT_AND_REPLAY = "wait_and_replay"


class RefreshCoordinator:
    """
    Serializes token refreshes and replays 401'd requests.

    Sibling policies for a 401 that loses the race for the guard:
    ``fail_fast`` returns the original 401 to its caller;
    ``wait_and_replay`` waits for the running refresh and replays once if
    the stored access token changed since the request was sent.
    """

    def __init__(
        self,
        http: HttpClient,
        auth_client: AuthClient,
        token_store: TokenStore,
        guard: RefreshGuard,
        min_interval: Optional[float] = None,
        sibling_policy: Optional[str] = None,
        wait_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._http = http
        self._auth_client = auth_client
        self._token_store = token_store
        self._guard = guard
        self._min_interval = settings.REFRESH_MIN_INTERVAL if min_interval is None else min_interval
        self.sibling_policy = sibling_policy or settings.REFRESH_SIBLING_POLICY
        if self.sibling_policy not in (FAIL_FAST, WAIT_AND_REPLAY):
            raise ValueError(f"Unknown refresh sibling policy: {self.sibling_policy!r}")
        self._wait_timeout = settings.REFRESH_WAIT_TIMEOUT if wait_timeout is None else wait_timeout
        self._clock = clock

        # Callbacks for refresh outcomes
        self._on_renewed: List[Callable[[UserProfile], None]] = []
        self._on_failed: List[Callable[[ApiError], None]] = []

    @property
    def guard(self) -> RefreshGuard:
        return self._guard

    def install(self) -> "RefreshCoordinator":
        """Register as the HttpClient's 401 handler."""
        self._http.set_unauthorized_handler(self.handle_unauthorized)
        return self

    def add_session_renewed_callback(self, callback: Callable[[UserProfile], None]):
        """Add callback receiving the user returned by a successful refresh."""
        self._on_renewed.append(callback)

    def add_refresh_failed_callback(self, callback: Callable[[ApiError], None]):
        """Add callback for a failed reactive refresh (the session is over)."""
        self._on_failed.append(callback)

    def _fire(self, callbacks: List[Callable], arg) -> None:
        for callback in callbacks:
            try:
                callback(arg)
            except Exception as e:
                logger.error(f"Error in refresh callback: {e}")

    def exchange(self) -> UserProfile:
        """
        Run one guarded refresh exchange.

        Returns:
            The user returned by the server

        Raises:
            RefreshThrottledError: a refresh is running or one finished too recently
            ApiError: the server rejected the refresh or could not be reached
        """
        if not self._guard.try_acquire(self._clock(), self._min_interval):
            raise RefreshThrottledError("Token refresh declined by guard")
        try:
            user = self._perform_exchange()
        finally:
            self._guard.release(self._clock())

        # listeners run outside the guard
        self._fire(self._on_renewed, user)
        return user

    def _perform_exchange(self) -> UserProfile:
        device_id = self._token_store.get(StorageKey.DEVICE_ID)
        if not device_id:
            raise AuthError("No device ID available for token refresh", title="Session Expired")

        refresh_token = self._token_store.get(StorageKey.REFRESH_TOKEN)
        response = self._auth_client.refresh(device_id, refresh_token)
        if not response.success:
            raise response.to_error()

        user = user_from_payload(response.payload)
        if user is None:
            raise AuthError(
                "Token refresh failed - no user data",
                status_code=response.status_code,
                title="Session Expired",
            )

        self._token_store.save_tokens(TokenPair.from_payload(response.payload))
        self._token_store.save_user(user)
        logger.info("Token refresh successful")
        return user

    def handle_unauthorized(self, call: PreparedCall, response: ApiResponse) -> ApiResponse:
        """
        Resolve a 401 for ``call``.

        Returns the replayed request's response, the original 401, or the
        refresh failure, never raising.
        """
        if call.retried:
            return response

        try:
            logger.info(f"Attempting to refresh token after 401 on {call.method} {call.url}")
            self.exchange()
        except RefreshThrottledError:
            if self.sibling_policy == WAIT_AND_REPLAY:
                return self._wait_and_replay(call, response)
            logger.debug(f"Refresh not started, failing {call.method} {call.url}")
            return response
        except ApiError as e:
            logger.error(f"Error during token refresh: {e}")
            self._fire(self._on_failed, e)
            return ApiResponse.from_error(e)

        logger.info("Token refreshed successfully, retrying request")
        call.retried = True
        return self._http.send(call)

    def _wait_and_replay(self, call: PreparedCall, response: ApiResponse) -> ApiResponse:
        if not self._guard.wait_until_released(self._wait_timeout):
            logger.warning(f"Timed out waiting for token refresh; failing {call.url}")
            return response

        current = self._token_store.get(StorageKey.ACCESS_TOKEN)
        if not current or current == call.sent_access_token:
            return response

        logger.info(f"Replaying {call.method} {call.url} with refreshed token")
        call.retried = True
        return self._http.send(call)
