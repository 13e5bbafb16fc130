"""
Refresh service: scoped data refresh operations for screens.

Every operation reports failures through the toast presenter and the
caller's ``on_error``; none of them raises.
"""
from typing import Callable, Iterable, Optional

from portal_client.api.auth_client import AuthClient, user_from_payload
from portal_client.core.event_bus import Channels, EventBus, Subscription
from portal_client.models.refresh import RefreshOptions, RefreshRequest, RefreshScope
from portal_client.services.query_cache import USER_QUERY_KEY, QueryCache
from portal_client.services.toast import Toast
from portal_client.state.session_manager import SessionManager
from portal_client.utils.error_translator import error_translator
from portal_client.utils.logger import logger


class RefreshService:
    """Global refresh facade over the query cache and the event bus."""

    def __init__(
        self,
        auth_client: AuthClient,
        session_manager: SessionManager,
        query_cache: QueryCache,
        event_bus: EventBus,
        toast: Toast,
    ):
        self._auth_client = auth_client
        self._session_manager = session_manager
        self._query_cache = query_cache
        self._event_bus = event_bus
        self._toast = toast

    def _succeeded(self, options: RefreshOptions, message: str) -> None:
        if options.show_toast:
            self._toast.success(message)
        if options.on_success:
            options.on_success()

    def _failed(self, options: RefreshOptions, message: str, error: Exception) -> None:
        if options.show_toast:
            self._toast.error(message, error_translator.translate(error))
        if options.on_error:
            try:
                options.on_error(error)
            except Exception as e:
                logger.error(f"Error in refresh on_error callback: {e}")

    def refresh_user_profile(self, options: Optional[RefreshOptions] = None) -> bool:
        """
        Re-fetch the current user and invalidate cached ``user`` queries.

        Returns:
            True if a user came back from the server
        """
        options = options or RefreshOptions()
        try:
            response = self._auth_client.current_user()
            if not response.success:
                raise response.to_error()

            user = user_from_payload(response.payload)
            if user is None:
                return False

            self._session_manager.sync_user(user)
            self._query_cache.invalidate(USER_QUERY_KEY)
            self._succeeded(options, "Profile refreshed successfully")
            return True
        except Exception as e:
            logger.error(f"Error refreshing user profile: {e}")
            self._failed(options, "Failed to refresh profile", e)
            return False

    def refresh_queries(self, query_keys: Iterable[str], options: Optional[RefreshOptions] = None) -> bool:
        """Invalidate the named cached queries only."""
        options = options or RefreshOptions()
        try:
            self._query_cache.invalidate_many(query_keys)
            self._succeeded(options, "Data refreshed successfully")
            return True
        except Exception as e:
            logger.error(f"Error refreshing queries: {e}")
            self._failed(options, "Failed to refresh data", e)
            return False

    def refresh_all_data(self, options: Optional[RefreshOptions] = None) -> bool:
        """Invalidate every cached query and refresh the user profile."""
        options = options or RefreshOptions()
        try:
            self._query_cache.invalidate()
            self.refresh_user_profile(RefreshOptions(show_toast=False))
            self._succeeded(options, "All data refreshed successfully")
            return True
        except Exception as e:
            logger.error(f"Error refreshing all data: {e}")
            self._failed(options, "Failed to refresh data", e)
            return False

    def trigger_global_refresh(self, scope: RefreshScope, options: Optional[RefreshOptions] = None) -> None:
        """Ask every subscribed screen (and the query cache) to reload ``scope``."""
        self._event_bus.emit(
            Channels.GLOBAL_REFRESH_REQUESTED,
            RefreshRequest(scope=scope, options=options or RefreshOptions()),
        )

    def listen(
        self,
        callback: Callable[[RefreshRequest], None],
        scopes: Iterable[RefreshScope] = (RefreshScope.CURRENT_SCREEN,),
    ) -> Subscription:
        """
        Call ``callback`` for global refreshes of the given scopes.

        ALL_DATA requests always match. Unsubscribe through the event bus.
        """
        wanted = frozenset(scopes)

        def handler(request: RefreshRequest) -> None:
            if request.scope in wanted or request.scope is RefreshScope.ALL_DATA:
                callback(request)

        return self._event_bus.subscribe(Channels.GLOBAL_REFRESH_REQUESTED, handler)

    def unlisten(self, subscription: Subscription) -> bool:
        return self._event_bus.unsubscribe(subscription)
