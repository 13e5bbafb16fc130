"""
Base API Client: the shared request/response pipeline.

Every call, including those from domain modules, goes through
``HttpClient.request``. The request stage reads the token store and cookie
jar right before the request is sent; the response stage stores any
cookies or tokens the server hands back.
"""
import json
from dataclasses import dataclass, field
from http.cookiejar import DefaultCookiePolicy
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import RequestException, ConnectionError, Timeout
from urllib3.util.retry import Retry

from portal_client.config.settings import settings
from portal_client.core.errors import ApiError, AuthError, NetworkError
from portal_client.models.credentials import CredentialChannel, Credentials, TokenPair
from portal_client.services.query_cache import QueryCache
from portal_client.storage.cookie_jar import CookieJarAdapter
from portal_client.storage.token_store import StorageKey, TokenStore
from portal_client.utils.error_translator import error_translator
from portal_client.utils.logger import logger


@dataclass
class ApiResponse:
    """Standardized API response container."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    title: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)

    def __bool__(self):
        return self.success

    @property
    def payload(self) -> Any:
        """The ``data`` member of the backend's response envelope."""
        if isinstance(self.data, dict):
            return self.data.get("data")
        return None

    @property
    def is_network_error(self) -> bool:
        return not self.success and self.status_code is None

    def to_error(self) -> ApiError:
        """Build the taxonomy exception describing this failure."""
        message = self.error or "Request failed"
        if self.status_code is None:
            return NetworkError(message, title=self.title or "Network Error")
        payload = self.data if isinstance(self.data, dict) else None
        if self.status_code in (401, 403):
            return AuthError(message, status_code=self.status_code, title=self.title, payload=payload)
        return ApiError(message, status_code=self.status_code, title=self.title, payload=payload)

    @classmethod
    def from_error(cls, error: ApiError) -> "ApiResponse":
        return cls(
            success=False,
            data=error.payload or None,
            error=error.message,
            status_code=error.status_code,
            title=error.title,
        )

    def raise_for_error(self) -> "ApiResponse":
        if not self.success:
            raise self.to_error()
        return self


@dataclass
class PreparedCall:
    """A request as the caller issued it, replayable by the refresh coordinator."""
    method: str
    url: str
    kwargs: Dict[str, Any] = field(default_factory=dict)
    allow_auth_retry: bool = True
    retried: bool = False
    sent_access_token: Optional[str] = None


UnauthorizedHandler = Callable[[PreparedCall, ApiResponse], ApiResponse]


class _NoSessionCookies(DefaultCookiePolicy):
    """Keep requests' own jar empty; CookieJarAdapter is the only cookie channel."""

    def set_ok(self, cookie, request):
        return False


class HttpClient:
    """
    Configured HTTP client for the portal backend.

    Provides request handling with send-time credential injection,
    response-side credential persistence and a hook for 401 handling.
    """

    def __init__(
        self,
        token_store: TokenStore,
        cookie_jar: CookieJarAdapter,
        query_cache: Optional[QueryCache] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        channels: Optional[Iterable[str]] = None,
        adapter: Optional[HTTPAdapter] = None,
    ):
        """Initialize the HTTP client."""
        self._token_store = token_store
        self._cookie_jar = cookie_jar
        self._query_cache = query_cache
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.API_TIMEOUT
        self.channels: FrozenSet[CredentialChannel] = CredentialChannel.parse(
            channels if channels is not None else settings.AUTH_CHANNELS
        )
        self._unauthorized_handler: Optional[UnauthorizedHandler] = None
        self._session = requests.Session()
        self._setup_session(adapter)

    def _setup_session(self, adapter: Optional[HTTPAdapter]):
        """Configure HTTP session; no retry-with-backoff by default."""
        if adapter is None:
            retry_strategy = Retry(
                total=settings.API_RETRY_ATTEMPTS,
                backoff_factor=settings.API_RETRY_DELAY,
                status_forcelist=[502, 503, 504],
                allowed_methods=["HEAD", "GET", "OPTIONS"],
                raise_on_status=False,
            )
            adapter = HTTPAdapter(
                max_retries=retry_strategy,
                pool_connections=10,
                pool_maxsize=20
            )

        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)
        self._session.cookies.set_policy(_NoSessionCookies())

        # Default headers
        self._session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def close(self):
        self._session.close()

    def set_unauthorized_handler(self, handler: Optional[UnauthorizedHandler]):
        """Install the callable consulted when a request comes back 401."""
        self._unauthorized_handler = handler

    @property
    def token_store(self) -> TokenStore:
        return self._token_store

    @property
    def cookie_jar(self) -> CookieJarAdapter:
        return self._cookie_jar

    def current_credentials(self) -> Credentials:
        """Snapshot of both credential channels as stored right now."""
        return Credentials(
            bearer=self._token_store.get_tokens(),
            cookies=self._cookie_jar.cookies(),
        )

    def _build_auth_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        credentials = self.current_credentials()

        if CredentialChannel.BEARER in self.channels:
            authorization = credentials.authorization_header()
            if authorization:
                headers["Authorization"] = authorization

        if CredentialChannel.COOKIE in self.channels:
            cookie = credentials.cookie_header()
            if cookie:
                headers["Cookie"] = cookie

        device_id = self._token_store.get(StorageKey.DEVICE_ID)
        if device_id:
            headers[settings.DEVICE_ID_HEADER] = device_id
        return headers

    def _resolve_url(self, endpoint: str) -> str:
        # Handle both full URLs and relative paths
        if endpoint.startswith('http://') or endpoint.startswith('https://'):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def send(self, call: PreparedCall) -> ApiResponse:
        """
        Send one HTTP exchange for ``call`` with freshly read credentials.

        Never raises for HTTP or transport failures; they are reported in the
        returned ApiResponse.
        """
        kwargs = dict(call.kwargs)
        auth_headers = self._build_auth_headers()
        headers = {**auth_headers, **(kwargs.pop("headers", None) or {})}
        kwargs.setdefault("timeout", self.timeout)

        # Convert data to JSON if present
        if 'data' in kwargs and not isinstance(kwargs['data'], (str, bytes)):
            kwargs['data'] = json.dumps(kwargs['data'])

        authorization = headers.get("Authorization", "")
        call.sent_access_token = authorization[len("Bearer "):] if authorization.startswith("Bearer ") else None

        try:
            logger.debug(f"Request: {call.method} {call.url}")
            response = self._session.request(call.method, call.url, headers=headers, **kwargs)
        except Timeout as e:
            logger.error(f"Timeout for {call.method} {call.url}: {e}")
            return ApiResponse(
                success=False,
                error=error_translator.ERROR_MESSAGES["timeout"],
                title="Network Error",
            )
        except ConnectionError as e:
            logger.error(f"Connection error for {call.method} {call.url}: {e}")
            return ApiResponse(
                success=False,
                error=error_translator.ERROR_MESSAGES["connection_error"],
                title="Network Error",
            )
        except RequestException as e:
            logger.error(f"Request error for {call.method} {call.url}: {e}")
            return ApiResponse(success=False, error=str(e), title="Network Error")

        return self._handle_response(call, response)

    def _handle_response(self, call: PreparedCall, response: requests.Response) -> ApiResponse:
        self._cookie_jar.update_from_response(response)

        # Parse response
        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"message": response.text}

        headers = dict(response.headers)

        if response.ok:
            if isinstance(data, dict):
                tokens = TokenPair.from_payload(data.get("data"))
                if not tokens.is_empty:
                    self._token_store.save_tokens(tokens)
            logger.debug(f"Response: {response.status_code} {call.url}")
            return ApiResponse(
                success=True,
                data=data,
                status_code=response.status_code,
                headers=headers,
            )

        title, message = error_translator.from_response(response.status_code, data)
        logger.warning(f"Response Error: {response.status_code} {call.method} {call.url}: {message}")
        return ApiResponse(
            success=False,
            data=data,
            error=message,
            status_code=response.status_code,
            title=title,
            headers=headers,
        )

    def request(
        self,
        method: str,
        endpoint: str,
        allow_auth_retry: bool = True,
        **kwargs
    ) -> ApiResponse:
        """
        Make an HTTP request through the full pipeline.

        Args:
            method: HTTP method
            endpoint: API endpoint, relative to the base URL or absolute
            allow_auth_retry: Let a 401 trigger refresh-and-replay
            **kwargs: Additional ``requests`` arguments

        Returns:
            ApiResponse object
        """
        call = PreparedCall(
            method=method.upper(),
            url=self._resolve_url(endpoint),
            kwargs=kwargs,
            allow_auth_retry=allow_auth_retry,
        )

        if self._query_cache is None:
            return self._dispatch(call)
        with self._query_cache.tracking():
            return self._dispatch(call)

    def _dispatch(self, call: PreparedCall) -> ApiResponse:
        response = self.send(call)
        if (
            response.status_code == 401
            and call.allow_auth_retry
            and self._unauthorized_handler is not None
        ):
            return self._unauthorized_handler(call, response)
        return response

    def get(self, endpoint: str, **kwargs) -> ApiResponse:
        """Make GET request."""
        return self.request("GET", endpoint, **kwargs)

    def post(self, endpoint: str, **kwargs) -> ApiResponse:
        """Make POST request."""
        return self.request("POST", endpoint, **kwargs)

    def put(self, endpoint: str, **kwargs) -> ApiResponse:
        """Make PUT request."""
        return self.request("PUT", endpoint, **kwargs)

    def patch(self, endpoint: str, **kwargs) -> ApiResponse:
        """Make PATCH request."""
        return self.request("PATCH", endpoint, **kwargs)

    def delete(self, endpoint: str, **kwargs) -> ApiResponse:
        """Make DELETE request."""
        return self.request("DELETE", endpoint, **kwargs)
