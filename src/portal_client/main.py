"""
Composition root: builds one wired instance of the session core, plus a
small command line for exercising it against a live backend.
"""
import sys
import time
import argparse
import getpass
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from requests.adapters import HTTPAdapter

from portal_client.api.auth_client import AuthClient
from portal_client.api.base_client import HttpClient
from portal_client.api.refresh_coordinator import RefreshCoordinator
from portal_client.config.settings import settings
from portal_client.core.errors import ApiError
from portal_client.core.event_bus import EventBus
from portal_client.core.refresh_guard import RefreshGuard
from portal_client.models.refresh import RefreshOptions
from portal_client.services.query_cache import QueryCache
from portal_client.services.refresh_service import RefreshService
from portal_client.services.toast import Toast
from portal_client.state.session_manager import SessionManager
from portal_client.storage.cookie_jar import CookieJarAdapter
from portal_client.storage.key_value import EncryptedFileStore, KeyValueStore
from portal_client.storage.token_store import TokenStore
from portal_client.utils.logger import logger
from portal_client.utils.security import Cipher, KeyManager


@dataclass
class PortalClient:
    """Every collaborator of the session core, wired together."""
    event_bus: EventBus
    token_store: TokenStore
    cookie_jar: CookieJarAdapter
    query_cache: QueryCache
    http: HttpClient
    auth_client: AuthClient
    guard: RefreshGuard
    coordinator: RefreshCoordinator
    session: SessionManager
    refresh_service: RefreshService
    toast: Toast

    def close(self):
        self.query_cache.detach()
        self.http.close()


def create_default_backend() -> KeyValueStore:
    """Encrypted on-disk store under the configured portal home."""
    settings.ensure_directories()
    cipher = Cipher(KeyManager().get_key()) if settings.ENCRYPT_LOCAL_DATA else None
    return EncryptedFileStore(settings.STORAGE_FILE, cipher)


def build_client(
    backend: Optional[KeyValueStore] = None,
    base_url: Optional[str] = None,
    adapter: Optional[HTTPAdapter] = None,
    channels: Optional[Iterable[str]] = None,
    sibling_policy: Optional[str] = None,
    min_refresh_interval: Optional[float] = None,
    clock: Callable[[], float] = time.time,
    toast: Optional[Toast] = None,
) -> PortalClient:
    """Create and wire the session core. Call ``session.start()`` afterwards."""
    backend = backend if backend is not None else create_default_backend()

    event_bus = EventBus()
    toast = toast or Toast()
    token_store = TokenStore(backend)
    cookie_jar = CookieJarAdapter(backend)
    query_cache = QueryCache(event_bus)
    query_cache.attach()

    http = HttpClient(
        token_store,
        cookie_jar,
        query_cache=query_cache,
        base_url=base_url,
        channels=channels,
        adapter=adapter,
    )
    auth_client = AuthClient(http)
    guard = RefreshGuard(clock=clock)
    coordinator = RefreshCoordinator(
        http,
        auth_client,
        token_store,
        guard,
        min_interval=min_refresh_interval,
        sibling_policy=sibling_policy,
        clock=clock,
    ).install()
    session = SessionManager(auth_client, token_store, cookie_jar, guard, coordinator, toast=toast)
    refresh_service = RefreshService(auth_client, session, query_cache, event_bus, toast)

    return PortalClient(
        event_bus=event_bus,
        token_store=token_store,
        cookie_jar=cookie_jar,
        query_cache=query_cache,
        http=http,
        auth_client=auth_client,
        guard=guard,
        coordinator=coordinator,
        session=session,
        refresh_service=refresh_service,
        toast=toast,
    )


def _print_session(client: PortalClient) -> None:
    session = client.session.session
    print(f"state:     {session.state.value}")
    print(f"device id: {session.device_id or '-'}")
    if session.user:
        user = session.user
        print(f"user:      {user.full_name} <{user.email}> ({user.role.value})")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="portal-client", description=f"{settings.APP_NAME} session client")
    parser.add_argument("--base-url", default=None, help="API base URL (default from config)")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("status", help="restore and show the stored session")
    login_parser = commands.add_parser("login", help="sign in")
    login_parser.add_argument("email")
    login_parser.add_argument("--password", default=None)
    commands.add_parser("logout", help="sign out and clear local credentials")
    commands.add_parser("refresh", help="renew the access token")
    commands.add_parser("whoami", help="fetch the signed-in user from the server")
    args = parser.parse_args(argv)

    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    client = build_client(base_url=args.base_url)
    try:
        client.session.start()

        if args.command == "login":
            password = args.password or getpass.getpass("Password: ")
            try:
                client.session.login(args.email, password)
            except ApiError as e:
                print(f"{e.title}: {e.message}", file=sys.stderr)
                return 1
        elif args.command == "logout":
            client.session.logout()
        elif args.command == "refresh":
            if not client.session.refresh_token():
                print("Token refresh failed or was throttled", file=sys.stderr)
                return 1
        elif args.command == "whoami":
            if not client.refresh_service.refresh_user_profile(RefreshOptions(show_toast=False)):
                print("Not signed in or profile unavailable", file=sys.stderr)
                return 1

        _print_session(client)
        return 0
    finally:
        client.close()


if __name__ == "__main__":
    sys.exit(main())
