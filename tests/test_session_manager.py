from __future__ import annotations

import pytest

from portal_client.core.errors import AuthError, NetworkError
from portal_client.core.event_bus import Channels
from portal_client.models.credentials import TokenPair
from portal_client.state.session_manager import SessionState
from portal_client.storage.token_store import StorageKey

from conftest import Reply


def test_new_session_starts_unauthenticated_without_network(make_client, server, backend) -> None:
    client = make_client()
    assert client.session.state is SessionState.INITIALIZING
    assert client.session.is_loading

    session = client.session.start()

    assert session.state is SessionState.UNAUTHENTICATED
    assert not session.is_loading
    assert session.device_id
    assert backend.requests == []


def test_login_authenticates_and_notifies_listeners(client, toasts) -> None:
    seen = []
    client.session.add_listener(seen.append)

    user = client.session.login("a@b.com", "validpass")

    assert user.full_name == "Asha Verma"
    assert client.session.is_authenticated
    assert client.session.user == user
    assert seen[0].is_loading
    assert seen[-1].state is SessionState.AUTHENTICATED
    assert seen[-1].user == user
    assert client.token_store.get_tokens() == TokenPair("access-1", "refresh-1")
    assert client.token_store.get_user() == user
    assert toasts[-1].kind == "success"
    assert toasts[-1].title == "Welcome"


def test_removed_listener_is_not_called(client) -> None:
    seen = []
    client.session.add_listener(seen.append)
    client.session.remove_listener(seen.append)

    client.session.login("a@b.com", "validpass")

    assert seen == []


def test_login_sends_device_identity(client, backend) -> None:
    client.session.login("a@b.com", "validpass")

    call = backend.calls("POST", "/users/login")[0]
    assert f'"deviceId": "{client.session.device_id}"'.encode() in call.body
    assert b'"platform"' in call.body


def test_wrong_password_raises_with_server_title(client, server, backend, toasts) -> None:
    with pytest.raises(AuthError) as excinfo:
        client.session.login("a@b.com", "wrong")

    assert excinfo.value.title == "Login Error"
    assert excinfo.value.message == "Invalid email or password"
    assert excinfo.value.status_code == 401
    assert client.session.state is SessionState.UNAUTHENTICATED
    assert not client.session.is_loading
    assert backend.calls("POST", "/users/refresh-token") == []
    assert toasts[-1].kind == "error"
    assert toasts[-1].title == "Login Error"


def test_login_while_offline_raises_network_error(client, server) -> None:
    server.offline = True

    with pytest.raises(NetworkError):
        client.session.login("a@b.com", "validpass")

    assert client.session.state is SessionState.UNAUTHENTICATED


def test_login_without_user_in_reply_is_rejected(client, backend) -> None:
    backend.route("POST", "/users/login", lambda r: Reply(200, {"success": True, "message": "Account pending approval"}))

    with pytest.raises(AuthError) as excinfo:
        client.session.login("a@b.com", "validpass")

    assert excinfo.value.message == "Account pending approval"
    assert client.token_store.get_user() is None


def test_cold_start_with_stored_session_skips_login(signed_in, make_client, backend) -> None:
    restarted = make_client()

    session = restarted.session.start()

    assert session.state is SessionState.AUTHENTICATED
    assert session.user.email == "a@b.com"
    assert session.device_id == signed_in.session.device_id
    assert len(backend.calls("POST", "/users/login")) == 1
    assert len(backend.calls("GET", "/users/me")) == 1


def test_cold_start_offline_keeps_cached_user(signed_in, make_client, server) -> None:
    server.offline = True
    restarted = make_client()

    session = restarted.session.start()

    assert session.state is SessionState.AUTHENTICATED
    assert session.user.full_name == "Asha Verma"
    assert not session.is_loading


def test_cold_start_with_expired_token_refreshes(signed_in, make_client, server, backend) -> None:
    server.expire_access_token()
    restarted = make_client()

    session = restarted.session.start()

    assert session.state is SessionState.AUTHENTICATED
    assert len(backend.calls("POST", "/users/refresh-token")) == 1
    assert restarted.token_store.get_tokens() == TokenPair("access-2", "refresh-2")


def test_cold_start_with_revoked_session_signs_out(signed_in, make_client, server, storage) -> None:
    server.expire_access_token()
    server.refresh_fails = True
    restarted = make_client()

    session = restarted.session.start()

    assert session.state is SessionState.UNAUTHENTICATED
    assert session.user is None
    assert restarted.token_store.get_user() is None
    assert restarted.token_store.get(StorageKey.ACCESS_TOKEN) is None


@pytest.mark.parametrize("failure", ["logout_fails", "offline"])
def test_logout_always_clears_local_state(signed_in, server, storage, failure) -> None:
    setattr(server, failure, True)

    signed_in.session.logout()

    assert signed_in.session.state is SessionState.UNAUTHENTICATED
    assert signed_in.session.user is None
    assert signed_in.session.device_id is None
    for key in StorageKey:
        assert signed_in.token_store.get(key) is None
    assert signed_in.cookie_jar.cookies() == {}
    assert storage.keys() == []


def test_logout_tells_the_server(signed_in, backend) -> None:
    device_id = signed_in.session.device_id

    signed_in.session.logout()

    call = backend.calls("POST", "/users/logout")[0]
    assert call.headers["Authorization"] == "Bearer access-1"
    assert f'"deviceId": "{device_id}"'.encode() in call.body


def test_device_id_is_stable_across_login(client) -> None:
    before = client.session.device_id
    client.session.login("a@b.com", "validpass")

    assert client.session.device_id == before
    assert client.token_store.get_device_id() == before


def test_proactive_refresh_is_throttled(signed_in, backend) -> None:
    assert signed_in.session.refresh_token() is True
    assert signed_in.session.refresh_token() is False
    assert len(backend.calls("POST", "/users/refresh-token")) == 1


def test_failed_proactive_refresh_keeps_session(signed_in, server) -> None:
    server.refresh_fails = True

    assert signed_in.session.refresh_token() is False
    assert signed_in.session.is_authenticated


def test_update_user_is_local_only(signed_in, backend) -> None:
    sent = len(backend.requests)

    updated = signed_in.session.update_user({"fullName": "Asha V."})

    assert updated.full_name == "Asha V."
    assert signed_in.session.user.full_name == "Asha V."
    assert signed_in.token_store.get_user().full_name == "Asha V."
    assert len(backend.requests) == sent


def test_update_user_accepts_attribute_names(signed_in) -> None:
    updated = signed_in.session.update_user({"roll_number": "CS-21-045"})
    assert updated.roll_number == "CS-21-045"
    assert updated.email == "a@b.com"


def test_update_user_when_signed_out(client) -> None:
    assert client.session.update_user({"fullName": "Nobody"}) is None
    assert client.token_store.get_user() is None


def test_reactive_refresh_updates_session_user(signed_in, server) -> None:
    server.user["fullName"] = "Asha Verma-Rao"
    server.expire_access_token()

    signed_in.http.get("/notes")

    assert signed_in.session.user.full_name == "Asha Verma-Rao"
    assert signed_in.session.is_authenticated


def test_loading_indicator_settles_false(signed_in) -> None:
    signed_in.http.get("/notes")
    signed_in.session.refresh_token()

    assert signed_in.query_cache.in_flight == 0
    assert signed_in.event_bus.last_value(Channels.LOADING_STATE_CHANGED) is False


def test_update_user_with_unknown_role_keeps_current_user(signed_in) -> None:
    before = signed_in.session.user

    result = signed_in.session.update_user({"role": "superadmin"})

    assert result == before
    assert signed_in.session.user == before
    assert signed_in.token_store.get_user().is_student
