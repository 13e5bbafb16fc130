from __future__ import annotations

import pytest
import requests

from portal_client.core.errors import ApiError, AuthError, NetworkError
from portal_client.core.event_bus import Channels
from portal_client.models.credentials import CredentialChannel, TokenPair
from portal_client.storage.token_store import StorageKey

from conftest import Reply


def test_credentials_are_read_at_send_time(client, server, backend) -> None:
    server.access_token = "late-token"
    client.token_store.save_tokens(TokenPair("late-token", "r"))
    client.cookie_jar.apply_set_cookie(["sid=s1"])

    client.http.get("/notes")

    sent = backend.calls("GET", "/notes")[-1]
    assert sent.headers["Authorization"] == "Bearer late-token"
    assert sent.headers["Cookie"] == "sid=s1"
    assert sent.headers["X-Device-ID"] == client.token_store.get(StorageKey.DEVICE_ID)


def test_no_credentials_means_no_auth_headers(make_client, server, backend) -> None:
    client = make_client()

    client.http.get("/notes")

    sent = backend.calls("GET", "/notes")[-1]
    assert "Authorization" not in sent.headers
    assert "Cookie" not in sent.headers
    assert "X-Device-ID" not in sent.headers


def test_caller_headers_are_kept(signed_in, backend) -> None:
    signed_in.http.get("/notes", headers={"X-Trace": "t1"})
    assert backend.calls("GET", "/notes")[-1].headers["X-Trace"] == "t1"


def test_response_stage_persists_body_tokens_and_cookies(client, server) -> None:
    response = client.http.post(
        "/users/login", allow_auth_retry=False, json={"email": "a@b.com", "password": "validpass"}
    )

    assert response.success
    assert client.token_store.get_tokens() == TokenPair("access-1", "refresh-1")
    assert client.cookie_jar.cookies()["accessToken"] == "access-1"


def test_failed_response_does_not_store_tokens(client, backend) -> None:
    backend.route("POST", "/echo", lambda r: Reply(400, {
        "error": "Validation Error",
        "message": "email is required",
        "data": {"accessToken": "should-not-be-stored"},
    }))

    response = client.http.post("/echo", json={})

    assert not response.success
    assert response.status_code == 400
    assert response.title == "Validation Error"
    assert response.error == "email is required"
    assert client.token_store.get(StorageKey.ACCESS_TOKEN) is None
    error = response.to_error()
    assert type(error) is ApiError
    assert error.status_code == 400


def test_error_without_body_gets_status_defaults(client, backend) -> None:
    backend.route("GET", "/boom", lambda r: Reply(503))

    response = client.http.get("/boom")

    assert response.status_code == 503
    assert response.title == "Server Error"
    assert response.error


def test_forbidden_maps_to_auth_error(client, backend) -> None:
    backend.route("GET", "/admin", lambda r: Reply(403, {"error": "Forbidden", "message": "Admins only"}))
    error = client.http.get("/admin").to_error()
    assert isinstance(error, AuthError)
    assert error.title == "Forbidden"


def test_transport_failure_is_a_network_error(client, backend) -> None:
    def unreachable(request):
        raise requests.exceptions.ConnectionError("refused")

    backend.route("GET", "/offline", unreachable)

    response = client.http.get("/offline")

    assert not response.success
    assert response.status_code is None
    assert response.is_network_error
    assert isinstance(response.to_error(), NetworkError)


def test_timeout_is_a_network_error(client, backend) -> None:
    def slow(request):
        raise requests.exceptions.ReadTimeout("read timed out")

    backend.route("GET", "/slow", slow)

    response = client.http.get("/slow")

    assert response.is_network_error
    assert "timed out" in response.error


def test_bearer_only_channel_omits_cookie(make_client, server, backend) -> None:
    client = make_client(channels=["bearer"])
    server.access_token = "a1"
    client.token_store.save_tokens(TokenPair("a1", "r1"))
    client.cookie_jar.apply_set_cookie(["accessToken=a1"])

    client.http.get("/notes")

    sent = backend.calls("GET", "/notes")[-1]
    assert client.http.channels == frozenset({CredentialChannel.BEARER})
    assert sent.headers["Authorization"] == "Bearer a1"
    assert "Cookie" not in sent.headers


def test_cookie_only_channel_omits_bearer(make_client, server, backend) -> None:
    client = make_client(channels=["cookie"])
    client.session.start()
    client.session.login("a@b.com", "validpass")

    response = client.http.get("/notes")

    sent = backend.calls("GET", "/notes")[-1]
    assert "Authorization" not in sent.headers
    assert sent.headers["Cookie"] == "accessToken=access-1; refreshToken=refresh-1"
    assert response.success


def test_loading_channel_toggles_around_requests(signed_in) -> None:
    client = signed_in
    seen = []
    client.event_bus.subscribe(Channels.LOADING_STATE_CHANGED, seen.append)

    client.http.get("/notes")
    client.http.get("/missing")

    assert seen == [True, False, True, False]
    assert client.query_cache.in_flight == 0
    assert client.event_bus.last_value(Channels.LOADING_STATE_CHANGED) is False


def test_absolute_urls_are_used_as_is(signed_in, backend) -> None:
    signed_in.http.get("http://portal.test/api/v1/notes")
    assert backend.calls("GET", "/notes")[-1].url == "http://portal.test/api/v1/notes"


def test_raise_for_error_raises_the_mapped_error(signed_in, backend) -> None:
    backend.route("GET", "/admin", lambda r: Reply(403, {"error": "Forbidden", "message": "Admins only"}))

    ok = signed_in.http.get("/notes")
    assert ok.raise_for_error() is ok

    with pytest.raises(AuthError) as excinfo:
        signed_in.http.get("/admin").raise_for_error()
    assert excinfo.value.status_code == 403
    assert excinfo.value.message == "Admins only"
