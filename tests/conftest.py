from __future__ import annotations

import io
import os
import json
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

os.environ.setdefault("PORTAL_LOG_TO_FILE", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import requests
from requests.adapters import HTTPAdapter
from urllib3._collections import HTTPHeaderDict
from urllib3.response import HTTPResponse

from portal_client.main import build_client
from portal_client.services.toast import Toast
from portal_client.storage.key_value import MemoryStore

BASE_URL = "http://portal.test/api/v1"

STUDENT = {
    "_id": "64f1c2a9e1b2c3d4e5f60718",
    "fullName": "Asha Verma",
    "email": "a@b.com",
    "phoneNumber": "9876543210",
    "role": "student",
    "department": "64f1c2a9e1b2c3d4e5f60001",
    "profilePic": "",
    "rollNumber": "CS-21-044",
    "associations": {
        "courses": ["c1"],
        "sessions": ["s2023"],
        "semesters": ["sem5"],
        "subjects": ["sub1", "sub2"],
    },
    "isVerified": True,
    "isBlocked": False,
    "tokenVersion": 3,
    "loginAttempts": {"count": 0},
    "deviceToken": "",
    "createdAt": "2023-09-01T10:00:00.000Z",
    "updatedAt": "2024-01-15T08:30:00.000Z",
    "__v": 0,
}


@dataclass
class Reply:
    status: int
    body: object = None
    headers: List[Tuple[str, str]] = field(default_factory=list)


class FakeBackend(HTTPAdapter):
    """Transport adapter that answers requests from registered handlers."""

    def __init__(self):
        super().__init__()
        self.routes: Dict[Tuple[str, str], Callable[[requests.PreparedRequest], Reply]] = {}
        self.requests: List[requests.PreparedRequest] = []
        self._lock = threading.Lock()

    def route(self, method: str, path: str, handler: Callable[[requests.PreparedRequest], Reply]):
        self.routes[(method.upper(), path)] = handler

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        with self._lock:
            self.requests.append(request)
        path = urlsplit(request.url).path
        base_path = urlsplit(BASE_URL).path
        if path.startswith(base_path):
            path = path[len(base_path):]

        handler = self.routes.get((request.method, path))
        reply = handler(request) if handler else Reply(404, {"message": "Not found"})

        headers = HTTPHeaderDict()
        headers.add("Content-Type", "application/json")
        for name, value in reply.headers:
            headers.add(name, value)
        content = json.dumps(reply.body).encode() if reply.body is not None else b""
        raw = HTTPResponse(
            body=io.BytesIO(content),
            headers=headers,
            status=reply.status,
            preload_content=False,
            decode_content=False,
        )
        return self.build_response(request, raw)

    def calls(self, method: str, path: str) -> List[requests.PreparedRequest]:
        with self._lock:
            return [
                r for r in self.requests
                if r.method == method.upper() and urlsplit(r.url).path.endswith(path)
            ]


def request_json(request: requests.PreparedRequest) -> dict:
    return json.loads(request.body) if request.body else {}


class FakePortalServer:
    """Minimal portal backend: one user, rotating tokens, protected endpoints."""

    def __init__(self, backend: FakeBackend):
        self.backend = backend
        self.user = dict(STUDENT)
        self.password = "validpass"
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.issued = 0
        self.offline = False
        self.refresh_fails = False
        self.logout_fails = False
        self.refresh_gate: Optional[threading.Event] = None
        self._lock = threading.Lock()

        backend.route("POST", "/users/login", self._guard(self.login))
        backend.route("POST", "/users/refresh-token", self._guard(self.refresh))
        backend.route("POST", "/users/logout", self._guard(self.logout))
        backend.route("GET", "/users/me", self._guard(self.me))
        backend.route("GET", "/notes", self._guard(self.notes))

    def _guard(self, handler):
        def wrapped(request):
            if self.offline:
                raise requests.exceptions.ConnectionError("server unreachable")
            return handler(request)
        return wrapped

    def _issue(self) -> Tuple[str, str]:
        with self._lock:
            self.issued += 1
            self.access_token = f"access-{self.issued}"
            self.refresh_token = f"refresh-{self.issued}"
            return self.access_token, self.refresh_token

    def expire_access_token(self):
        self.access_token = "expired-on-server"

    def presented_token(self, request) -> Optional[str]:
        authorization = request.headers.get("Authorization", "")
        if authorization.startswith("Bearer "):
            return authorization[len("Bearer "):]
        for part in request.headers.get("Cookie", "").split(";"):
            name, _, value = part.strip().partition("=")
            if name == "accessToken":
                return value
        return None

    def is_authorized(self, request) -> bool:
        token = self.presented_token(request)
        return token is not None and token == self.access_token

    def _session_reply(self, status=200) -> Reply:
        access, refresh = self._issue()
        return Reply(
            status,
            {
                "statusCode": status,
                "success": True,
                "message": "OK",
                "data": {"user": self.user, "accessToken": access, "refreshToken": refresh},
            },
            headers=[
                ("Set-Cookie", f"accessToken={access}; Path=/; HttpOnly"),
                ("Set-Cookie", f"refreshToken={refresh}; Path=/; HttpOnly"),
            ],
        )

    def login(self, request):
        body = request_json(request)
        if body.get("email") == self.user["email"] and body.get("password") == self.password:
            return self._session_reply()
        return Reply(401, {"success": False, "error": "Login Error", "message": "Invalid email or password"})

    def refresh(self, request):
        if self.refresh_gate is not None:
            self.refresh_gate.wait(timeout=5)
        body = request_json(request)
        presented = body.get("refreshToken")
        if self.refresh_fails or not presented or presented != self.refresh_token:
            return Reply(401, {"success": False, "error": "Session Expired", "message": "Refresh token revoked"})
        return self._session_reply()

    def logout(self, request):
        if self.logout_fails:
            return Reply(500, {"success": False, "message": "Internal Server Error"})
        return Reply(200, {"success": True, "message": "Logged out"}, headers=[
            ("Set-Cookie", "accessToken=; Path=/; Max-Age=0"),
            ("Set-Cookie", "refreshToken=; Path=/; Max-Age=0"),
        ])

    def me(self, request):
        if not self.is_authorized(request):
            return Reply(401, {"success": False, "error": "Unauthorized", "message": "Access token expired"})
        return Reply(200, {"success": True, "data": self.user})

    def notes(self, request):
        if not self.is_authorized(request):
            return Reply(401, {"success": False, "error": "Unauthorized", "message": "Access token expired"})
        return Reply(200, {"success": True, "data": [{"_id": "n1", "title": "Unit 1"}]})


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def server(backend: FakeBackend) -> FakePortalServer:
    return FakePortalServer(backend)


@pytest.fixture
def storage() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def toasts() -> list:
    return []


@pytest.fixture
def make_client(backend: FakeBackend, storage: MemoryStore, toasts: list):
    created = []

    def factory(**overrides):
        options = {
            "backend": storage,
            "base_url": BASE_URL,
            "adapter": backend,
            "toast": Toast(handler=toasts.append),
        }
        options.update(overrides)
        client = build_client(**options)
        created.append(client)
        return client

    yield factory
    for client in created:
        client.close()


@pytest.fixture
def client(make_client, server):
    client = make_client()
    client.session.start()
    return client


@pytest.fixture
def signed_in(client):
    client.session.login("a@b.com", "validpass")
    return client
