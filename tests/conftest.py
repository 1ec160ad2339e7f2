import base64
import json
import time
from dataclasses import dataclass, field
from typing import Any

import pytest

from app.backoffice import create_app
from app.backoffice import auth as auth_module
from app.backoffice.models import Base

API_URL = "http://api.test/api"


def make_token(exp_offset: int = 3600, **claims: Any) -> str:
    def _b64(d: dict) -> str:
        return base64.urlsafe_b64encode(json.dumps(d).encode()).rstrip(b"=").decode()

    payload = {"exp": int(time.time()) + exp_offset, **claims}
    return f"{_b64({'alg': 'HS256', 'typ': 'JWT'})}.{_b64(payload)}.signature"


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None) -> None:
        self.status_code = status_code
        if body is None:
            self.text = ""
        elif isinstance(body, str):
            self.text = body
        else:
            self.text = json.dumps(body)
        self.content = self.text.encode()

    def json(self) -> Any:
        return json.loads(self.text)


@dataclass
class Call:
    method: str
    path: str
    params: dict | None = None
    json: Any = None
    data: dict | None = None
    files: dict | None = None
    headers: dict = field(default_factory=dict)

    @property
    def token(self) -> str | None:
        auth = self.headers.get("Authorization") or ""
        return auth[len("Bearer "):] if auth.startswith("Bearer ") else None


class FakeApi:
    """
    Stands in for requests.Session. Routes map (METHOD, path) to a response,
    a list of responses (consumed in order, the last one repeats) or a callable.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Any] = {}
        self.calls: list[Call] = []

    def add(self, method: str, path: str, body: Any = None, status: int = 200) -> None:
        self.routes[(method.upper(), path)] = (status, body)

    def add_sequence(self, method: str, path: str, responses: list[tuple[int, Any]]) -> None:
        self.routes[(method.upper(), path)] = list(responses)

    def add_handler(self, method: str, path: str, handler) -> None:
        self.routes[(method.upper(), path)] = handler

    def calls_to(self, method: str, path: str) -> list[Call]:
        return [c for c in self.calls if c.method == method.upper() and c.path == path]

    def request(self, method, url, params=None, json=None, data=None, files=None, headers=None, timeout=None):
        assert url.startswith(API_URL), url
        call = Call(method.upper(), url[len(API_URL):], params, json, data, files, dict(headers or {}))
        self.calls.append(call)

        route = self.routes.get((call.method, call.path))
        if route is None:
            return FakeResponse(404, {"detail": "Not found."})
        if callable(route):
            result = route(call)
            return result if isinstance(result, FakeResponse) else FakeResponse(*result)
        if isinstance(route, list):
            status, body = route.pop(0) if len(route) > 1 else route[0]
            return FakeResponse(status, body)
        status, body = route
        return FakeResponse(status, body)


@pytest.fixture()
def api():
    return FakeApi()


@pytest.fixture()
def app(tmp_path, monkeypatch, api):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("API_URL", API_URL)
    monkeypatch.setenv("API_RETRIES", "0")
    monkeypatch.setenv("TOKEN_REFRESH_LEEWAY_SECONDS", "5")

    app = create_app()
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    app.extensions["api_client"].session = api
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture(autouse=True)
def _reset_login_attempts():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


@pytest.fixture()
def login(client, api):
    def _login(*, role: str = "admin", exp_offset: int = 3600, refresh: str = "refresh-1", email: str = "admin@example.com"):
        api.add(
            "POST",
            "/dashboard/auth/login/",
            {"access": make_token(exp_offset), "refresh": refresh, "full_name": "Ada Admin", "role": role},
        )
        r = client.post("/auth/login", data={"email": email, "password": "secret1"}, follow_redirects=False)
        assert r.status_code == 302
        return r

    return _login


@pytest.fixture()
def post(client):
    """client.post with the session's CSRF token added to the form."""

    def _post(url: str, data: dict | None = None, **kwargs):
        with client.session_transaction() as sess:
            token = sess.get("csrf_token")
        payload = dict(data or {})
        payload["csrf_token"] = token
        return client.post(url, data=payload, **kwargs)

    return _post
