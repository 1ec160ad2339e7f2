"""
Staff identity and the access/refresh token lifecycle.

Tokens issued by the remote API live in the signed Flask session cookie. The
access token is renewed shortly before it expires (and once more if the API
rejects it mid-request); a failed renewal ends the session.
"""
from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from flask import current_app, session

from app.backoffice.api_client import ApiAuthError, ApiClient, ApiError, get_client, rewind_files

logger = logging.getLogger(__name__)

LOGIN_PATH = "/dashboard/auth/login/"
REFRESH_PATH = "/dashboard/auth/refresh/"
REFRESH_ERROR = "RefreshAccessTokenError"

_SESSION_KEYS = (
    "access_token",
    "refresh_token",
    "access_token_expires",
    "user_email",
    "user_name",
    "user_role",
    "user_picture",
)


@dataclass(frozen=True)
class StaffUser:
    email: str
    name: str
    role: str
    profile_pic_url: str | None = None
    is_active: bool = True

    @property
    def initials(self) -> str:
        parts = [p for p in self.name.split() if p]
        if not parts:
            return (self.email[:1] or "?").upper()
        return "".join(p[0] for p in parts[:2]).upper()


def decode_jwt_payload(token: str | None) -> dict[str, Any]:
    """Claims of a JWT without verifying it; `{}` for anything malformed."""
    try:
        payload = (token or "").split(".")[1]
        padded = payload + "=" * (-len(payload) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (IndexError, ValueError, UnicodeError):
        return {}
    return data if isinstance(data, dict) else {}


def access_token_expires(token: str | None) -> int | None:
    """Expiry of an access token in milliseconds since the epoch, if it carries `exp`."""
    exp = decode_jwt_payload(token).get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return int(exp * 1000)


def now_ms() -> int:
    return int(time.time() * 1000)


def needs_refresh(expires_ms: int | None, *, leeway_seconds: int, now: int | None = None) -> bool:
    if not expires_ms:
        return False
    current = now if now is not None else now_ms()
    return current >= expires_ms - leeway_seconds * 1000


def login_with_credentials(client: ApiClient, email: str, password: str) -> dict[str, Any]:
    data = client.post(LOGIN_PATH, json={"email": email, "password": password})
    if not isinstance(data, dict) or not data.get("access"):
        raise ApiError(502, "Login response without access token")
    return data


def start_session(data: dict[str, Any], email: str) -> StaffUser:
    clear_session()
    access = data["access"]
    session["access_token"] = access
    session["refresh_token"] = data.get("refresh")
    session["access_token_expires"] = access_token_expires(access)
    session["user_email"] = email
    session["user_name"] = data.get("full_name") or "User"
    session["user_role"] = data.get("role") or "admin"
    session["user_picture"] = data.get("profile_pic_url")
    return current_staff_user()  # type: ignore[return-value]


def clear_session() -> None:
    for key in _SESSION_KEYS:
        session.pop(key, None)


def current_staff_user() -> StaffUser | None:
    if not session.get("access_token") or not session.get("user_email"):
        return None
    return StaffUser(
        email=session["user_email"],
        name=session.get("user_name") or "User",
        role=session.get("user_role") or "admin",
        profile_pic_url=session.get("user_picture"),
    )


def refresh_session_tokens(client: ApiClient) -> bool:
    refresh = session.get("refresh_token")
    if not refresh:
        logger.warning("Token refresh skipped: missing refresh token")
        return False
    try:
        data = client.post(REFRESH_PATH, json={"refresh": refresh})
    except ApiError as e:
        logger.warning("Token refresh failed (%s): %s", REFRESH_ERROR, e)
        return False

    data = data if isinstance(data, dict) else {}
    access = data.get("access") or session.get("access_token")
    session["access_token"] = access
    if data.get("refresh"):
        session["refresh_token"] = data["refresh"]
    session["access_token_expires"] = access_token_expires(access)
    logger.debug("Access token renewed for %s", session.get("user_email"))
    return True


def ensure_fresh_session(client: ApiClient, *, leeway_seconds: int) -> bool:
    """Renew the access token when it is about to expire. False means the session is over."""
    if not needs_refresh(session.get("access_token_expires"), leeway_seconds=leeway_seconds):
        return True
    return refresh_session_tokens(client)


class UserApi:
    """The API client acting with the signed-in staff user's access token."""

    def __init__(self, client: ApiClient) -> None:
        self.client = client

    def request(self, method: str, path: str, **kwargs: Any) -> Any:
        token = session.get("access_token")
        try:
            return self.client.request(method, path, token=token, **kwargs)
        except ApiAuthError:
            if not token or not refresh_session_tokens(self.client):
                raise
            logger.info("Retrying %s %s after token renewal", method, path)
            rewind_files(kwargs.get("files"))
            return self.client.request(method, path, token=session.get("access_token"), **kwargs)

    def get(self, path: str, **kwargs: Any) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Any:
        return self.request("POST", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Any:
        return self.request("PATCH", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Any:
        return self.request("PUT", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)


def api() -> UserApi:
    return UserApi(get_client(current_app))
