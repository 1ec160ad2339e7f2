import hmac
import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_FIELD = "csrf_token"


def ensure_csrf_token() -> str:
    """Per-session form token, created on first use."""
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def validate_csrf(req: Request) -> bool:
    # Multipart lesson uploads carry the token as a regular form field too.
    sent = req.form.get(CSRF_FIELD) or req.headers.get("X-CSRF-Token")
    expected = session.get(CSRF_SESSION_KEY)
    return bool(sent and expected and hmac.compare_digest(str(sent), str(expected)))


def safe_next_path(nxt: str | None) -> str | None:
    """Local path to return to after login, or None for anything that could leave the site."""
    nxt = (nxt or "").strip()
    if not nxt.startswith("/") or nxt.startswith("//") or "\\" in nxt:
        return None
    return nxt
