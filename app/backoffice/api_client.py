from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import requests
from flask import Flask, current_app

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})


class ApiError(RuntimeError):
    def __init__(self, status: int, message: str = "Request failed", details: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return f"HTTP {self.status}: {self.message}"


class ApiAuthError(ApiError):
    pass


class ApiUnavailable(ApiError):
    pass


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    if not params:
        return None
    cleaned: dict[str, Any] = {}
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, (list, tuple)):
            items = [str(v) for v in value if v is not None and v != ""]
            if items:
                cleaned[key] = items
            continue
        cleaned[key] = value
    return cleaned or None


def _decode_body(resp: requests.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def rewind_files(files: dict[str, Any] | None) -> None:
    for value in (files or {}).values():
        stream = value[1] if isinstance(value, tuple) else value
        if hasattr(stream, "seek"):
            stream.seek(0)


@dataclass
class ApiClient:
    base_url: str
    timeout_seconds: int = 30
    retries: int = 2
    session: requests.Session = field(default_factory=requests.Session)

    def url_for(self, path: str) -> str:
        return self.base_url.rstrip("/") + path

    def request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> Any:
        method = method.upper()
        url = self.url_for(path)
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        # Only reads are safe to replay.
        attempts = self.retries + 1 if method == "GET" else 1
        last_err: Exception | None = None
        for attempt in range(attempts):
            started = time.monotonic()
            try:
                resp = self.session.request(
                    method,
                    url,
                    params=_clean_params(params),
                    json=json,
                    data=data,
                    files=files,
                    headers=headers,
                    timeout=self.timeout_seconds,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                last_err = e
                logger.warning("API %s %s transport error (attempt %s/%s): %s", method, path, attempt + 1, attempts, e)
                if attempt + 1 < attempts:
                    time.sleep(min(attempt + 1, 5))
                continue

            elapsed_ms = (time.monotonic() - started) * 1000
            logger.debug("API %s %s -> %s (%.0fms)", method, path, resp.status_code, elapsed_ms)

            if resp.status_code in RETRYABLE_STATUSES and attempt + 1 < attempts:
                last_err = ApiError(resp.status_code, f"Retryable status {resp.status_code}")
                logger.warning("API %s %s returned %s; retrying", method, path, resp.status_code)
                time.sleep(min(attempt + 1, 5))
                continue
            return self._handle(resp, path)

        raise ApiUnavailable(0, f"API request failed after retries: {last_err}")

    def _handle(self, resp: requests.Response, path: str) -> Any:
        status = resp.status_code
        if status == 401:
            raise ApiAuthError(status, "Unauthorized", _decode_body(resp))
        if not 200 <= status < 300:
            raise ApiError(status, "Request failed", _decode_body(resp))
        if status == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise ApiError(status, f"Invalid JSON from API ({path})") from e

    def get(self, path: str, **kwargs: Any) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> Any:
        return self.request("POST", path, **kwargs)

    def put(self, path: str, **kwargs: Any) -> Any:
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str, **kwargs: Any) -> Any:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> Any:
        return self.request("DELETE", path, **kwargs)


def init_api_client(app: Flask) -> ApiClient:
    client = ApiClient(
        base_url=app.config["API_URL"],
        timeout_seconds=int(app.config.get("API_TIMEOUT_SECONDS") or 30),
        retries=int(app.config.get("API_RETRIES") or 0),
    )
    app.extensions["api_client"] = client
    return client


def get_client(app: Flask | None = None) -> ApiClient:
    return (app or current_app).extensions["api_client"]


def error_message(exc: ApiError) -> str:
    """Best single-line explanation of an API failure for flash messages."""
    if isinstance(exc, ApiUnavailable):
        return "The API is unavailable. Try again in a moment."
    details = exc.details
    if isinstance(details, dict):
        for key in ("detail", "message"):
            value = details.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
        for key, value in details.items():
            if isinstance(value, list) and value:
                return f"{key}: {value[0]}"
            if isinstance(value, str) and value.strip():
                return f"{key}: {value.strip()}"
    if isinstance(details, list) and details and isinstance(details[0], str):
        return details[0]
    if isinstance(details, str) and details.strip() and not details.lstrip().startswith("<"):
        return details.strip()[:300]
    return f"Request failed (HTTP {exc.status})."
