"""
HTTP client for the CRM REST API.

Wraps a `requests.Session` with bearer-token injection, a single
refresh-and-retry on 401 and uniform `ApiError` failures.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Mapping, Optional

import requests

from crm_api.endpoints import USER, build_url
from crm_api.errors import (
    MALFORMED_RESPONSE_MESSAGE,
    NETWORK_ERROR_MESSAGE,
    ApiError,
    SessionExpiredError,
    api_error,
)
from crm_api.token_storage import TokenStore

logger = logging.getLogger(__name__)

LOGOUT_REASON_TOKEN_EXPIRED = "token_expired"

LogoutListener = Callable[[str], None]

_NO_BODY = object()


class ApiClient:
    """Authenticated JSON client bound to one API base URL."""

    def __init__(
        self,
        base_url: str,
        token_store: TokenStore,
        *,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = 30.0,
        refresh_path: str = USER["REFRESH_TOKEN"],
    ):
        self.base_url = base_url.rstrip("/")
        self.token_store = token_store
        self.session = session or requests.Session()
        self.timeout = timeout
        self.refresh_path = refresh_path
        self._refresh_lock = threading.Lock()
        self._logout_listeners: list[LogoutListener] = []

    # Listeners

    def add_logout_listener(self, listener: LogoutListener) -> None:
        self._logout_listeners.append(listener)

    def remove_logout_listener(self, listener: LogoutListener) -> None:
        if listener in self._logout_listeners:
            self._logout_listeners.remove(listener)

    def _notify_logout(self, reason: str) -> None:
        for listener in list(self._logout_listeners):
            try:
                listener(reason)
            except Exception:
                logger.exception("Logout listener %r failed", listener)

    # Verbs

    def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, body: Any = None) -> Any:
        return self.request("POST", path, body=body)

    def put(self, path: str, body: Any = None) -> Any:
        return self.request("PUT", path, body=body)

    def patch(self, path: str, body: Any = None) -> Any:
        return self.request("PATCH", path, body=body)

    def delete(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        return self.request("DELETE", path, params=params)

    def upload(
        self,
        path: str,
        files: Mapping[str, Any],
        data: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """
        POST multipart form data.

        Single attempt with no refresh: file streams in `files` are consumed by
        the first send and cannot be replayed.
        """
        url = self.url_for(path)
        logger.debug("[API] POST %s (upload)", url)
        try:
            response = self.session.post(
                url,
                files=files,
                data=data,
                headers=self._auth_headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("[API] Network error for POST %s: %s", url, exc)
            raise ApiError(NETWORK_ERROR_MESSAGE, 0) from exc

        if not response.ok:
            try:
                payload = response.json()
            except ValueError:
                payload = {}
            message = "Upload failed"
            if isinstance(payload, dict):
                message = payload.get("errorMessage") or message
            raise api_error(message, response.status_code)

        return self._parse_body(response)

    # Core

    def url_for(self, path: str, params: Optional[Mapping[str, Any]] = None) -> str:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        return build_url(url, params)

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = _NO_BODY,
    ) -> Any:
        url = self.url_for(path, params)

        access_token = self.token_store.get_access_token()
        response = self._send(method, url, body, access_token)

        if response.status_code == 401:
            if self._refresh_access_token(access_token):
                response = self._send(
                    method, url, body, self.token_store.get_access_token()
                )
            else:
                self.token_store.clear_tokens()
                self._notify_logout(LOGOUT_REASON_TOKEN_EXPIRED)
                raise SessionExpiredError()

        data = self._parse_body(response)
        logger.debug(
            "[API] %s %s %s -> %s",
            "ok" if response.ok else "failed",
            method,
            url,
            response.status_code,
        )

        if not response.ok:
            message = f"Request failed with status {response.status_code}"
            error_code = None
            if isinstance(data, dict):
                message = data.get("errorMessage") or data.get("message") or message
                error_code = data.get("errorCode")
            raise api_error(message, response.status_code, error_code)

        return data

    def _auth_headers(self, access_token: Optional[str] = None) -> dict:
        token = access_token or self.token_store.get_access_token()
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    def _send(
        self, method: str, url: str, body: Any, access_token: Optional[str]
    ) -> requests.Response:
        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        kwargs: dict = {"headers": headers, "timeout": self.timeout}
        if body is not _NO_BODY:
            kwargs["json"] = body

        logger.debug("[API] %s %s", method, url)
        try:
            return self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            logger.error("[API] Network error for %s %s: %s", method, url, exc)
            raise ApiError(NETWORK_ERROR_MESSAGE, 0) from exc

    @staticmethod
    def _parse_body(response: requests.Response) -> Any:
        content_type = response.headers.get("Content-Type") or ""
        if "application/json" not in content_type:
            return response.text
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(MALFORMED_RESPONSE_MESSAGE, 500) from exc

    def _refresh_access_token(self, stale_token: Optional[str]) -> bool:
        """
        Exchange the refresh token for a new pair.

        Serialized across threads: a caller that finds the access token already
        rotated since its request went out reuses the new token instead of
        spending the refresh token again.
        """
        with self._refresh_lock:
            current = self.token_store.get_access_token()
            if current and current != stale_token:
                return True

            refresh_token = self.token_store.get_refresh_token()
            if not refresh_token:
                return False

            try:
                response = self.session.post(
                    self.url_for(self.refresh_path),
                    json={"refreshToken": refresh_token},
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                logger.warning("Token refresh failed: %s", exc)
                self.token_store.clear_tokens()
                return False

            if not response.ok:
                logger.warning("Token refresh rejected with status %s", response.status_code)
                self.token_store.clear_tokens()
                return False

            try:
                payload = response.json()
            except ValueError:
                logger.warning("Token refresh returned a malformed body")
                self.token_store.clear_tokens()
                return False

            result = payload.get("result") if isinstance(payload, dict) else None
            if (
                not isinstance(payload, dict)
                or payload.get("isError")
                or not isinstance(result, dict)
                or not result.get("accessToken")
                or not result.get("refreshToken")
            ):
                logger.warning("Token refresh returned no tokens")
                self.token_store.clear_tokens()
                return False

            self.token_store.set_tokens(
                result["accessToken"],
                result["refreshToken"],
                remember=self.token_store.is_remembered(),
            )
            return True
