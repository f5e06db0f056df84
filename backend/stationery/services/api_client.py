# Overview: HTTP client for the external stationery backend; maps HTTP failures to domain errors.

from __future__ import annotations

import logging
from typing import Any

import httpx

from .concurrency import run_with_retry


class BackendError(Exception):
    """Base class for failures talking to the stationery backend."""

    retryable = False

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BackendUnavailableError(BackendError):
    """Transport failure or 5xx. Safe to retry later."""

    retryable = True


class BackendAuthError(BackendError):
    """401/403: token missing, expired, or lacking the role."""


class BackendNotFoundError(BackendError):
    pass


class BackendRequestError(BackendError):
    """Any other 4xx: the backend rejected the request as invalid."""


# Resource name -> collection path for the plain CRUD screens
RESOURCES = {
    "products": "/products",
    "categories": "/categories",
    "units": "/units",
    "users": "/admin/users",
}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    text = response.text.strip()
    return text[:500] if text else f"HTTP {response.status_code}"


def unwrap(payload: Any) -> Any:
    """
    Strip the backend's response envelopes.

    - ApiResponse: {"success": ..., "message": ..., "data": X} -> X
    - Spring Page: {"content": [...], "totalElements": ...} -> [...]
    """
    if isinstance(payload, dict) and "success" in payload and "data" in payload:
        payload = payload["data"]
    if isinstance(payload, dict) and isinstance(payload.get("content"), list):
        payload = payload["content"]
    return payload


def _window_flag(body: Any) -> bool:
    """`{"open": bool}` from the order window endpoints; a bare boolean is accepted too."""
    if isinstance(body, bool):
        return body
    if not isinstance(body, dict) or not isinstance(body.get("open"), bool):
        raise BackendError(f"Unexpected order window response: {body!r}"[:200])
    return body["open"]


class BackendClient:
    """
    Thin REST client bound to one bearer token.

    GET requests retry on BackendUnavailableError with exponential backoff;
    writes are never retried.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 15.0,
        retry_attempts: int = 3,
        backoff_base: float = 0.2,
        transport: httpx.BaseTransport | None = None,
        logger: logging.Logger | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.backoff_base = backoff_base
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.http = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config, *, token: str | None = None, logger=None) -> "BackendClient":
        return cls(
            config["BACKEND_API_URL"],
            token=token,
            timeout=config.get("BACKEND_TIMEOUT", 15.0),
            retry_attempts=config.get("BACKEND_RETRY_ATTEMPTS", 3),
            backoff_base=config.get("BACKEND_RETRY_BACKOFF", 0.2),
            transport=config.get("BACKEND_TRANSPORT"),
            logger=logger,
        )

    def with_token(self, token: str | None) -> "BackendClient":
        return BackendClient(
            self.base_url,
            token=token,
            timeout=self.timeout,
            retry_attempts=self.retry_attempts,
            backoff_base=self.backoff_base,
            transport=self.transport,
            logger=self.logger,
        )

    def close(self) -> None:
        self.http.close()

    # -------------------- plumbing --------------------

    def _check(self, response: httpx.Response) -> httpx.Response:
        status = response.status_code
        if status < 400:
            return response
        message = _error_message(response)
        if status in (401, 403):
            raise BackendAuthError(message, status_code=status)
        if status == 404:
            raise BackendNotFoundError(message, status_code=status)
        if status >= 500:
            raise BackendUnavailableError(message, status_code=status)
        raise BackendRequestError(message, status_code=status)

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self.http.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            raise BackendUnavailableError(f"{method} {path} failed: {exc}") from exc
        return self._check(response)

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if method != "GET":
            return self._send(method, path, **kwargs)
        return run_with_retry(
            lambda: self._send(method, path, **kwargs),
            retry_on=(BackendUnavailableError,),
            attempts=self.retry_attempts,
            backoff_base=self.backoff_base,
        )

    def _json(self, response: httpx.Response) -> Any:
        if not response.content or not response.content.strip():
            return None
        try:
            return unwrap(response.json())
        except ValueError as exc:
            raise BackendError(
                f"Malformed JSON from {response.request.url}",
                status_code=response.status_code,
            ) from exc

    # -------------------- users --------------------

    def get_current_user(self) -> dict:
        return self._json(self._request("GET", "/users/me"))

    # -------------------- orders --------------------

    def create_order(self, items: list[dict]) -> dict:
        return self._json(self._request("POST", "/orders", json={"items": items}))

    def get_latest_order(self) -> dict | None:
        """The viewer's department's most recent order, or None when it has none."""
        try:
            order = self._json(self._request("GET", "/orders/latest"))
        except BackendNotFoundError:
            return None
        return order or None

    def get_order(self, order_id: int) -> dict:
        return self._json(self._request("GET", f"/orders/{order_id}"))

    def list_my_orders(self, page: int = 0, size: int = 10) -> list[dict]:
        return self._json(self._request("GET", "/orders/mine", params={"page": page, "size": size})) or []

    def list_orders(self) -> list[dict]:
        return self._json(self._request("GET", "/orders")) or []

    def list_pending_orders(self) -> list[dict]:
        return self._json(self._request("GET", "/orders/pending")) or []

    def get_order_items(self, order_id: int) -> list[dict]:
        return self._json(self._request("GET", f"/orders/{order_id}/items")) or []

    def export_order_pdf(self, order_id: int) -> bytes:
        response = self._request("POST", f"/orders/{order_id}/export", headers={"Accept": "application/pdf"})
        return response.content

    def submit_signed(self, order_id: int, content: bytes, filename: str) -> dict | None:
        files = {"file": (filename, content, "application/pdf")}
        return self._json(self._request("PUT", f"/orders/{order_id}/submit-signed", files=files))

    def approve_order(self, order_id: int, admin_comment: str = "") -> dict | None:
        return self._json(
            self._request("PUT", f"/orders/{order_id}/approve", json={"adminComment": admin_comment})
        )

    def reject_order(self, order_id: int, reason: str) -> dict | None:
        return self._json(self._request("PUT", f"/orders/{order_id}/reject", params={"reason": reason}))

    def update_order_comment(self, order_id: int, admin_comment: str) -> dict | None:
        return self._json(
            self._request("PUT", f"/orders/{order_id}", json={"adminComment": admin_comment})
        )

    # -------------------- order window --------------------

    def get_order_window_status(self) -> bool:
        return _window_flag(self._json(self._request("GET", "/orders/order-window/status")))

    def toggle_order_window(self) -> bool:
        return _window_flag(self._json(self._request("POST", "/orders/order-window/toggle")))

    def check_order_period(self) -> dict:
        return self._json(self._request("GET", "/orders/check-period")) or {}

    # -------------------- notifications --------------------

    def list_notifications(self) -> list[dict]:
        return self._json(self._request("GET", "/notifications")) or []

    def mark_notification_read(self, notification_id) -> None:
        self._request("PUT", f"/notifications/{notification_id}/read")

    def mark_all_notifications_read(self) -> None:
        self._request("PUT", "/notifications/mark-all-read")

    def unread_notification_count(self) -> int:
        body = self._json(self._request("GET", "/notifications/unread-count"))
        if isinstance(body, dict):
            return int(body.get("count", 0))
        return int(body or 0)

    # -------------------- catalogue / admin CRUD --------------------

    def _resource_path(self, resource: str) -> str:
        try:
            return RESOURCES[resource]
        except KeyError:
            raise ValueError(f"Unknown resource '{resource}'. Must be one of: {', '.join(sorted(RESOURCES))}")

    def list_resource(self, resource: str, params: dict | None = None) -> list[dict]:
        return self._json(self._request("GET", self._resource_path(resource), params=params)) or []

    def get_resource(self, resource: str, resource_id: int) -> dict:
        return self._json(self._request("GET", f"{self._resource_path(resource)}/{resource_id}"))

    def create_resource(self, resource: str, data: dict) -> dict:
        return self._json(self._request("POST", self._resource_path(resource), json=data))

    def update_resource(self, resource: str, resource_id: int, data: dict) -> dict:
        return self._json(self._request("PUT", f"{self._resource_path(resource)}/{resource_id}", json=data))

    def delete_resource(self, resource: str, resource_id: int) -> None:
        self._request("DELETE", f"{self._resource_path(resource)}/{resource_id}")
