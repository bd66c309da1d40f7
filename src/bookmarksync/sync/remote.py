"""
Remote blob store -- the client's view of the sync server.

Thin wrapper over the HTTP API. Every transport or unexpected-status
failure is translated into the shared error taxonomy so the sync engine
never handles a ``requests`` exception directly. No retries here; the
next scheduled attempt is the retry policy.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from ..errors import (
    BadRequest,
    BookmarkSyncError,
    InvalidId,
    LengthRequired,
    NetworkFailure,
    NotFound,
    PayloadTooLarge,
    RateLimited,
)
from ..timefmt import from_http_date, from_wire

logger = logging.getLogger("bookmarksync.sync.remote")

# server error "kind" -> client exception
ERRORS_BY_KIND: Dict[str, type[BookmarkSyncError]] = {
    cls.kind: cls
    for cls in (BadRequest, InvalidId, LengthRequired, NotFound, PayloadTooLarge, RateLimited)
}

DEFAULT_TIMEOUT = 30
SYNC_MODIFIED_HEADER = "X-Sync-Modified"


class RemoteStore:
    """HTTP client for one BookmarkSync server.

    Args:
        server_url: Base URL, e.g. ``https://sync.example.com``.
        timeout: Per-request timeout in seconds.
        session: Optional ``requests.Session`` to reuse.
    """

    def __init__(
        self,
        server_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.server_url}{path}"
        try:
            return self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise NetworkFailure(f"{method} {path}: {exc}") from exc

    @staticmethod
    def _raise_for(resp: requests.Response, what: str) -> None:
        """Map a non-2xx response onto the error taxonomy."""
        try:
            body = resp.json()
        except ValueError:
            body = None
        kind = None
        if isinstance(body, dict) and "error" in body:
            message = body["error"]
            kind = body.get("kind")
        else:
            message = resp.text or resp.reason

        error_cls = ERRORS_BY_KIND.get(kind) if isinstance(kind, str) else None
        if error_cls is not None:
            raise error_cls(f"{what}: {message}")
        if resp.status_code == 404:
            raise NotFound(f"{what}: {message}")
        if resp.status_code == 429:
            raise RateLimited(f"{what}: {message}")
        if resp.status_code in (400, 411):
            raise BadRequest(f"{what}: {message}")
        raise NetworkFailure(f"{what}: HTTP {resp.status_code} {message}")

    @staticmethod
    def _json(resp: requests.Response, what: str) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise NetworkFailure(f"{what}: response is not JSON") from exc
        if not isinstance(data, dict):
            raise NetworkFailure(f"{what}: unexpected response shape")
        return data

    @staticmethod
    def _parse_modified(value: Any, what: str) -> int:
        try:
            return from_wire(value)
        except (TypeError, ValueError, AttributeError) as exc:
            raise NetworkFailure(f"{what}: bad lastModified {value!r}") from exc

    def create(self) -> str:
        """Ask the server to allocate a new sync id."""
        resp = self._request("POST", "/sync")
        if not resp.ok:
            self._raise_for(resp, "create")
        data = self._json(resp, "create")
        sync_id = data.get("id")
        if not isinstance(sync_id, str):
            raise NetworkFailure("create: response has no id")
        return sync_id

    def info(self, sync_id: str) -> Optional[int]:
        """Server lastModified for ``sync_id``, or None if nothing is stored."""
        resp = self._request("GET", f"/sync/{sync_id}/info")
        if resp.status_code == 404:
            return None
        if not resp.ok:
            self._raise_for(resp, "info")
        data = self._json(resp, "info")
        return self._parse_modified(data.get("lastModified"), "info")

    def get(self, sync_id: str) -> Optional[tuple[bytes, int]]:
        """Download the envelope and its lastModified, or None if absent."""
        resp = self._request("GET", f"/sync/{sync_id}")
        if resp.status_code == 404:
            return None
        if not resp.ok:
            self._raise_for(resp, "get")

        precise = resp.headers.get(SYNC_MODIFIED_HEADER)
        if precise:
            modified = self._parse_modified(precise, "get")
        else:
            header = resp.headers.get("Last-Modified")
            if not header:
                raise NetworkFailure("get: response has no Last-Modified")
            try:
                modified = from_http_date(header)
            except (TypeError, ValueError) as exc:
                raise NetworkFailure(f"get: bad Last-Modified {header!r}") from exc
        return resp.content, modified

    def put(self, sync_id: str, envelope: bytes) -> int:
        """Upload an envelope, replacing whatever the server holds.

        Returns:
            The lastModified assigned by the server's clock.
        """
        resp = self._request(
            "PUT",
            f"/sync/{sync_id}",
            data=envelope,
            headers={"Content-Type": "application/octet-stream"},
        )
        if not resp.ok:
            self._raise_for(resp, "put")
        data = self._json(resp, "put")
        return self._parse_modified(data.get("lastModified"), "put")

    def delete(self, sync_id: str) -> None:
        """Delete the remote record. Succeeds if it is already gone."""
        resp = self._request("DELETE", f"/sync/{sync_id}")
        if not resp.ok:
            self._raise_for(resp, "delete")

    def status(self) -> Dict[str, Any]:
        """Server health: ``{status, version, maxSyncSize}``."""
        resp = self._request("GET", "/status")
        if not resp.ok:
            self._raise_for(resp, "status")
        return self._json(resp, "status")
