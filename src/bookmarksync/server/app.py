"""
BookmarkSync blob server -- the HTTP surface over BlobStore.

Stdlib http.server with one thread per request. JSON for metadata,
raw bytes for blob bodies, permissive CORS for browser extensions.

Routes:
    POST   /sync              -> allocate a fresh id
    GET    /sync/{id}         -> blob body + Last-Modified
    PUT    /sync/{id}         -> full replacement (rate limited)
    DELETE /sync/{id}         -> idempotent delete
    GET    /sync/{id}/info    -> lastModified only, no body
    GET    /status            -> health check
    OPTIONS (any of the above) -> CORS preflight
"""

from __future__ import annotations

import json
import logging
import re
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from .. import __version__
from ..errors import (
    BadRequest,
    BookmarkSyncError,
    InvalidId,
    LengthRequired,
    PayloadTooLarge,
    RateLimited,
)
from ..models import ServerConfig
from ..timefmt import to_http_date, to_wire
from .ratelimit import RateLimiter
from .store import BlobStore, normalize_id

logger = logging.getLogger("bookmarksync.server.app")

SYNC_MODIFIED_HEADER = "X-Sync-Modified"
DRAIN_LIMIT = 16 * 1024 * 1024
READ_TIMEOUT_SECONDS = 10
MAX_CHUNK_LINE = 1024

_SYNC_ROOT = re.compile(r"^/sync/?$")
_SYNC_ITEM = re.compile(r"^/sync/([^/]+)/?$")
_SYNC_INFO = re.compile(r"^/sync/([^/]+)/info/?$")
_STATUS = re.compile(r"^/status/?$")
_ROUTES = (_SYNC_ROOT, _SYNC_ITEM, _SYNC_INFO, _STATUS)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "3600",
}


class SyncServer(ThreadingHTTPServer):
    """Threaded HTTP server carrying the shared store and limiter."""

    daemon_threads = True

    def __init__(
        self,
        address: tuple[str, int],
        store: BlobStore,
        limiter: RateLimiter,
        max_sync_size: int,
    ):
        self.store = store
        self.limiter = limiter
        self.max_sync_size = max_sync_size
        super().__init__(address, SyncRequestHandler)

    @property
    def port(self) -> int:
        return self.server_address[1]


class SyncRequestHandler(BaseHTTPRequestHandler):
    """Request handler for the blob API."""

    server: SyncServer
    server_version = f"BookmarkSync/{__version__}"
    protocol_version = "HTTP/1.1"
    # socket timeout for every read and write on the connection
    timeout = READ_TIMEOUT_SECONDS

    # -- dispatch ----------------------------------------------------------

    def do_OPTIONS(self):
        self._timed(self._route, {pattern: self._handle_options for pattern in _ROUTES})

    def do_POST(self):
        self._timed(self._route, {_SYNC_ROOT: self._handle_create})

    def do_GET(self):
        self._timed(
            self._route,
            {
                _STATUS: self._handle_status,
                _SYNC_INFO: self._handle_info,
                _SYNC_ITEM: self._handle_get,
            },
        )

    def do_PUT(self):
        self._timed(self._route, {_SYNC_ITEM: self._handle_put}, True)

    def do_DELETE(self):
        self._timed(self._route, {_SYNC_ITEM: self._handle_delete})

    def _timed(self, handler, *args) -> None:
        start = time.perf_counter()
        logger.info(
            "%s %s from %s", self.command, self._path_only, self.client_address[0]
        )
        handler(*args)
        logger.info(
            "%s %s completed in %.1fms",
            self.command,
            self._path_only,
            (time.perf_counter() - start) * 1000,
        )

    @property
    def _path_only(self) -> str:
        return self.path.split("?", 1)[0]

    def _route(self, table: dict, reads_body: bool = False) -> None:
        """Dispatch to the first matching handler and map errors to statuses.

        Handlers that do not consume the request body get it drained
        first so a keep-alive connection stays in step.
        """
        path = self._path_only
        try:
            if not reads_body:
                self._drain_body()
            for pattern, handler in table.items():
                match = pattern.match(path)
                if match:
                    handler(*match.groups())
                    return
        except BookmarkSyncError as exc:
            if exc.http_status >= 500:
                logger.error("%s %s failed: %s", self.command, path, exc)
            else:
                logger.info("%s %s rejected: %s", self.command, path, exc)
            self._error(exc.http_status, str(exc), exc.kind)
            return
        except Exception:
            logger.exception("%s %s crashed", self.command, path)
            self.close_connection = True
            self._error(500, "internal error", "internal")
            return

        if any(p.match(path) for p in _ROUTES):
            self._error(405, "method not allowed", "method_not_allowed")
        else:
            self._error(404, "not found", "not_found")

    # -- handlers ----------------------------------------------------------

    def _handle_options(self, *_ignored: str) -> None:
        self.send_response(200)
        self._send_cors()
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _handle_create(self) -> None:
        sync_id = self.server.store.create()
        logger.info("Allocated sync id %s", sync_id)
        self._json({"id": sync_id, "lastModified": None})

    def _handle_status(self) -> None:
        self._json({
            "status": "online",
            "version": __version__,
            "maxSyncSize": self.server.max_sync_size,
        })

    def _handle_get(self, sync_id: str) -> None:
        data, modified = self.server.store.get(sync_id)
        self.send_response(200)
        self._send_cors()
        self.send_header("Content-Type", "application/octet-stream")
        self.send_header("Content-Length", str(len(data)))
        self.send_header("Last-Modified", to_http_date(modified))
        self.send_header(SYNC_MODIFIED_HEADER, to_wire(modified))
        self.end_headers()
        self.wfile.write(data)

    def _handle_info(self, sync_id: str) -> None:
        modified = self.server.store.info(sync_id)
        self._json({"lastModified": to_wire(modified)})

    def _handle_put(self, sync_id: str) -> None:
        try:
            sync_id = normalize_id(sync_id)
        except InvalidId:
            self._drain_body()
            raise

        data = self._read_body(self.server.max_sync_size)

        limiter = self.server.limiter
        accepted_at = time.monotonic()
        if not limiter.should_accept(sync_id, now=accepted_at):
            retry = limiter.retry_after(sync_id)
            raise RateLimited(f"rate limited, retry in {retry:.0f}s")

        try:
            modified = self.server.store.put(sync_id, data)
        except Exception:
            limiter.release(sync_id, accepted_at)
            raise
        logger.info("Stored %d bytes for %s", len(data), sync_id)
        self._json({"lastModified": to_wire(modified)})

    def _handle_delete(self, sync_id: str) -> None:
        self.server.store.delete(sync_id)
        self.send_response(204)
        self._send_cors()
        self.end_headers()

    # -- helpers -----------------------------------------------------------

    def _is_chunked(self) -> bool:
        encoding = self.headers.get("Transfer-Encoding", "")
        return "chunked" in encoding.lower()

    def _content_length(self) -> Optional[int]:
        raw = self.headers.get("Content-Length")
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError as exc:
            self.close_connection = True
            raise BadRequest("invalid Content-Length") from exc

    def _read_body(self, limit: int) -> bytes:
        """Read the request body, refusing anything over ``limit`` bytes.

        Raises:
            LengthRequired: Neither Content-Length nor chunked encoding.
            PayloadTooLarge: The body is larger than ``limit``.
            BadRequest: The body ended early or was badly framed.
        """
        if self._is_chunked():
            return self._read_chunked(limit)
        length = self._content_length()
        if length is None:
            self.close_connection = True
            raise LengthRequired("Content-Length or chunked encoding required")
        if length < 0 or length > limit:
            self._discard(length)
            raise PayloadTooLarge(f"body of {length} bytes exceeds {limit}")
        return self._read_exact(length)

    def _read_exact(self, length: int) -> bytes:
        try:
            data = self.rfile.read(length)
        except OSError as exc:
            self.close_connection = True
            raise BadRequest(f"body read failed: {exc}") from exc
        if len(data) != length:
            self.close_connection = True
            raise BadRequest(f"body ended after {len(data)} of {length} bytes")
        return data

    def _read_line(self) -> bytes:
        try:
            line = self.rfile.readline(MAX_CHUNK_LINE + 1)
        except OSError as exc:
            self.close_connection = True
            raise BadRequest(f"body read failed: {exc}") from exc
        if not line.endswith(b"\n"):
            self.close_connection = True
            raise BadRequest("truncated or oversized chunk line")
        return line.rstrip(b"\r\n")

    def _read_chunked(self, limit: int) -> bytes:
        """Decode a ``Transfer-Encoding: chunked`` body of at most ``limit`` bytes."""
        chunks = []
        total = 0
        while True:
            size_field = self._read_line().split(b";", 1)[0].strip()
            try:
                size = int(size_field, 16)
            except ValueError as exc:
                self.close_connection = True
                raise BadRequest(f"invalid chunk size {size_field!r}") from exc
            if size < 0:
                self.close_connection = True
                raise BadRequest(f"invalid chunk size {size_field!r}")
            if size == 0:
                break
            total += size
            if total > limit:
                self.close_connection = True
                raise PayloadTooLarge(f"chunked body exceeds {limit} bytes")
            chunks.append(self._read_exact(size))
            if self._read_line():
                self.close_connection = True
                raise BadRequest("chunk data longer than its declared size")
        # trailer section ends with an empty line
        while self._read_line():
            pass
        return b"".join(chunks)

    def _drain_body(self) -> None:
        if self._is_chunked():
            self.close_connection = True
            return
        length = self._content_length()
        if length:
            self._discard(length)

    def _discard(self, length: int) -> None:
        """Consume an unwanted body so the client can read our response.

        Bodies past ``DRAIN_LIMIT`` are not read; the connection is
        closed after the response instead.
        """
        if length < 0 or length > DRAIN_LIMIT:
            self.close_connection = True
            return
        remaining = length
        while remaining > 0:
            chunk = self.rfile.read(min(65536, remaining))
            if not chunk:
                self.close_connection = True
                break
            remaining -= len(chunk)

    def _send_cors(self) -> None:
        for name, value in CORS_HEADERS.items():
            self.send_header(name, value)

    def _json(self, data: dict, status: int = 200) -> None:
        body = json.dumps(data).encode("utf-8")
        self.send_response(status)
        self._send_cors()
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _error(self, status: int, message: str, kind: str) -> None:
        self._json({"error": message, "kind": kind}, status=status)

    def log_message(self, format, *args):
        """Route http.server's access log through our logger."""
        logger.debug("HTTP: %s", format % args)


def create_server(
    config: Optional[ServerConfig] = None,
    store: Optional[BlobStore] = None,
    limiter: Optional[RateLimiter] = None,
) -> SyncServer:
    """Build a ready-to-serve blob server.

    Args:
        config: Server settings. Defaults to ``ServerConfig()``.
        store: Blob store override (defaults to one on ``config.data_dir``).
        limiter: Rate limiter override.

    Returns:
        SyncServer: Call ``serve_forever()`` or run it in a thread.
    """
    config = config or ServerConfig()
    store = store or BlobStore(config.data_dir, max_size=config.max_sync_size)
    limiter = limiter or RateLimiter(window_seconds=config.rate_limit_seconds)

    server = SyncServer(
        (config.host, config.port),
        store=store,
        limiter=limiter,
        max_sync_size=config.max_sync_size,
    )
    logger.info(
        "BookmarkSync server v%s listening on http://%s:%d (data: %s)",
        __version__,
        config.host,
        server.port,
        store.data_dir,
    )
    return server
