"""
Error taxonomy shared by the blob server and the sync client.

Server handlers map these onto HTTP status codes via ``http_status``.
The client maps HTTP responses back onto the same classes, so a
caller never has to look at a status code.
"""

from __future__ import annotations


class BookmarkSyncError(Exception):
    """Base class for every BookmarkSync failure."""

    http_status = 500
    kind = "error"


class InvalidId(BookmarkSyncError):
    """The sync id is not a well-formed 36-character UUID."""

    http_status = 400
    kind = "invalid_id"


class NotFound(BookmarkSyncError):
    """No blob is stored under the requested id."""

    http_status = 404
    kind = "not_found"


class PayloadTooLarge(BookmarkSyncError):
    """The uploaded body exceeds the maximum sync size."""

    http_status = 400
    kind = "payload_too_large"


class BadRequest(BookmarkSyncError):
    """The request body was not framed correctly or did not arrive in full."""

    http_status = 400
    kind = "bad_request"


class LengthRequired(BadRequest):
    """A write arrived with neither Content-Length nor chunked encoding."""

    http_status = 411
    kind = "length_required"


class StorageIO(BookmarkSyncError):
    """The server could not read or write its data root."""

    http_status = 500
    kind = "storage"


class TransientError(BookmarkSyncError):
    """A failure that the next scheduled attempt may not see."""

    kind = "transient"


class RateLimited(TransientError):
    """A write arrived inside the id's active rate-limit window."""

    http_status = 429
    kind = "rate_limited"


class NetworkFailure(TransientError):
    """The server was unreachable or answered with an unexpected status."""

    http_status = 502
    kind = "network"


class AuthenticationFailure(BookmarkSyncError):
    """The envelope did not verify: wrong passphrase or tampered data."""

    kind = "authentication"


class MalformedPayload(BookmarkSyncError):
    """The envelope decrypted but the content is not a sync payload."""

    kind = "malformed"


class NotConfigured(BookmarkSyncError):
    """Sync id, passphrase, or enablement is missing. Never shown as an error."""

    kind = "not_configured"
