"""Error taxonomy for the proposal mirror.

Transport failures are retryable by the caller, server errors are classified
by HTTP status, and decode errors indicate a protocol mismatch.
"""

from typing import Any

# Politeia www v1 error codes, as returned in the `errorcode` field of
# 400/401 responses.
ERROR_STATUS: dict[int, str] = {
    0: "invalid error status",
    1: "invalid password",
    2: "malformed email",
    3: "invalid verification token",
    4: "expired verification token",
    5: "missing proposal files",
    6: "proposal not found",
    7: "duplicate proposal files",
    8: "invalid proposal title",
    9: "too many markdown files",
    10: "too many images",
    11: "markdown file size exceeded",
    12: "image file size exceeded",
    13: "malformed password",
    14: "comment not found",
    15: "invalid filename",
    16: "invalid file digest",
    17: "invalid base64 file content",
    18: "invalid MIME type detected",
    19: "unsupported MIME type",
    20: "invalid proposal status transition",
    21: "invalid public key",
    22: "no active public key",
    23: "invalid signature",
    24: "invalid input",
    25: "invalid signing key",
    26: "comment length exceeded policy",
    27: "user not found",
    28: "wrong proposal status",
    29: "user not logged in",
    30: "user hasn't paid paywall",
    31: "user cannot change status of his own proposal",
    32: "malformed username",
    33: "duplicate username",
    34: "verification token not expired",
    35: "cannot verify payment at this time",
    36: "duplicate public key",
    37: "invalid proposal vote status",
    38: "user locked due to too many login attempts",
    39: "no proposal credits",
    40: "invalid user edit action",
    41: "user already has that status",
    42: "wrong proposal vote status",
    43: "user not found",
    44: "cannot vote on proposal comment",
    45: "status change message cannot be blank",
    46: "censor comment reason cannot be blank",
    47: "cannot censor comment",
    48: "user is not the proposal author",
    49: "vote has not been authorized",
    50: "vote has already been authorized",
    51: "invalid authorize vote action",
    52: "user account is deactivated",
    53: "invalid proposal vote option bits",
    54: "invalid proposal vote parameters",
    55: "email address is not verified",
    56: "invalid user ID",
    57: "invalid like comment action",
    58: "invalid censorship token",
    59: "email address is already verified",
    60: "no changes found in proposal",
    61: "max proposals exceeded",
    62: "duplicate comment",
    63: "invalid login credentials",
    64: "comment is censored",
    65: "invalid proposal version",
}

UNKNOWN_ERROR = "unknown error"


def error_message(code: int | None) -> str:
    """Map a server error code to its message, or "unknown error"."""
    if code is None:
        return UNKNOWN_ERROR
    return ERROR_STATUS.get(code, UNKNOWN_ERROR)


class PropMirrorError(Exception):
    """Base error for the proposal mirror."""


class TransportError(PropMirrorError):
    """Connection failure or timeout. Callers may retry with backoff."""


class ServerError(PropMirrorError):
    """Non-success HTTP status from the remote service."""

    status_code: int | None = None

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: int | None = None,
        context: list[Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.error_code = error_code
        self.context = context or []


class NotFound(ServerError):
    status_code = 404


class InternalServerError(ServerError):
    status_code = 500


class Forbidden(ServerError):
    status_code = 403


class Unauthorized(ServerError):
    status_code = 401


class BadRequest(ServerError):
    status_code = 400


class UnknownServerError(ServerError):
    """Any status without a dedicated class."""


class DecodeError(PropMirrorError):
    """Response body could not be decoded into the expected shape."""


class PersistenceError(PropMirrorError):
    """Local store read or write failed."""


class InvalidArgument(PropMirrorError, ValueError):
    """Caller passed an argument the operation cannot accept."""


class ProposalNotFound(PropMirrorError, LookupError):
    """Point lookup found nothing in the local mirror."""

    def __init__(self, key: str | int):
        super().__init__(f"proposal not found: {key}")
        self.key = key
