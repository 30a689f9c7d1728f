# =============================================================================
# Error Taxonomy — Domain and Gateway Errors
# =============================================================================
#
# Two families:
#
# 1. Gateway errors — raised by the wrappers around external APIs
#    (search, verification, conversation). Every gateway fails with one
#    of these and nothing else, so orchestrators can recover uniformly:
#
#       GatewayError
#       ├── GatewayTimeoutError           — upstream did not answer in time
#       ├── GatewayAuthError              — missing/invalid credentials
#       └── UpstreamError                 — non-2xx or transport failure
#           └── UpstreamMalformedResponseError — 2xx but unusable payload
#
# 2. Domain errors — raised by orchestrators to their callers. Route
#    handlers translate them into HTTP status codes (404 / 409 / 500).
#
# The message of a gateway error is for logs only. It is never echoed back
# to end users.
# =============================================================================

from __future__ import annotations


class GatewayError(Exception):
    """Base class for failures of an external capability."""

    def __init__(self, gateway: str, message: str) -> None:
        super().__init__(f"{gateway}: {message}")
        self.gateway = gateway


class GatewayTimeoutError(GatewayError):
    """The upstream call exceeded its time budget."""


class GatewayAuthError(GatewayError):
    """The upstream rejected our credentials, or none are configured."""


class UpstreamError(GatewayError):
    """The upstream returned a non-2xx status or the connection failed."""


class UpstreamMalformedResponseError(UpstreamError):
    """The upstream answered, but the payload could not be interpreted."""


class NotFoundError(Exception):
    """No record or resource exists for the requested key."""


class ConflictError(Exception):
    """A verification attempt is already in flight for the key."""


class ServiceUnavailableError(Exception):
    """The chat path could not produce a reply."""
