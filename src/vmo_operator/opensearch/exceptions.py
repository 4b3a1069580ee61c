"""
Errors raised when talking to an instance's OpenSearch cluster.

The client maps each HTTP failure onto one of these. Server errors and
throttling are retried; the rest reach the health gate or the ISM policy
task as they are.
"""

from typing import Any, Dict, Optional


class OpenSearchAPIError(Exception):
    """An OpenSearch request failed; carries the HTTP status and error body."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data or {}


class OpenSearchAuthenticationError(OpenSearchAPIError):
    """The credentials from the instance secret were rejected (401)."""


class OpenSearchNotFoundError(OpenSearchAPIError):
    """No such ISM policy or endpoint (404). A missing policy is created."""


class OpenSearchConflictError(OpenSearchAPIError):
    """
    A policy write lost an ``if_seq_no``/``if_primary_term`` race (409).

    Someone else changed the policy since it was read; the next pass reads it
    again.
    """


class OpenSearchValidationError(OpenSearchAPIError):
    """The cluster refused a rendered ISM policy body (400 or 422)."""


class OpenSearchServerError(OpenSearchAPIError):
    """The cluster answered 5xx, typically while a master is being elected."""


class OpenSearchRateLimitError(OpenSearchAPIError):
    """The cluster is shedding load (429)."""


class OpenSearchRetryExhaustedError(OpenSearchAPIError):
    """A retried call still failed on its last attempt; the cause is chained."""
