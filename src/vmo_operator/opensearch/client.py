"""Async HTTP client for OpenSearch cluster and ISM operations."""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..config import config
from ..utils.retry import async_retry
from .exceptions import (
    OpenSearchAPIError,
    OpenSearchAuthenticationError,
    OpenSearchConflictError,
    OpenSearchNotFoundError,
    OpenSearchRateLimitError,
    OpenSearchServerError,
    OpenSearchValidationError,
)
from .models import ClusterHealth, NodeInfo, PolicyDocument

logger = logging.getLogger(__name__)

ISM_POLICIES_PATH = "/_plugins/_ism/policies"

TRANSIENT_ERRORS = (
    OpenSearchServerError,
    OpenSearchRateLimitError,
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
)


class OpenSearchClient:
    """Async HTTP client for one OpenSearch cluster."""

    def __init__(
        self,
        base_url: str,
        auth: Optional[Tuple[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.transport = transport
        self.timeout = timeout if timeout is not None else config.opensearch_request_timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=self.auth,
            transport=self.transport,
            timeout=httpx.Timeout(self.timeout),
            headers={"Content-Type": "application/json"},
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()

    async def _ensure_client(self):
        """Ensure HTTP client is initialized."""
        if not self._client:
            raise RuntimeError("Client not initialized. Use async context manager.")

    def _handle_response(self, response: httpx.Response) -> Any:
        """Handle HTTP response and raise appropriate exceptions."""
        try:
            data = response.json()
        except json.JSONDecodeError:
            data = {"message": response.text or "Unknown error"}

        if 200 <= response.status_code < 300:
            return data
        if response.status_code == 401:
            raise OpenSearchAuthenticationError(
                "Authentication failed - check the instance credentials",
                status_code=response.status_code,
                response_data=data,
            )
        if response.status_code == 404:
            raise OpenSearchNotFoundError(
                f"Not found: {response.request.url.path}",
                status_code=response.status_code,
                response_data=data,
            )
        if response.status_code == 409:
            raise OpenSearchConflictError(
                "Version conflict",
                status_code=response.status_code,
                response_data=data,
            )
        if response.status_code in (400, 422):
            raise OpenSearchValidationError(
                f"Validation failed: {_error_reason(data)}",
                status_code=response.status_code,
                response_data=data,
            )
        if response.status_code == 429:
            raise OpenSearchRateLimitError(
                "Rate limit exceeded",
                status_code=response.status_code,
                response_data=data,
            )
        if 500 <= response.status_code < 600:
            raise OpenSearchServerError(
                f"Server error: {_error_reason(data)}",
                status_code=response.status_code,
                response_data=data,
            )

        raise OpenSearchAPIError(
            f"Unexpected error: {_error_reason(data)}",
            status_code=response.status_code,
            response_data=data,
        )

    @async_retry(exceptions=TRANSIENT_ERRORS)
    async def get_cluster_health(self) -> ClusterHealth:
        """Get the cluster health summary."""
        await self._ensure_client()

        response = await self._client.get("/_cluster/health")
        data = self._handle_response(response)
        return ClusterHealth(**data)

    @async_retry(exceptions=TRANSIENT_ERRORS)
    async def list_nodes(self) -> List[NodeInfo]:
        """List the nodes currently in the cluster."""
        await self._ensure_client()

        response = await self._client.get("/_cat/nodes", params={"format": "json"})
        data = self._handle_response(response)
        return [NodeInfo(**row) for row in data or []]

    @async_retry(exceptions=TRANSIENT_ERRORS)
    async def get_policy(self, policy_id: str) -> Optional[PolicyDocument]:
        """Get an ISM policy, or None if it does not exist."""
        await self._ensure_client()

        response = await self._client.get(f"{ISM_POLICIES_PATH}/{policy_id}")
        try:
            data = self._handle_response(response)
        except OpenSearchNotFoundError:
            return None
        return PolicyDocument(**data)

    @async_retry(exceptions=TRANSIENT_ERRORS)
    async def list_policies(self) -> List[PolicyDocument]:
        """List every ISM policy in the cluster."""
        await self._ensure_client()

        response = await self._client.get(ISM_POLICIES_PATH)
        data = self._handle_response(response)
        return [PolicyDocument(**item) for item in data.get("policies", [])]

    @async_retry(exceptions=TRANSIENT_ERRORS)
    async def put_policy(
        self,
        policy_id: str,
        body: Dict[str, Any],
        seq_no: Optional[int] = None,
        primary_term: Optional[int] = None,
    ) -> PolicyDocument:
        """
        Create an ISM policy, or update it when the sequence numbers of the
        existing document are given.
        """
        await self._ensure_client()

        params = {}
        if seq_no is not None and primary_term is not None:
            params = {"if_seq_no": seq_no, "if_primary_term": primary_term}
            logger.info("Updating ISM policy %s", policy_id)
        else:
            logger.info("Creating ISM policy %s", policy_id)

        response = await self._client.put(
            f"{ISM_POLICIES_PATH}/{policy_id}", params=params, json=body
        )
        data = self._handle_response(response)
        return PolicyDocument(**data)

    @async_retry(exceptions=TRANSIENT_ERRORS)
    async def delete_policy(self, policy_id: str) -> bool:
        """Delete an ISM policy; a missing policy counts as deleted."""
        await self._ensure_client()

        logger.info("Deleting ISM policy %s", policy_id)
        response = await self._client.delete(f"{ISM_POLICIES_PATH}/{policy_id}")
        try:
            self._handle_response(response)
        except OpenSearchNotFoundError:
            logger.debug("ISM policy %s already gone", policy_id)
        return True


def _error_reason(data: Any) -> str:
    """Pull the reason out of an OpenSearch error body."""
    if not isinstance(data, dict):
        return "Unknown error"
    error = data.get("error")
    if isinstance(error, dict):
        return error.get("reason") or error.get("type") or "Unknown error"
    if isinstance(error, str):
        return error
    return data.get("message", "Unknown error")
