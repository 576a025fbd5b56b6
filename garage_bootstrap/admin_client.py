"""
Garage Admin API Client

Provides a Python interface to the Garage admin API (v2) for cluster layout,
access key and bucket management. Failed calls are classified as transient
or permanent; only transient failures are retried.
"""

import logging
import random
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import requests

from .errors import ApiError, ApiErrorKind, StartupError, StartupErrorKind

logger = logging.getLogger(__name__)

# Response bodies quoted in error messages are cut to this many characters.
MAX_ERROR_BODY = 200


class Deadline:
    """An absolute point in time after which no more work should start."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.remaining() <= 0

    def check(self, what: str) -> None:
        """Raise DeadlineExceeded if the deadline has passed."""
        if self.expired():
            raise StartupError(
                StartupErrorKind.DEADLINE_EXCEEDED,
                f"bootstrap deadline of {self.seconds}s exceeded before {what}",
            )


class GarageAdminClient:
    """Client for interacting with the Garage admin API."""

    def __init__(
        self,
        admin_endpoint: str,
        admin_token: str,
        timeout: float = 5.0,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
        deadline: Optional[Deadline] = None,
    ):
        """
        Initialize the Garage admin client.

        Args:
            admin_endpoint: The URL of the Garage admin API (e.g., http://garage:3903)
            admin_token: The admin token for authentication
            timeout: Per-request timeout in seconds
            retry_attempts: Number of attempts for transient failures
            retry_delay: Base delay for exponential backoff, in seconds
            deadline: Optional overall deadline bounding every request
        """
        self.admin_endpoint = admin_endpoint.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self.deadline = deadline
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {admin_token}",
                "Content-Type": "application/json",
            }
        )

    def _backoff(self, attempt: int) -> float:
        delay = self.retry_delay * (2 ** attempt)
        return delay + random.uniform(0, delay)

    def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
        allow_missing: bool = False,
        retry: bool = True,
    ) -> Any:
        """
        Make a request to the admin API, retrying transient failures.

        Args:
            method: HTTP method (GET, POST)
            endpoint: API endpoint path
            data: Request body data
            params: Query parameters
            allow_missing: Treat a 404 response as success (returns None)
            retry: Set to False for a single attempt

        Returns:
            Decoded JSON response, {} for an empty body

        Raises:
            ApiError: If the request fails permanently or retries are exhausted
            StartupError: If the overall deadline has passed
        """
        url = urljoin(self.admin_endpoint + "/", endpoint.lstrip("/"))
        attempts = self.retry_attempts if retry else 1

        for attempt in range(attempts):
            try:
                return self._send(method, url, data, params, allow_missing)
            except ApiError as e:
                if not e.transient:
                    raise
                if attempt == attempts - 1:
                    if attempts > 1:
                        logger.error(f"{method} {url} failed after {attempts} attempts")
                    raise
                delay = self._backoff(attempt)
                if self.deadline is not None:
                    delay = min(delay, self.deadline.remaining())
                logger.warning(
                    f"{method} {url} failed (attempt {attempt + 1}/{attempts}): {e}; "
                    f"retrying in {delay:.2f}s"
                )
                time.sleep(delay)

    def _send(
        self,
        method: str,
        url: str,
        data: Optional[Dict],
        params: Optional[Dict],
        allow_missing: bool,
    ) -> Any:
        timeout = self.timeout
        if self.deadline is not None:
            self.deadline.check(f"{method} {url}")
            timeout = min(timeout, self.deadline.remaining())

        try:
            response = self.session.request(
                method=method,
                url=url,
                json=data,
                params=params,
                timeout=timeout,
            )
        except requests.RequestException as e:
            raise ApiError(ApiErrorKind.TRANSIENT, f"{method} {url}: {e}") from e

        status = response.status_code
        if status == 404 and allow_missing:
            return None
        if status >= 500 or status == 429:
            raise ApiError(
                ApiErrorKind.TRANSIENT,
                f"{method} {url}: HTTP {status} {response.text[:MAX_ERROR_BODY]}",
                status=status,
            )
        if status >= 400:
            raise ApiError(
                ApiErrorKind.PERMANENT,
                f"{method} {url}: HTTP {status} {response.text[:MAX_ERROR_BODY]}",
                status=status,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                ApiErrorKind.PERMANENT,
                f"{method} {url}: malformed response body",
                status=status,
            ) from e

    # Cluster Operations
    def get_health(self, retry: bool = True) -> Dict[str, Any]:
        """
        Check the health status of the Garage cluster.

        Args:
            retry: Whether transient failures are retried

        Returns:
            Health status information
        """
        return self._request("GET", "/v2/GetClusterHealth", retry=retry)

    def get_cluster_status(self) -> Dict[str, Any]:
        """
        Get the current cluster status, including the known nodes.

        Returns:
            Cluster status information
        """
        return self._request("GET", "/v2/GetClusterStatus")

    def get_layout(self) -> Dict[str, Any]:
        """
        Get the current cluster layout.

        Returns:
            Current layout, with its version, roles and staged role changes
        """
        return self._request("GET", "/v2/GetClusterLayout")

    def update_layout(
        self,
        node_id: str,
        zone: str,
        capacity: Optional[int] = None,
        tags: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Stage a role change for a node.

        Args:
            node_id: The node ID to update
            zone: The zone for the node
            capacity: Storage capacity in bytes (None for a gateway node)
            tags: Optional tags for the node

        Returns:
            The layout including the staged change
        """
        role = {
            "id": node_id,
            "zone": zone,
            "capacity": capacity,
            "tags": tags or [],
        }
        return self._request("POST", "/v2/UpdateClusterLayout", data={"roles": [role]})

    def apply_layout(self, version: int) -> Dict[str, Any]:
        """
        Apply the staged layout changes.

        Args:
            version: The new layout version number

        Returns:
            Result of the layout application
        """
        return self._request("POST", "/v2/ApplyClusterLayout", data={"version": version})

    # Key Operations
    def list_keys(self) -> List[Dict[str, Any]]:
        """
        List all access keys.

        Returns:
            List of access key information
        """
        return self._request("GET", "/v2/ListKeys")

    def get_key_info(self, key_id: str, show_secret: bool = False) -> Dict[str, Any]:
        """
        Get information about a specific access key.

        Args:
            key_id: The access key ID
            show_secret: Include secretAccessKey in the response (do not log it)

        Returns:
            Access key information
        """
        params = {"id": key_id}
        if show_secret:
            params["showSecretKey"] = "true"
        return self._request("GET", "/v2/GetKeyInfo", params=params)

    def delete_key(self, key_id: str) -> None:
        """
        Delete an access key. Deleting a key that is already gone is a no-op.

        Args:
            key_id: The access key ID to delete
        """
        self._request("POST", "/v2/DeleteKey", params={"id": key_id}, allow_missing=True)

    def import_key(
        self, access_key_id: str, secret_access_key: str, name: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Import an existing access key pair.

        Args:
            access_key_id: The access key ID
            secret_access_key: The secret key (SENSITIVE - do not log)
            name: Optional display name for the key

        Returns:
            Imported key information
        """
        data = {
            "accessKeyId": access_key_id,
            "secretAccessKey": secret_access_key,
        }
        if name:
            data["name"] = name
        return self._request("POST", "/v2/ImportKey", data=data)

    # Bucket Operations
    def list_buckets(self) -> List[Dict[str, Any]]:
        """
        List all buckets in the cluster.

        Returns:
            List of bucket information
        """
        return self._request("GET", "/v2/ListBuckets")

    def get_bucket_info(self, bucket_id: str) -> Dict[str, Any]:
        """
        Get information about a specific bucket.

        Args:
            bucket_id: The bucket ID

        Returns:
            Bucket information, including website state and key grants
        """
        return self._request("GET", "/v2/GetBucketInfo", params={"id": bucket_id})

    def create_bucket(self, global_alias: str) -> Dict[str, Any]:
        """
        Create a new bucket.

        Args:
            global_alias: Global alias for the bucket

        Returns:
            Created bucket information
        """
        return self._request("POST", "/v2/CreateBucket", data={"globalAlias": global_alias})

    def update_bucket_website(
        self,
        bucket_id: str,
        enabled: bool,
        index_document: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Enable or disable website access for a bucket.

        Args:
            bucket_id: The bucket ID to update
            enabled: Whether website access is enabled
            index_document: Index document served when enabled

        Returns:
            Updated bucket information
        """
        website_access = {
            "enabled": enabled,
            "indexDocument": index_document if enabled else None,
            "errorDocument": None,
        }
        return self._request(
            "POST",
            "/v2/UpdateBucket",
            data={"websiteAccess": website_access},
            params={"id": bucket_id},
        )

    def allow_bucket_key(
        self,
        bucket_id: str,
        access_key_id: str,
        read: bool = True,
        write: bool = True,
        owner: bool = True,
    ) -> Dict[str, Any]:
        """
        Grant bucket access to an access key.

        Args:
            bucket_id: The bucket ID
            access_key_id: The access key ID
            read: Allow read access
            write: Allow write access
            owner: Grant owner permissions

        Returns:
            Updated bucket information
        """
        return self._request(
            "POST",
            "/v2/AllowBucketKey",
            data={
                "bucketId": bucket_id,
                "accessKeyId": access_key_id,
                "permissions": {"read": read, "write": write, "owner": owner},
            },
        )
