"""
Reconciliation phases for a single-node Garage cluster.

Each phase compares the remote state with the desired state from the
Configuration and issues only the calls needed to converge. All phases are
safe to run again after a container restart.
"""

import logging
import secrets
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from .admin_client import GarageAdminClient
from .config import BucketPolicy, BucketSpec, Configuration
from .errors import ApiError, ApiErrorKind, StartupError, StartupErrorKind

logger = logging.getLogger(__name__)

DEFAULT_ZONE = "dc1"
# A single node owns every partition, so any non-zero capacity will do.
NODE_CAPACITY = 2 ** 63 - 1
INDEX_DOCUMENT = "index.html"
KEY_NAME = "garage-bootstrap"


def _expect(value: Any, expected: type, what: str) -> Any:
    """Raise a permanent ApiError unless a decoded response part has the expected type."""
    if not isinstance(value, expected):
        raise ApiError(
            ApiErrorKind.PERMANENT,
            f"malformed {what}: expected {expected.__name__}, got {type(value).__name__}",
        )
    return value


def _optional(data: Dict[str, Any], field: str, expected: type, default: Any, what: str) -> Any:
    value = _expect(data, dict, what).get(field)
    if value is None:
        return default
    return _expect(value, expected, f"{what} field {field!r}")


def _require(data: Dict[str, Any], field: str, what: str) -> Any:
    value = _expect(data, dict, what).get(field)
    if value is None:
        raise ApiError(ApiErrorKind.PERMANENT, f"{what} response has no {field!r}")
    return value


class Phase(ABC):
    """A step of the bootstrap run."""

    name = "phase"

    @abstractmethod
    def run(self, config: Configuration, client: GarageAdminClient) -> Dict[str, Any]:
        """Converge the remote state and return a summary of what was done."""


class LayoutReconciler(Phase):
    """Assign storage capacity to the single node of the cluster."""

    name = "layout"

    def __init__(self, zone: str = DEFAULT_ZONE, capacity: int = NODE_CAPACITY):
        self.zone = zone
        self.capacity = capacity

    def run(self, config: Configuration, client: GarageAdminClient) -> Dict[str, Any]:
        try:
            return self._reconcile(client)
        except ApiError as e:
            raise StartupError(
                StartupErrorKind.LAYOUT_FAILED, f"could not apply cluster layout: {e}"
            ) from e

    def _reconcile(self, client: GarageAdminClient) -> Dict[str, Any]:
        layout = _expect(client.get_layout(), dict, "cluster layout")
        version = _optional(layout, "version", int, 0, "cluster layout")
        roles = _optional(layout, "roles", list, [], "cluster layout")
        if len(roles) == 1 and _optional(roles[0], "capacity", int, 0, "layout role"):
            logger.info(
                f"Layout version {version} already assigns capacity to node "
                f"{roles[0].get('id')}, skipping"
            )
            return {"applied": False, "version": version}

        node_id = self._node_id(client)
        logger.info(f"No layout found. Staging capacity for node {node_id}...")
        staged = client.update_layout(node_id, zone=self.zone, capacity=self.capacity)
        new_version = _optional(staged, "version", int, version, "staged layout") + 1

        logger.info(f"Applying layout version {new_version}")
        client.apply_layout(new_version)
        return {"applied": True, "version": new_version}

    def _node_id(self, client: GarageAdminClient) -> str:
        status = client.get_cluster_status()
        nodes = _optional(status, "nodes", list, [], "cluster status")
        if len(nodes) != 1:
            raise StartupError(
                StartupErrorKind.LAYOUT_FAILED,
                f"unexpected number of nodes in cluster status: {len(nodes)}",
            )
        return _require(nodes[0], "id", "cluster status node")


class KeyReconciler(Phase):
    """
    Leave the configured access key as the only key of the cluster.

    Garage keeps deleted keys as tombstones and refuses to import an id it
    has seen before, so the configured key is kept when it already exists
    with the configured secret. Every other key is deleted before the import.
    """

    name = "key"

    def run(self, config: Configuration, client: GarageAdminClient) -> Dict[str, Any]:
        try:
            key_ids = self._existing_key_ids(client)
            keep = config.access_key_id in key_ids
            if keep:
                self._check_secret(config, client)
            stale = [key_id for key_id in key_ids if key_id != config.access_key_id]
            for key_id in stale:
                logger.info(f"Deleting access key {key_id}")
                client.delete_key(key_id)
            if stale:
                logger.info(f"Stale access keys removed: {len(stale)}")
        except ApiError as e:
            raise StartupError(
                StartupErrorKind.KEY_IMPORT_FAILED, f"could not remove existing keys: {e}"
            ) from e

        result = {"deleted": len(stale), "imported": not keep, "accessKeyId": config.access_key_id}
        if keep:
            logger.info(f"Access key {config.access_key_id} already present, keeping it")
            return result

        try:
            client.import_key(config.access_key_id, config.secret_access_key, name=KEY_NAME)
        except ApiError as e:
            raise StartupError(
                StartupErrorKind.KEY_IMPORT_FAILED,
                f"could not import access key {config.access_key_id}: {e}",
            ) from e

        logger.info(f"Imported access key {config.access_key_id}")
        return result

    @staticmethod
    def _existing_key_ids(client: GarageAdminClient) -> List[str]:
        keys = _expect(client.list_keys(), list, "key list")
        return [_require(key, "id", "key list entry") for key in keys]

    @staticmethod
    def _check_secret(config: Configuration, client: GarageAdminClient) -> None:
        info = client.get_key_info(config.access_key_id, show_secret=True)
        secret = _optional(info, "secretAccessKey", str, "", "key info")
        if not secrets.compare_digest(secret.encode(), config.secret_access_key.encode()):
            raise StartupError(
                StartupErrorKind.KEY_IMPORT_FAILED,
                f"access key {config.access_key_id} already exists with a different "
                f"secret; Garage cannot re-import an existing key id",
            )


class BucketReconciler(Phase):
    """Create the declared buckets, grant them to the key and set website access."""

    name = "buckets"

    def run(self, config: Configuration, client: GarageAdminClient) -> Dict[str, Any]:
        results: List[Dict[str, Any]] = []
        failures: List[Tuple[str, Exception]] = []

        try:
            existing = self._existing_buckets(client)
        except ApiError as e:
            failures = [(spec.name, e) for spec in config.buckets]
        else:
            for spec in config.buckets:
                try:
                    results.append(
                        self._reconcile_bucket(spec, existing.get(spec.name), config, client)
                    )
                except ApiError as e:
                    logger.error(f"Bucket {spec.name!r} failed: {e}")
                    failures.append((spec.name, e))

        if failures:
            raise StartupError(
                StartupErrorKind.BUCKET_RECONCILE_FAILED,
                f"{len(failures)} of {len(config.buckets)} buckets could not be reconciled",
                failures=failures,
            )
        return {"buckets": results}

    def _existing_buckets(self, client: GarageAdminClient) -> Dict[str, str]:
        buckets = {}
        for bucket in _expect(client.list_buckets(), list, "bucket list"):
            bucket_id = _require(bucket, "id", "bucket list entry")
            aliases = _optional(bucket, "globalAliases", list, [], "bucket list entry")
            if not aliases:
                logger.warning(f"Ignoring bucket without a global alias: {bucket_id}")
                continue
            if len(aliases) > 1:
                logger.warning(
                    f"Ignoring bucket with more than one global alias: {bucket_id} {aliases}"
                )
                continue
            buckets[aliases[0]] = bucket_id
        return buckets

    def _reconcile_bucket(
        self,
        spec: BucketSpec,
        bucket_id: Optional[str],
        config: Configuration,
        client: GarageAdminClient,
    ) -> Dict[str, Any]:
        created = False
        if bucket_id is None:
            logger.info(f"Creating bucket {spec.name!r}...")
            info = client.create_bucket(spec.name)
            bucket_id = _require(info, "id", "create bucket")
            created = True
        else:
            logger.info(f"Bucket {spec.name!r} found with id {bucket_id!r}")
            info = _expect(client.get_bucket_info(bucket_id), dict, "bucket info")

        updated = False
        if not self._granted(info, config.access_key_id):
            logger.info(f"Granting access to bucket {spec.name!r}")
            client.allow_bucket_key(bucket_id, config.access_key_id)
            updated = True

        if not self._website_matches(info, spec.policy):
            public = spec.policy is BucketPolicy.PUBLIC
            logger.info(
                f"{'Enabling' if public else 'Disabling'} website access for bucket {spec.name!r}"
            )
            client.update_bucket_website(
                bucket_id, enabled=public, index_document=INDEX_DOCUMENT if public else None
            )
            updated = True

        return {"name": spec.name, "id": bucket_id, "created": created, "updated": updated}

    @staticmethod
    def _granted(info: Dict[str, Any], access_key_id: str) -> bool:
        for key in _optional(info, "keys", list, [], "bucket info"):
            if _expect(key, dict, "bucket key grant").get("accessKeyId") != access_key_id:
                continue
            permissions = _optional(key, "permissions", dict, {}, "bucket key grant")
            return all(permissions.get(p) for p in ("read", "write", "owner"))
        return False

    @staticmethod
    def _website_matches(info: Dict[str, Any], policy: BucketPolicy) -> bool:
        enabled = bool(info.get("websiteAccess"))
        if policy is BucketPolicy.PRIVATE:
            return not enabled
        website_config = _optional(info, "websiteConfig", dict, {}, "bucket info")
        return enabled and website_config.get("indexDocument") == INDEX_DOCUMENT
