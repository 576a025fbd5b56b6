"""
Pytest fixtures for Garage Bootstrap tests.
"""

import copy
import os
from unittest.mock import MagicMock, patch

import pytest

from garage_bootstrap.config import load_config
from garage_bootstrap.errors import ApiError, ApiErrorKind

ACCESS_KEY_ID = "GK0123456789abcdef01234567"
SECRET_ACCESS_KEY = "0123456789abcdef" * 4

MUTATING_CALLS = {
    "update_layout",
    "apply_layout",
    "delete_key",
    "import_key",
    "create_bucket",
    "update_bucket_website",
    "allow_bucket_key",
}


class FakeGarageAdmin:
    """
    In-memory stand-in for GarageAdminClient.

    Holds a single-node cluster and records every call in ``calls`` as a
    tuple of the method name and its positional arguments. Entries in
    ``errors`` keyed by ``(method, first_argument)`` are raised instead of
    performing the call.
    """

    def __init__(self, node_id="f00dcafe" * 8):
        self.node_id = node_id
        self.healthy = True
        self.calls = []
        self.errors = {}
        self.layout = {"version": 0, "roles": [], "stagedRoleChanges": []}
        self.keys = {}
        self.deleted_keys = set()
        self.buckets = {}
        self.session = MagicMock()

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        error = self.errors.get((name, args[0] if args else None))
        if error is not None:
            raise error

    def call_names(self):
        return [call[0] for call in self.calls]

    def mutating_calls(self):
        return [call for call in self.calls if call[0] in MUTATING_CALLS]

    def get_health(self, retry=True):
        self._record("get_health")
        if not self.healthy:
            raise ApiError(ApiErrorKind.TRANSIENT, "connection refused")
        return {"status": "healthy", "knownNodes": 1, "connectedNodes": 1}

    def get_cluster_status(self):
        self._record("get_cluster_status")
        return {"layoutVersion": self.layout["version"], "nodes": [{"id": self.node_id, "isUp": True}]}

    def get_layout(self):
        self._record("get_layout")
        return copy.deepcopy(self.layout)

    def update_layout(self, node_id, zone, capacity=None, tags=None):
        self._record("update_layout", node_id, zone, capacity)
        self.layout["stagedRoleChanges"] = [
            {"id": node_id, "zone": zone, "capacity": capacity, "tags": tags or []}
        ]
        return copy.deepcopy(self.layout)

    def apply_layout(self, version):
        self._record("apply_layout", version)
        if version != self.layout["version"] + 1:
            raise ApiError(ApiErrorKind.PERMANENT, "HTTP 400 bad layout version", status=400)
        self.layout = {
            "version": version,
            "roles": self.layout["stagedRoleChanges"],
            "stagedRoleChanges": [],
        }
        return {"message": ["layout applied"], "layout": copy.deepcopy(self.layout)}

    def list_keys(self):
        self._record("list_keys")
        return [{"id": key_id, "name": name} for key_id, (name, _) in self.keys.items()]

    def get_key_info(self, key_id, show_secret=False):
        self._record("get_key_info", key_id)
        if key_id not in self.keys:
            raise ApiError(ApiErrorKind.PERMANENT, "HTTP 404 key not found", status=404)
        name, secret = self.keys[key_id]
        info = {"accessKeyId": key_id, "name": name}
        if show_secret:
            info["secretAccessKey"] = secret
        return info

    def delete_key(self, key_id):
        self._record("delete_key", key_id)
        if self.keys.pop(key_id, None) is not None:
            self.deleted_keys.add(key_id)
        for bucket in self.buckets.values():
            bucket["keys"] = [k for k in bucket["keys"] if k["accessKeyId"] != key_id]

    def import_key(self, access_key_id, secret_access_key, name=None):
        self._record("import_key", access_key_id)
        # Garage keeps deleted keys as tombstones and never reuses their ids.
        if access_key_id in self.keys or access_key_id in self.deleted_keys:
            raise ApiError(
                ApiErrorKind.PERMANENT, "HTTP 409 key already exists", status=409
            )
        self.keys[access_key_id] = (name, secret_access_key)
        return {"accessKeyId": access_key_id, "name": name}

    def list_buckets(self):
        self._record("list_buckets")
        return [
            {"id": bucket["id"], "globalAliases": list(bucket["globalAliases"])}
            for bucket in self.buckets.values()
        ]

    def get_bucket_info(self, bucket_id):
        self._record("get_bucket_info", bucket_id)
        return copy.deepcopy(self.buckets[bucket_id])

    def create_bucket(self, global_alias):
        self._record("create_bucket", global_alias)
        return copy.deepcopy(self.add_bucket(global_alias))

    def update_bucket_website(self, bucket_id, enabled, index_document=None):
        self._record("update_bucket_website", bucket_id, enabled, index_document)
        bucket = self.buckets[bucket_id]
        bucket["websiteAccess"] = enabled
        bucket["websiteConfig"] = {"indexDocument": index_document, "errorDocument": None} if enabled else None
        return copy.deepcopy(bucket)

    def allow_bucket_key(self, bucket_id, access_key_id, read=True, write=True, owner=True):
        self._record("allow_bucket_key", bucket_id, access_key_id)
        bucket = self.buckets[bucket_id]
        bucket["keys"] = [k for k in bucket["keys"] if k["accessKeyId"] != access_key_id]
        bucket["keys"].append(
            {
                "accessKeyId": access_key_id,
                "permissions": {"read": read, "write": write, "owner": owner},
            }
        )
        return copy.deepcopy(bucket)

    def add_bucket(self, global_alias, **extra):
        """Seed a bucket directly, bypassing call recording."""
        bucket_id = f"{len(self.buckets) + 1:064x}"
        bucket = {
            "id": bucket_id,
            "globalAliases": [global_alias],
            "websiteAccess": False,
            "websiteConfig": None,
            "keys": [],
        }
        bucket.update(extra)
        self.buckets[bucket_id] = bucket
        return bucket

    def bucket_by_alias(self, alias):
        for bucket in self.buckets.values():
            if alias in bucket["globalAliases"]:
                return bucket
        return None


@pytest.fixture
def fake_garage():
    """A fresh, unconfigured single-node cluster."""
    return FakeGarageAdmin()


@pytest.fixture
def base_env():
    """Minimal valid bootstrap environment."""
    return {
        "GARAGE_ACCESS_KEY_ID": ACCESS_KEY_ID,
        "GARAGE_SECRET_ACCESS_KEY": SECRET_ACCESS_KEY,
        "GARAGE_BUCKETS": "media:public,upload",
        "GARAGE_ADMIN_TOKEN": "test-admin-token",
        "GARAGE_METRICS_TOKEN": "test-metrics-token",
        "GARAGE_READY_TIMEOUT": "0.2",
        "GARAGE_READY_INTERVAL": "0.01",
    }


@pytest.fixture
def mock_env_vars(base_env):
    """Install the bootstrap environment into os.environ."""
    with patch.dict(os.environ, base_env, clear=True):
        yield base_env


@pytest.fixture
def config(base_env):
    """Validated configuration built from base_env."""
    return load_config(base_env)
