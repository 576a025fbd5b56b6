"""
Integration tests for Garage Bootstrap.

These tests run against a live, freshly started Garage daemon and require:
- GARAGE_ADMIN_ENDPOINT: Admin API endpoint (e.g., http://localhost:3903)
- GARAGE_ADMIN_TOKEN: Admin token the daemon was started with

The tests import a throwaway access key and create buckets prefixed with
``bootstrap-it-``. Run with: pytest garage_bootstrap/tests/test_integration.py -v -m integration
"""

import os
import secrets

import pytest

from garage_bootstrap.admin_client import GarageAdminClient
from garage_bootstrap.bootstrap import EXIT_OK, run_bootstrap
from garage_bootstrap.reconcilers import INDEX_DOCUMENT

# Skip all tests in this module if the admin API is not configured
pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not os.environ.get("GARAGE_ADMIN_ENDPOINT") or not os.environ.get("GARAGE_ADMIN_TOKEN"),
        reason="Integration tests require GARAGE_ADMIN_ENDPOINT and GARAGE_ADMIN_TOKEN environment variables",
    ),
]


@pytest.fixture
def live_env():
    """Environment for a bootstrap run against the live daemon."""
    suffix = secrets.token_hex(4)
    return {
        "GARAGE_ADMIN_ENDPOINT": os.environ.get("GARAGE_ADMIN_ENDPOINT", ""),
        "GARAGE_ADMIN_TOKEN": os.environ.get("GARAGE_ADMIN_TOKEN", ""),
        "GARAGE_ACCESS_KEY_ID": "GK" + secrets.token_hex(12),
        "GARAGE_SECRET_ACCESS_KEY": secrets.token_hex(32),
        "GARAGE_BUCKETS": f"bootstrap-it-{suffix}-media:public,bootstrap-it-{suffix}-upload",
        "GARAGE_READY_TIMEOUT": "30",
    }


@pytest.fixture
def live_client(live_env):
    return GarageAdminClient(live_env["GARAGE_ADMIN_ENDPOINT"], live_env["GARAGE_ADMIN_TOKEN"])


def _bucket_info(client, alias):
    for bucket in client.list_buckets():
        if alias in bucket.get("globalAliases", []):
            return client.get_bucket_info(bucket["id"])
    return None


class TestLiveBootstrap:
    """Integration tests of a full bootstrap run."""

    def test_bootstrap_reaches_declared_state(self, live_env, live_client):
        """Test layout, key and buckets after one run."""
        assert run_bootstrap(live_env) == EXIT_OK

        layout = live_client.get_layout()
        assert len(layout["roles"]) == 1
        assert layout["roles"][0]["capacity"]

        keys = live_client.list_keys()
        assert [k["id"] for k in keys] == [live_env["GARAGE_ACCESS_KEY_ID"]]

        media, upload = [b.split(":")[0] for b in live_env["GARAGE_BUCKETS"].split(",")]
        media_info = _bucket_info(live_client, media)
        assert media_info["websiteAccess"] is True
        assert media_info["websiteConfig"]["indexDocument"] == INDEX_DOCUMENT

        upload_info = _bucket_info(live_client, upload)
        assert upload_info["websiteAccess"] is False
        assert [k["accessKeyId"] for k in upload_info["keys"]] == [live_env["GARAGE_ACCESS_KEY_ID"]]

    def test_bootstrap_is_repeatable(self, live_env, live_client):
        """Test that a second run with the same configuration succeeds."""
        assert run_bootstrap(live_env) == EXIT_OK
        version = live_client.get_layout()["version"]

        assert run_bootstrap(live_env) == EXIT_OK
        assert live_client.get_layout()["version"] == version
