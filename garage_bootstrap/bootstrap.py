"""
Garage Cluster Bootstrap

Brings a freshly started single-node Garage daemon to a ready state: waits
for the admin API, assigns the node layout, imports the access key and
reconciles the declared buckets.
"""

import logging
import os
from typing import Any, Dict, Mapping, Optional, Sequence

from .admin_client import Deadline, GarageAdminClient
from .config import Configuration, load_config
from .errors import ConfigError, StartupError, StartupErrorKind
from .readiness import ReadinessProbe
from .reconcilers import BucketReconciler, KeyReconciler, LayoutReconciler, Phase

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIG = 2

EXIT_CODES = {
    StartupErrorKind.READINESS_TIMEOUT: 3,
    StartupErrorKind.LAYOUT_FAILED: 4,
    StartupErrorKind.KEY_IMPORT_FAILED: 5,
    StartupErrorKind.BUCKET_RECONCILE_FAILED: 6,
    StartupErrorKind.DEADLINE_EXCEEDED: 7,
}


def default_phases() -> Sequence[Phase]:
    """Phases in the order they must run: layout, then key, then buckets."""
    return (LayoutReconciler(), KeyReconciler(), BucketReconciler())


class GarageBootstrap:
    """Run the bootstrap phases against one cluster."""

    def __init__(
        self,
        client: GarageAdminClient,
        config: Configuration,
        phases: Optional[Sequence[Phase]] = None,
        deadline: Optional[Deadline] = None,
    ):
        """
        Initialize the bootstrap run.

        Args:
            client: GarageAdminClient instance
            config: Validated configuration
            phases: Reconciliation phases, defaults to layout/key/buckets
            deadline: Overall deadline checked before every phase
        """
        self.client = client
        self.config = config
        self.phases = phases if phases is not None else default_phases()
        self.deadline = deadline

    def bootstrap(self, wait_for_ready: bool = True) -> Dict[str, Any]:
        """
        Bootstrap the cluster.

        Args:
            wait_for_ready: Whether to wait for the admin API first

        Returns:
            Summary of every phase, keyed by phase name

        Raises:
            StartupError: On the first failing phase
        """
        if wait_for_ready:
            logger.info("Waiting for Garage admin API to be ready...")
            settings = self.config.settings
            ReadinessProbe(
                self.client,
                timeout=settings.ready_timeout,
                interval=settings.ready_interval,
                deadline=self.deadline,
            ).wait()

        result = {}
        for phase in self.phases:
            if self.deadline is not None:
                self.deadline.check(f"{phase.name} phase")
            logger.info(f"Running {phase.name} phase")
            result[phase.name] = phase.run(self.config, self.client)

        logger.info("Bootstrapping complete.")
        return result


def client_from_config(
    config: Configuration, deadline: Optional[Deadline] = None
) -> GarageAdminClient:
    """Build an admin client from the configured settings."""
    settings = config.settings
    return GarageAdminClient(
        admin_endpoint=settings.admin_endpoint,
        admin_token=config.admin_token,
        timeout=settings.request_timeout,
        retry_attempts=settings.retry_attempts,
        retry_delay=settings.retry_delay,
        deadline=deadline,
    )


def exit_code_for(error: Exception) -> int:
    """Map a failure to the process exit status."""
    if isinstance(error, ConfigError):
        return EXIT_CONFIG
    if isinstance(error, StartupError):
        return EXIT_CODES.get(error.kind, EXIT_UNEXPECTED)
    return EXIT_UNEXPECTED


def run_bootstrap(environ: Optional[Mapping[str, str]] = None) -> int:
    """
    Load configuration from the environment and bootstrap the cluster.

    Args:
        environ: Mapping to read configuration from, defaults to os.environ

    Returns:
        Process exit status, 0 on success
    """
    if environ is None:
        environ = os.environ

    try:
        config = load_config(environ)
    except ConfigError as e:
        logger.error(f"Invalid configuration ({e.kind.value}): {e}")
        return exit_code_for(e)

    logging.getLogger().setLevel(config.settings.log_level)
    if config.admin_token_generated:
        logger.warning(
            "GARAGE_ADMIN_TOKEN not set, generated a random admin token; it cannot "
            "match the token of an already running daemon, so admin calls will be "
            "rejected and readiness will time out"
        )
    if config.metrics_token_generated:
        logger.info(
            "GARAGE_METRICS_TOKEN not set, generated a random metrics token; "
            "the bootstrap run itself does not use it"
        )
    logger.info(
        f"Bootstrapping {config.settings.admin_endpoint} with "
        f"{len(config.buckets)} bucket(s): {', '.join(b.name for b in config.buckets)}"
    )

    deadline = Deadline(config.settings.deadline)
    client = client_from_config(config, deadline)

    try:
        GarageBootstrap(client, config, deadline=deadline).bootstrap()
    except StartupError as e:
        logger.error(f"Bootstrap failed ({e.kind.value}): {e}")
        for bucket, cause in e.failures:
            logger.error(f"  bucket {bucket!r}: {cause}")
        return exit_code_for(e)
    finally:
        client.session.close()

    return EXIT_OK
