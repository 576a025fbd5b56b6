"""
Readiness probe for the Garage admin API.

Before the cluster is initialised the admin API may refuse connections or
answer with errors; every failure here only means "not ready yet".
"""

import logging
import time
from typing import Any, Dict, Optional

from .admin_client import Deadline, GarageAdminClient
from .errors import ApiError, StartupError, StartupErrorKind

logger = logging.getLogger(__name__)

LOG_INTERVAL = 1.0


class ReadinessProbe:
    """Poll the admin API health endpoint until it answers or time runs out."""

    def __init__(
        self,
        client: GarageAdminClient,
        timeout: float = 20.0,
        interval: float = 0.1,
        deadline: Optional[Deadline] = None,
    ):
        self.client = client
        self.timeout = timeout
        self.interval = interval
        self.deadline = deadline

    def wait(self) -> Dict[str, Any]:
        """
        Block until the health check succeeds.

        Returns:
            The first successful health response

        Raises:
            StartupError: ReadinessTimeout if the API never became healthy
        """
        timeout = self.timeout
        if self.deadline is not None:
            timeout = min(timeout, self.deadline.remaining())

        start = time.monotonic()
        next_log = LOG_INTERVAL
        attempts = 0
        last_error: Optional[ApiError] = None

        while True:
            attempts += 1
            try:
                health = self.client.get_health(retry=False)
                elapsed = time.monotonic() - start
                logger.info(f"Garage admin API ready after {elapsed:.1f}s")
                return health
            except ApiError as e:
                last_error = e
                logger.debug(f"Health check failed: {e}")

            elapsed = time.monotonic() - start
            if elapsed >= timeout:
                logger.error(f"Garage admin API not ready after {elapsed:.1f}s")
                raise StartupError(
                    StartupErrorKind.READINESS_TIMEOUT,
                    f"admin API not ready after {timeout:.1f}s "
                    f"({attempts} attempts, last error: {last_error})",
                )
            if elapsed >= next_log:
                next_log += LOG_INTERVAL
                logger.info(f"Waiting for garage... ({elapsed:.1f}s)")
            time.sleep(min(self.interval, timeout - elapsed))
