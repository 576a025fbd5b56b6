"""
Error types for Garage Bootstrap.

Three families are raised by the package:

- ConfigError: malformed or missing configuration, raised before any
  network call is made.
- ApiError: a failed admin API call, classified as transient (retried by
  the admin client) or permanent (raised immediately).
- StartupError: a phase-level failure of the bootstrap run.
"""

from enum import Enum
from typing import List, Optional, Tuple


class ConfigErrorKind(str, Enum):
    MISSING_REQUIRED = "MissingRequired"
    INVALID_FORMAT = "InvalidFormat"
    INVALID_POLICY = "InvalidPolicy"
    INVALID_BUCKET_NAME = "InvalidBucketName"
    DUPLICATE_BUCKET = "DuplicateBucket"
    INVALID_SETTING = "InvalidSetting"


class ApiErrorKind(str, Enum):
    TRANSIENT = "Transient"
    PERMANENT = "Permanent"


class StartupErrorKind(str, Enum):
    READINESS_TIMEOUT = "ReadinessTimeout"
    LAYOUT_FAILED = "LayoutFailed"
    KEY_IMPORT_FAILED = "KeyImportFailed"
    BUCKET_RECONCILE_FAILED = "BucketReconcileFailed"
    DEADLINE_EXCEEDED = "DeadlineExceeded"


class GarageBootstrapError(Exception):
    """Base class for all errors raised by garage_bootstrap."""


class ConfigError(GarageBootstrapError):
    """Invalid configuration input."""

    def __init__(
        self,
        kind: ConfigErrorKind,
        message: str,
        field: Optional[str] = None,
        bucket: Optional[str] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.field = field
        self.bucket = bucket


class ApiError(GarageBootstrapError):
    """A failed request to the Garage admin API."""

    def __init__(
        self,
        kind: ApiErrorKind,
        message: str,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status = status

    @property
    def transient(self) -> bool:
        return self.kind is ApiErrorKind.TRANSIENT


class StartupError(GarageBootstrapError):
    """
    A bootstrap phase failed.

    For BucketReconcileFailed, ``failures`` holds one ``(bucket, cause)``
    pair per bucket that could not be reconciled, in declared order.
    """

    def __init__(
        self,
        kind: StartupErrorKind,
        message: str,
        failures: Optional[List[Tuple[str, Exception]]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.failures = failures or []

    def __str__(self) -> str:
        message = super().__str__()
        if not self.failures:
            return message
        details = "; ".join(f"{bucket}: {cause}" for bucket, cause in self.failures)
        return f"{message} ({details})"
