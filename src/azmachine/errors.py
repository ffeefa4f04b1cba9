"""Error taxonomy reported at the driver boundary.

Every failure leaving the driver is a DriverError carrying one ErrorKind from a
small closed set. Raw Azure SDK exceptions are classified here and kept as the
``__cause__`` of the DriverError that replaces them.

Public API:
    ErrorKind: Closed set of error kinds
    DriverError: Base exception
    ConfigurationError, DependencyNotFoundError, MachineNotFoundError,
    ConflictError, ResourceExhaustedError, RemoteCallError,
    OperationCancelledError: Concrete kinds
    is_not_found: True for "resource does not exist" responses
    classify_azure_error: Map an Azure SDK exception to a DriverError
"""

import logging
from collections.abc import Iterable
from enum import StrEnum

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

logger = logging.getLogger(__name__)

# Azure error codes meaning "no capacity for this size/zone right now"
RESOURCE_EXHAUSTED_CODES = frozenset(
    {
        "AllocationFailed",
        "OverconstrainedAllocationRequest",
        "OverconstrainedZonalAllocationRequest",
        "SkuNotAvailable",
        "ZonalAllocationFailed",
    }
)

REQUEST_ID_HEADERS = ("x-ms-request-id", "x-ms-correlation-request-id")


class ErrorKind(StrEnum):
    """Kinds of failure surfaced to the caller."""

    CONFIGURATION = "configuration"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    UNKNOWN = "unknown"


class DriverError(Exception):
    """Base exception for all driver failures."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class ConfigurationError(DriverError):
    """Provider spec or secrets violate an invariant. Raised before any remote call."""

    kind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, problems: Iterable[str] = (), fields: Iterable[str] = ()):
        self.problems = list(problems)
        self.fields = list(fields)
        if self.problems:
            message = message + ":\n" + "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(message)


class DependencyNotFoundError(DriverError):
    """A referenced resource (subnet, image, agreement) does not exist."""

    kind = ErrorKind.NOT_FOUND


class MachineNotFoundError(DependencyNotFoundError):
    """The VM of a compute unit does not exist."""

    pass


class ConflictError(DriverError):
    """A resource about to be deleted is attached to an unexpected owner."""

    kind = ErrorKind.CONFLICT

    def __init__(self, resource_kind: str, resource_name: str, owner: str):
        self.resource_kind = resource_kind
        self.resource_name = resource_name
        self.owner = owner
        super().__init__(
            f"{resource_kind} {resource_name} is attached to VM {owner}, refusing to delete it"
        )


class ResourceExhaustedError(DriverError):
    """Azure has no capacity for the requested size or zone."""

    kind = ErrorKind.RESOURCE_EXHAUSTED


class RemoteCallError(DriverError):
    """An Azure call failed for an unclassified reason."""

    pass


class OperationCancelledError(DriverError):
    """The operation was cancelled or ran past its deadline."""

    pass


def is_not_found(error: BaseException) -> bool:
    """Check whether an Azure exception reports a missing resource."""
    if isinstance(error, ResourceNotFoundError):
        return True
    if isinstance(error, HttpResponseError):
        return error.status_code == 404
    return False


def azure_error_code(error: BaseException) -> str | None:
    """Extract the ARM error code (e.g. ``SkuNotAvailable``) if present."""
    if not isinstance(error, HttpResponseError):
        return None
    odata = getattr(error, "error", None)
    code = getattr(odata, "code", None)
    return code or None


def log_request_ids(error: BaseException, operation: str) -> None:
    """Log Azure request-tracing headers of a failed call."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if not headers:
        return
    ids = {name: headers.get(name) for name in REQUEST_ID_HEADERS if headers.get(name)}
    if ids:
        rendered = ", ".join(f"{k}: {v}" for k, v in ids.items())
        logger.error(f"Azure call failed during {operation} [{rendered}]")


def classify_azure_error(error: BaseException, message: str) -> DriverError:
    """Map an Azure SDK exception to a DriverError.

    The caller raises the result ``from error``.

    Args:
        error: Exception raised by an Azure SDK call
        message: Context describing what was being done

    Returns:
        DriverError of the matching kind
    """
    log_request_ids(error, message)
    detail = f"{message}: {error}"
    if is_not_found(error):
        return DependencyNotFoundError(detail)
    if azure_error_code(error) in RESOURCE_EXHAUSTED_CODES:
        return ResourceExhaustedError(detail)
    return RemoteCallError(detail)


__all__ = [
    "ConfigurationError",
    "ConflictError",
    "DependencyNotFoundError",
    "DriverError",
    "ErrorKind",
    "MachineNotFoundError",
    "OperationCancelledError",
    "RemoteCallError",
    "ResourceExhaustedError",
    "azure_error_code",
    "classify_azure_error",
    "is_not_found",
    "log_request_ids",
]
