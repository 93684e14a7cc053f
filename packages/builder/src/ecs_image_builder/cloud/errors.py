from __future__ import annotations

from enum import StrEnum
from typing import Optional

from ecs_image_builder.core.errors import BuilderError


class ErrorKind(StrEnum):
    NOT_READY = "not_ready"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


# Resource is mid-transition; the same call is expected to succeed later.
_TRANSIENT_CODES: frozenset[str] = frozenset(
    {
        "IncorrectInstanceStatus.Initializing",
        "IncorrectInstanceStatus",
        "IncorrectImageStatus",
        "IncorrectSnapshotStatus",
        "IncorrectDiskStatus",
        "OperationConflict",
        "LastTokenProcessing",
        "ServiceUnavailable",
        "InternalError",
        "Throttling",
        "Throttling.User",
        "Throttling.Api",
    }
)

# Eventual consistency: freshly created ids are not visible to describes yet.
_NOT_READY_CODES: frozenset[str] = frozenset(
    {
        "InvalidInstanceId.NotFound",
        "InvalidImageId.NotFound",
        "InvalidSnapshotId.NotFound",
        "InvalidDiskId.NotFound",
        "InvalidAllocationId.NotFound",
        "InvalidVpcId.NotFound",
        "InvalidVSwitchId.NotFound",
    }
)


def classify_error_code(code: str) -> ErrorKind:
    if code in _NOT_READY_CODES:
        return ErrorKind.NOT_READY
    if code in _TRANSIENT_CODES or code.startswith("Throttling"):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


class CloudApiError(BuilderError):
    """
    Error returned by the ECS control plane.
    """

    kind: ErrorKind = ErrorKind.PERMANENT

    def __init__(
        self,
        *,
        code: str,
        message: str,
        action: Optional[str] = None,
        request_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        msg = f"{code}: {message}"
        if action:
            msg = f"{action} failed with {msg}"
        if request_id:
            msg += f" (request_id={request_id})"
        super().__init__(msg)
        self.code = code
        self.message = message
        self.action = action
        self.request_id = request_id
        self.status_code = status_code


class ResourceNotReadyError(CloudApiError):
    kind = ErrorKind.NOT_READY


class TransientConflictError(CloudApiError):
    kind = ErrorKind.TRANSIENT


class PermanentCloudError(CloudApiError):
    kind = ErrorKind.PERMANENT


_ERROR_CLASSES: dict[ErrorKind, type[CloudApiError]] = {
    ErrorKind.NOT_READY: ResourceNotReadyError,
    ErrorKind.TRANSIENT: TransientConflictError,
    ErrorKind.PERMANENT: PermanentCloudError,
}


def cloud_error(
    *,
    code: str,
    message: str,
    action: Optional[str] = None,
    request_id: Optional[str] = None,
    status_code: Optional[int] = None,
) -> CloudApiError:
    """Build the error subclass matching the classification of `code`."""
    cls = _ERROR_CLASSES[classify_error_code(code)]
    return cls(
        code=code,
        message=message,
        action=action,
        request_id=request_id,
        status_code=status_code,
    )
