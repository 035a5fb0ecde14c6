from __future__ import annotations


class SmartBinError(Exception):
    """Base class for failures surfaced to the presentation layer."""

    step: str = "scan"


class AcquisitionFailed(SmartBinError):
    """The image source failed for a reason other than the user backing out."""

    step = "acquisition"


class PermissionDenied(SmartBinError):
    """The user declined camera or photo library access."""

    step = "acquisition"


class Cancelled(SmartBinError):
    """The user abandoned image acquisition."""

    step = "acquisition"


class ClassificationUnavailable(SmartBinError):
    """Neither the remote classifier nor the fallback produced a result."""

    step = "classification"


class InvalidCategory(SmartBinError, ValueError):
    step = "recording"

    def __init__(self, category: object, allowed: tuple[str, ...] = ()) -> None:
        self.category = category
        self.allowed = allowed
        message = f"Unknown waste category {category!r}"
        if allowed:
            message = f"{message}; expected one of {', '.join(allowed)}"
        super().__init__(message)


class InvalidSource(SmartBinError, ValueError):
    step = "recording"

    def __init__(self, source: object) -> None:
        self.source = source
        super().__init__(f"Unknown result source {source!r}")


class StorageError(SmartBinError):
    step = "recording"


class StorageUnavailable(StorageError):
    pass


class StorageWriteFailed(StorageError):
    pass


class StorageReadFailed(StorageError):
    step = "history"


class WorkflowBusy(SmartBinError):
    """A scan is already in flight on this workflow instance."""


__all__ = [
    "SmartBinError",
    "AcquisitionFailed",
    "PermissionDenied",
    "Cancelled",
    "ClassificationUnavailable",
    "InvalidCategory",
    "InvalidSource",
    "StorageError",
    "StorageUnavailable",
    "StorageWriteFailed",
    "StorageReadFailed",
    "WorkflowBusy",
]
