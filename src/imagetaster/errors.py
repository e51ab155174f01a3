"""Domain errors for imagetaster."""

from typing import Optional


class TasterError(RuntimeError):
    """Raised when a tasting session cannot continue safely."""


class ControlPlaneError(TasterError):
    """Raised when the cloud control plane rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ImageNotFoundError(TasterError):
    """Raised when the requested image does not exist."""


class ProvisionError(TasterError):
    """Raised when the instance could not be created."""


class ReadinessTimeout(TasterError):
    """Raised when the instance never reported ready."""

    def __init__(self, message: str, fault: Optional[str] = None):
        super().__init__(message)
        self.fault = fault


class SnapshotTimeout(TasterError):
    """Raised when a snapshot image never became active."""


class AttachTimeout(TasterError):
    """Raised when a volume did not show up in the instance attachments."""


class UnexpectedDetach(TasterError):
    """Raised when an attached volume vanished during the persistence wait."""


class RemoteConnectionError(TasterError):
    """Raised when an SSH connection could not be established after retries."""


class RemoteCommandError(TasterError):
    """Raised when a remote command could not be executed."""


class SuiteConnectionError(TasterError):
    """Raised when the compliance suite could not reach the instance."""


class SuiteExecutionError(TasterError):
    """Raised when the compliance suite failed for any other reason."""
