"""
Error taxonomy for backup and restore operations.

Every error carries a machine readable ``error_type`` so that top-level
operations can turn it into a structured failure payload instead of letting
it cross the workflow step boundary.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class BackupError(Exception):
    """Base error for synchronization and restore failures"""

    def __init__(
        self,
        message: str,
        error_type: str = "unknown",
        retry_possible: bool = True,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.retry_possible = retry_possible
        self.metadata = metadata or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses and logging"""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "retry_possible": self.retry_possible,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }


class ToolingError(BackupError):
    """A command inside the sandbox failed (git missing, non-zero exit, ...)"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_type", "tooling_error")
        super().__init__(message, **kwargs)


class CommandTimeoutError(ToolingError):
    """A sandbox command exceeded its millisecond budget"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_type", "timeout")
        super().__init__(message, **kwargs)


class RemoteStateError(BackupError):
    """The source-hosting provider answered with an unexpected state"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_type", "remote_state_error")
        super().__init__(message, **kwargs)


class SandboxUrlError(BackupError):
    """A sandbox id could not be derived from a preview URL"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_type", "invalid_sandbox_url")
        kwargs.setdefault("retry_possible", False)
        super().__init__(message, **kwargs)


class FragmentNotFoundError(BackupError):
    def __init__(self, fragment_id: str):
        super().__init__(
            f"Fragment {fragment_id} not found",
            error_type="not_found",
            retry_possible=False,
            metadata={"fragment_id": fragment_id},
        )


class PreconditionFailedError(BackupError):
    """The fragment exists but cannot be restored yet"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_type", "precondition_failed")
        kwargs.setdefault("retry_possible", False)
        super().__init__(message, **kwargs)
