"""Exception hierarchy for MediaWatch.

Expected outcomes (no match, missing record) travel as ``Err`` results
(see ``mediawatch.core.result``). These exceptions are for failures that
must interrupt a unit of work: a transient provider error that a job
retries, or a write the store rejected.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional


class MediaWatchError(Exception):
    """Base exception for all MediaWatch errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class NotFoundError(MediaWatchError):
    """Referenced content, topic or tag is missing."""

    def __init__(self, resource: str, resource_id: Any) -> None:
        super().__init__(
            f"{resource} {resource_id} not found",
            {"resource": resource, "resource_id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class TransientExternalError(MediaWatchError):
    """Network/API failure from an external scoring or stats provider."""

    def __init__(self, message: str, provider: str = "", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.provider = provider

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["provider"] = self.provider
        return data


class ValidationFailure(MediaWatchError):
    """A reconciled write was rejected by the store."""
