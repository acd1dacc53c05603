"""
Domain exceptions for DevPulse.
Each maps to one HTTP status in devpulse.main.
"""

from typing import Optional


class DevPulseError(Exception):
    """Base exception for all DevPulse errors."""
    status_code = 500


class NotFoundError(DevPulseError):
    """Raised when a referenced user, project or task does not exist."""
    status_code = 404


class AccessDeniedError(DevPulseError):
    """Raised when the requester does not own the resource's project."""
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class AuthenticationError(DevPulseError):
    """Raised when a request carries no session credential."""
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class StoreConflictError(DevPulseError):
    """Raised when the persisted document changed between read and write."""
    status_code = 409

    def __init__(self, expected_version: int, actual_version: int):
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Store document changed underneath this write "
            f"(read version {expected_version}, found {actual_version}). Retry the request."
        )


class GitHubAPIError(DevPulseError):
    """Raised when GitHub returns an error or cannot be reached."""
    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        self.upstream_status = upstream_status
        if upstream_status is not None and upstream_status >= 400:
            self.status_code = upstream_status
        super().__init__(message)
