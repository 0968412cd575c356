"""
Exception hierarchy for the civic reporting service.

Every error carries an HTTP status so a single handler in ``main.py`` can
render it; the wizard catches the non-fatal ones (upload, geocoding,
classification) and degrades instead of failing.
"""

from typing import Any, Dict, Optional

from fastapi import status


class UrbanSetuError(Exception):
    """Base exception for all service errors"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {"detail": self.message, "error_code": self.error_code}
        if self.details:
            body.update(self.details)
        return body


class ValidationError(UrbanSetuError):
    """Missing or invalid required field"""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str = "Validation failed", errors: Optional[Dict[str, str]] = None, **kwargs):
        self.errors = errors or {}
        super().__init__(message, details={"errors": self.errors}, **kwargs)


class InvalidTransitionError(ValidationError):
    """Status change not allowed by the lifecycle"""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move complaint from '{current}' to '{target}'",
            errors={"status": f"transition {current} -> {target} is not allowed"},
        )


class UploadError(UrbanSetuError):
    """Image store rejected the blob"""

    status_code = status.HTTP_400_BAD_REQUEST


class GeocodeError(UrbanSetuError):
    """A reverse-geocoding provider failed"""

    status_code = status.HTTP_502_BAD_GATEWAY


class ClassificationError(UrbanSetuError):
    """Model unavailable or inference failed"""

    status_code = status.HTTP_502_BAD_GATEWAY


class StorageError(UrbanSetuError):
    """Repository read/write failure"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class NotFoundError(UrbanSetuError):
    """Requested record does not exist"""

    status_code = status.HTTP_404_NOT_FOUND


class WizardStateError(UrbanSetuError):
    """Wizard operation not valid in the current step"""

    status_code = status.HTTP_409_CONFLICT


class AuthenticationError(UrbanSetuError):
    """Missing, invalid or revoked credentials"""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Could not validate credentials", **kwargs):
        super().__init__(message, details={"redirect": "/login"}, **kwargs)


class AuthorizationError(UrbanSetuError):
    """Authenticated, but the role does not allow the action"""

    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Insufficient permissions", redirect: Optional[str] = None, **kwargs):
        details = {"redirect": redirect} if redirect else None
        super().__init__(message, details=details, **kwargs)
