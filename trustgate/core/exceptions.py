# trustgate/core/exceptions.py
"""
Error taxonomy for trusted-device operations.

Routes translate these into HTTP responses through the handlers
registered in main.py. Each class carries the status code it maps to.
"""

from fastapi import status


class TrustedDeviceError(Exception):
    """Base class for trusted-device failures."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Trusted device operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class UnauthenticatedError(TrustedDeviceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class InvalidInputError(TrustedDeviceError, ValueError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class DeviceNotFoundError(TrustedDeviceError):
    """
    Raised for unknown ids and for ids owned by someone else alike,
    so callers cannot discover other users' devices.
    """

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Trusted device not found"


class ForbiddenError(TrustedDeviceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Admin access required"


class StorageFailureError(TrustedDeviceError):
    default_message = "Trusted device storage is unavailable"
