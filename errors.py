from fastapi import status


class TrackerError(Exception):
    """Base error carrying a human-readable message and the HTTP status it maps to."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(TrackerError):
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthorized(TrackerError):
    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(TrackerError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(TrackerError):
    status_code = status.HTTP_409_CONFLICT


class StorageError(TrackerError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Storage is unavailable, please try again"):
        super().__init__(message)


def not_authenticated() -> Unauthorized:
    return Unauthorized("Not authenticated", status.HTTP_401_UNAUTHORIZED)
