"""Error kinds surfaced to sync callers."""


class SyncError(Exception):
    """Base class for errors returned to the caller of a sync round.

    The message is safe to show to clients and never carries internal detail.
    """

    code = "internal"
    status = "INTERNAL"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"status": self.status, "message": self.message}


class UnauthenticatedError(SyncError):
    code = "unauthenticated"
    status = "UNAUTHENTICATED"
    http_status = 401


class InvalidArgumentError(SyncError):
    code = "invalid-argument"
    status = "INVALID_ARGUMENT"
    http_status = 400


class InternalError(SyncError):
    pass
