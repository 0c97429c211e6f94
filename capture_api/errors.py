from enum import Enum


class ErrorKind(str, Enum):
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    REMOTE_REJECTED = "RemoteRejected"
    UNREACHABLE = "Unreachable"
    TEMPLATE_MISSING = "TemplateMissing"
    INVALID_REQUEST = "InvalidRequest"


class CaptureError(Exception):
    """Raised on the capture path; the route maps it to an HTTP status."""

    def __init__(self, kind: ErrorKind, message: str, status_code: int = 400):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
