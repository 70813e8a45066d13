"""
Error taxonomy for the tracker API.

Each error is an HTTPException so FastAPI renders it as {"detail": message}
with the matching status code. Services raise them directly and the handler
stops at the raise.
"""
from fastapi import HTTPException


class TrackerError(HTTPException):
    status_code = 500
    default_detail = "Unexpected error"

    def __init__(self, detail: str = None):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)


class NotFound(TrackerError):
    status_code = 404
    default_detail = "Resource not found"


class NotAuthorized(TrackerError):
    status_code = 403
    default_detail = "Action not allowed"


class Invalid(TrackerError):
    status_code = 401
    default_detail = "Invalid token"

    def __init__(self, detail: str = None):
        super().__init__(detail)
        self.headers = {"WWW-Authenticate": "Bearer"}


class Conflict(TrackerError):
    status_code = 409
    default_detail = "Conflict"


class Unexpected(TrackerError):
    status_code = 500
    default_detail = "There was an error processing the request"
