"""
Typed failures raised by the service layer.

Each one is an HTTPException so FastAPI renders it as {"detail": ...} with the
matching status code; routes let them propagate untouched.
"""
from fastapi import HTTPException, status


class Unauthorized(HTTPException):
    def __init__(self, detail: str = "Please login (10001)"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class Forbidden(HTTPException):
    def __init__(self, detail: str = "You do not have required permission (10002)"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotFound(HTTPException):
    def __init__(self, detail: str = "Not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequest(HTTPException):
    def __init__(self, detail: str = "Bad request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class Conflict(HTTPException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class Unavailable(HTTPException):
    def __init__(self, detail: str = "Database not available"):
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
