"""
Typed service errors.

Services raise a ServiceError subclass; the HTTP layer maps its kind to a
status code and a ``{"message": ...}`` body.
"""

from enum import Enum


class ErrorKind(str, Enum):
    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"


STATUS_CODES = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
}


class ServiceError(Exception):
    kind: ErrorKind = ErrorKind.BAD_REQUEST
    default_message = "Bad request"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_CODES[self.kind]

    def __repr__(self):
        return f"{type(self).__name__}({self.message!r})"


class BadRequestError(ServiceError):
    kind = ErrorKind.BAD_REQUEST


class UnauthorizedError(ServiceError):
    kind = ErrorKind.UNAUTHORIZED
    default_message = "Not authorized"


class InvalidTokenError(UnauthorizedError):
    default_message = "Invalid token"


class ForbiddenError(ServiceError):
    kind = ErrorKind.FORBIDDEN
    default_message = "Access denied"


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Not found"


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT
    default_message = "Already exists"
