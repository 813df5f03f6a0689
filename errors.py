"""
Application errors.

Every failure raised by a route or a service is one of these; main.py turns
them into the JSON envelope with the matching status code.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400


class ConflictError(AppError):
    status_code = 400


class NotFoundError(AppError):
    status_code = 404


class AuthenticationError(AppError):
    status_code = 401


class AuthorizationError(AppError):
    status_code = 403


class InternalError(AppError):
    status_code = 500
