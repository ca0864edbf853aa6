class MovieDataError(Exception):
    """Base class for errors raised by the movie data service."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MovieDataError):
    status_code = 400


class PermissionDeniedError(MovieDataError):
    status_code = 403


class NotFoundError(MovieDataError):
    status_code = 404


class DuplicateError(MovieDataError):
    status_code = 409


class AuthServiceError(MovieDataError):
    """The external auth service could not be reached or answered with an error."""

    status_code = 503
