"""Domain errors carrying an HTTP status and a machine-readable code."""


class ServiceError(Exception):
    """Base for failures that the API renders as {"error": message, "code": code}."""

    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"


class ValidationError(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"


class UpstreamError(ServiceError):
    """An external service (mail provider, drafting model, accounting sync) failed."""

    status_code = 502
    code = "UPSTREAM_ERROR"
