class SnapLinkError(Exception):
    status_code = 500
    default_detail = "Server error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class ValidationError(SnapLinkError):
    status_code = 400
    default_detail = "Invalid request"


class InvalidUrl(ValidationError):
    default_detail = "Invalid URL"


class InvalidFormat(ValidationError):
    default_detail = "Short code must be 3-20 characters of letters, digits, '-' or '_'"


class ConflictError(SnapLinkError):
    status_code = 409
    default_detail = "Conflict"


class CodeAlreadyTaken(ConflictError):
    default_detail = "Short code already taken"


class NotFoundError(SnapLinkError):
    status_code = 404
    default_detail = "URL not found"


class ExpiredError(SnapLinkError):
    status_code = 410
    default_detail = "URL has expired"


class CodeGenerationExhausted(SnapLinkError):
    default_detail = "Could not generate a unique short code"


class StoreError(SnapLinkError):
    default_detail = "Database error"


class StoreTimeout(StoreError):
    status_code = 503
    default_detail = "Database timed out"


class AuthError(SnapLinkError):
    status_code = 401
    default_detail = "Invalid token"


class ForbiddenError(SnapLinkError):
    status_code = 403
    default_detail = "Admin access required"
