from fastapi import HTTPException, status


class CredentialsException(HTTPException):
    """Exception for invalid credentials."""

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class NotFoundException(HTTPException):
    """Exception for resource not found."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail,
        )


class ForbiddenException(HTTPException):
    """Exception for forbidden access."""

    def __init__(self, detail: str = "Forbidden"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class ValidationException(HTTPException):
    """Exception for malformed input that passed schema validation."""

    def __init__(self, detail: str = "Validation failed"):
        super().__init__(
            status_code=422,
            detail=detail,
        )


class UpstreamUnavailableException(HTTPException):
    """Exception for an unreachable delivery transport."""

    def __init__(self, detail: str = "Upstream unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
        )
