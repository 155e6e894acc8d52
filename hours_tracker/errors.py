"""Error types raised by the Bitbucket client and the refresh pipeline."""

from typing import Optional


class AppError(Exception):
    """Base error carrying a machine-readable code and an HTTP status."""

    code = "APP_ERROR"
    status = 500

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status is not None:
            self.status = status

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class BitbucketApiError(AppError):
    """Non-recoverable response from the Bitbucket REST API."""

    code = "API_ERROR"
    status = 502

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class BitbucketAuthError(BitbucketApiError):
    """401/403 from Bitbucket. Never retried; aborts a running sync."""

    code = "AUTH_ERROR"
    status = 401

    def __init__(self, message: str = "Authentication failed", status_code: Optional[int] = None,
                 url: Optional[str] = None):
        super().__init__(message, status_code=status_code, url=url)


class BitbucketRateLimitError(BitbucketApiError):
    """Rate limiting persisted after all retries were used."""

    code = "RATE_LIMITED"
    status = 503


class InvalidJobTransition(AppError):
    """A refresh job was asked to move backwards or out of a terminal state."""

    code = "INVALID_TRANSITION"
    status = 409
