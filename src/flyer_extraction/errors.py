"""Exception types shared by the flyer pipeline stages."""

from __future__ import annotations


class FlyerError(Exception):
    pass


class RequestValidationError(FlyerError):
    """Caller supplied an unknown store id or an unusable url list."""


class FetchError(FlyerError):
    """Transport failure, non-2xx status, or a body over the size cap."""

    def __init__(self, message: str, *, url: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class UrlNotAllowedError(FlyerError):
    """URL is not http(s) or its host is outside the store's allowlist."""

    def __init__(self, message: str, *, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class ModelOutputError(FlyerError):
    pass


class PipelineCancelled(FlyerError):
    """Raised when the caller cancels; never downgraded to a warning."""
