from typing import Any, Dict, Optional


class ScraperError(Exception):
    """
    Fatal extraction error.

    Carries the logical phase (namespace) and the page URL so the caller
    can requeue the visit. Anything extra goes into `meta`.
    """

    def __init__(self, message: str, *, namespace: Optional[str] = None, url: Optional[str] = None, **meta: Any):
        super().__init__(message)
        self.message = message
        self.namespace = namespace
        self.url = url
        self.meta = meta

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "namespace": self.namespace,
            "url": self.url,
            **self.meta,
        }

    def __str__(self) -> str:
        where = " ".join(s for s in (self.namespace, self.url) if s)
        return f"{self.message} ({where})" if where else self.message


class SessionInvalidated(ScraperError):
    """Upstream redirected to a login page."""


class RateLimited(ScraperError):
    """Too many consecutive error-marked payloads."""


class ContentNeverLoaded(ScraperError):
    """The page keeps returning empty batches: nothing is loading at all."""


class ConsumerError(ScraperError):
    """The caller's item callback failed."""


class IdleAbortError(Exception):
    """No forward progress inside the idle budget. Not fatal on its own."""


class NoFlowError(ValueError):
    pass
