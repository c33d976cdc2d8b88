"""Exception hierarchy shared by the store and the traverser."""

from __future__ import annotations

from typing import Optional


class DownloadError(Exception):
    """Base class for failures while fetching an artifact."""

    def __init__(self, message: str, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class TransientIOError(DownloadError):
    """Failure that is safe to retry."""


class PermanentRequestError(DownloadError):
    """Failure that will not go away by asking again."""


class NetworkError(TransientIOError):
    """Timeout, reset connection, DNS failure."""


class HttpStatusError(DownloadError):
    """Server answered with a non-success status."""

    def __init__(self, status_code: int, url: Optional[str] = None) -> None:
        super().__init__(f"HTTP {status_code} for {url}", url)
        self.status_code = status_code


class ServerStatusError(HttpStatusError, TransientIOError):
    """5xx (and 429) responses."""


class ClientStatusError(HttpStatusError, PermanentRequestError):
    """4xx responses."""


class MalformedReferenceError(PermanentRequestError):
    pass


class UnsupportedContentError(PermanentRequestError):
    pass


class FilesystemError(DownloadError):
    """Writing to disk failed; retrying will not help."""


def status_error(status_code: int, url: Optional[str] = None) -> HttpStatusError:
    """Pick the retryable or permanent status error for a response code."""
    if status_code >= 500 or status_code == 429:
        return ServerStatusError(status_code, url)
    return ClientStatusError(status_code, url)


class TraversalError(Exception):
    """Base class for failures that end a traversal."""


class StallDetected(TraversalError):
    def __init__(self, reference: str, repeats: int) -> None:
        super().__init__(f"{reference} read on {repeats} consecutive steps")
        self.reference = reference
        self.repeats = repeats


class DriverError(TraversalError):
    """The page or its selector engine failed."""


class DeadlineExceeded(TraversalError):
    pass
