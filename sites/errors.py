from __future__ import annotations

from typing import Optional


class DownloadError(Exception):
    """Base error for the chapter download pipeline.

    ``error`` is the short user-facing message put in the JSON body,
    ``status_code`` the HTTP status the server answers with.
    """

    status_code = 500
    error = "Download failed"

    def __init__(self, details: Optional[str] = None, *, error: Optional[str] = None):
        if error:
            self.error = error
        self.details = details
        super().__init__(details or self.error)

    def to_payload(self) -> dict:
        payload = {"error": self.error}
        if self.details:
            payload["details"] = self.details
        return payload


class MissingParameter(DownloadError):
    status_code = 400

    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(None, error=message or f"{name} is required")


class ChapterUnavailable(DownloadError):
    """Catalog returned no content hash (removed, restricted or external chapter)."""

    status_code = 400
    error = "This chapter has no downloadable content or is restricted"


class NoPagesAvailable(DownloadError):
    status_code = 400
    error = "No pages available for this chapter."


class UpstreamUnreachable(DownloadError):
    """Transport failure, non-2xx or malformed body from the catalog API."""


class PageFetchFailed(DownloadError):
    def __init__(self, index: int, cause: BaseException):
        self.index = index
        self.cause = cause
        super().__init__(f"Page {index + 1} (index {index}) could not be fetched: {cause}")


class ImageDecodeFailed(DownloadError):
    def __init__(self, index: int, cause: Optional[BaseException] = None):
        self.index = index
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(f"Page {index + 1} (index {index}) is not a readable image{reason}")


class DownloadCancelled(DownloadError):
    """The caller went away before the chapter was assembled."""

    status_code = 499
    error = "Download cancelled"


__all__ = [
    "DownloadError",
    "MissingParameter",
    "ChapterUnavailable",
    "NoPagesAvailable",
    "UpstreamUnreachable",
    "PageFetchFailed",
    "ImageDecodeFailed",
    "DownloadCancelled",
]
