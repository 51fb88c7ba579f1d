"""Catalog handlers and the rate-limited client they talk through."""

from __future__ import annotations

from typing import Iterable, Optional

from .base import BaseSiteHandler, ChapterManifest, ChapterSummary, SearchResult
from .http import CatalogClient, RateGate
from .mangadex import MangaDexSiteHandler

_REGISTERED_HANDLERS: Iterable[BaseSiteHandler] = (
    MangaDexSiteHandler(),
)


def get_handler_by_name(name: str) -> Optional[BaseSiteHandler]:
    lowered = name.lower()
    for handler in _REGISTERED_HANDLERS:
        if handler.name == lowered:
            return handler
    return None


__all__ = [
    "get_handler_by_name",
    "BaseSiteHandler",
    "CatalogClient",
    "ChapterManifest",
    "ChapterSummary",
    "RateGate",
    "SearchResult",
]
