from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from .http import CatalogClient


@dataclass(frozen=True)
class ChapterManifest:
    """Where a chapter's pages live and in which order they are read."""

    chapter_id: str
    content_hash: str
    server_base: str
    page_filenames: Tuple[str, ...]

    def __post_init__(self):
        if not self.page_filenames:
            raise ValueError("ChapterManifest needs at least one page")

    def page_url(self, filename: str) -> str:
        return f"{self.server_base}/data/{self.content_hash}/{filename}"

    def page_urls(self) -> List[str]:
        return [self.page_url(name) for name in self.page_filenames]


@dataclass
class SearchResult:
    id: str
    title: str
    url: str
    cover_url: str
    downloadable: bool = True

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "coverUrl": self.cover_url,
            "downloadable": self.downloadable,
        }


@dataclass
class ChapterSummary:
    id: str
    number: str
    title: str
    pages: int

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "number": self.number,
            "title": self.title,
            "pages": self.pages,
        }


class BaseSiteHandler:
    """Base class for catalog-specific handlers."""

    name: str = "base"

    # --- Session lifecycle -------------------------------------------------
    def configure_session(self, client: CatalogClient) -> None:
        """Give the handler a chance to tweak the HTTP session."""
        return None

    # --- Catalog browsing --------------------------------------------------
    def search(self, query: str, client: CatalogClient) -> List[SearchResult]:
        raise NotImplementedError

    def list_chapters(self, manga_id: str, client: CatalogClient) -> List[ChapterSummary]:
        raise NotImplementedError

    def reader_images(self, chapter_id: str, client: CatalogClient) -> List[str]:
        raise NotImplementedError

    # --- Download ----------------------------------------------------------
    def resolve_chapter(self, chapter_id: str, client: CatalogClient) -> ChapterManifest:
        raise NotImplementedError


__all__ = [
    "BaseSiteHandler",
    "ChapterManifest",
    "ChapterSummary",
    "SearchResult",
]
