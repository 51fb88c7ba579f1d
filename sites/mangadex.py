from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

import requests

from .base import BaseSiteHandler, ChapterManifest, ChapterSummary, SearchResult
from .errors import ChapterUnavailable, NoPagesAvailable, UpstreamUnreachable
from .http import CatalogClient

logger = logging.getLogger(__name__)


class MangaDexSiteHandler(BaseSiteHandler):
    name = "mangadex"

    _API_BASE = "https://api.mangadex.org"
    _UPLOADS_BASE = "https://uploads.mangadex.org"
    _MIRROR_BASE = "https://mangadex.online"
    _PLACEHOLDER_COVER = "https://via.placeholder.com/150"

    search_limit = 10
    feed_limit = 100
    language = "en"

    def configure_session(self, client: CatalogClient) -> None:
        client.session.headers["User-Agent"] = (
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/125.0.0.0 Safari/537.36"
        )

    # ------------------------------------------------------------------ helpers
    def _title_from_attributes(self, attributes: Dict) -> str:
        title = attributes.get("title") or {}
        if isinstance(title, dict):
            if title.get("en"):
                return title["en"]
            for value in title.values():
                if value:
                    return value
        return "No title"

    def _cover_url(self, manga_id: str, relationships: Iterable[Dict]) -> str:
        for rel in relationships:
            if rel.get("type") == "cover_art" and rel.get("attributes"):
                file_name = rel["attributes"].get("fileName")
                if file_name:
                    return f"{self._UPLOADS_BASE}/covers/{manga_id}/{file_name}.512.jpg"
        return self._PLACEHOLDER_COVER

    def _page_list(self, attributes: Dict) -> List[str]:
        # Full quality first, data-saver only when the full list is missing.
        for key in ("data", "dataSaver"):
            pages = attributes.get(key)
            if not isinstance(pages, (list, tuple)):
                continue
            pages = [name for name in pages if isinstance(name, str) and name]
            if pages:
                return pages
        return []

    # ----------------------------------------------------------- catalog proxy
    def search(self, query: str, client: CatalogClient) -> List[SearchResult]:
        payload = client.get_json(
            f"{self._API_BASE}/manga",
            params={
                "title": query,
                "limit": str(self.search_limit),
                "includes[]": ["cover_art"],
                "availableTranslatedLanguage[]": [self.language],
            },
        )
        results = []
        for manga in payload.get("data") or []:
            manga_id = manga["id"]
            attributes = manga.get("attributes") or {}
            results.append(
                SearchResult(
                    id=manga_id,
                    title=self._title_from_attributes(attributes),
                    url=f"{self._MIRROR_BASE}/title/{manga_id}",
                    cover_url=self._cover_url(manga_id, manga.get("relationships") or []),
                    # Licensing is not checked here; the download endpoint reports it.
                    downloadable=True,
                )
            )
        return results

    def list_chapters(self, manga_id: str, client: CatalogClient) -> List[ChapterSummary]:
        payload = client.get_json(
            f"{self._API_BASE}/manga/{manga_id}/feed",
            params={
                "translatedLanguage[]": [self.language],
                "order[chapter]": "asc",
                "limit": str(self.feed_limit),
            },
        )
        chapters = []
        for chapter in payload.get("data") or []:
            attr = chapter.get("attributes") or {}
            chapters.append(
                ChapterSummary(
                    id=chapter["id"],
                    number=attr.get("chapter") or "0",
                    title=attr.get("title") or "",
                    pages=attr.get("pages") or 0,
                )
            )
        return chapters

    def reader_images(self, chapter_id: str, client: CatalogClient) -> List[str]:
        payload = client.get_json(f"{self._API_BASE}/at-home/server/{chapter_id}")
        base_url = payload.get("baseUrl")
        chapter_data = payload.get("chapter") or {}
        file_hash = chapter_data.get("hash")
        if not base_url or not file_hash:
            raise ValueError("MangaDex At-Home API returned incomplete data.")
        return [
            f"{base_url}/data/{file_hash}/{filename}"
            for filename in chapter_data.get("data") or []
        ]

    # ----------------------------------------------------------------- download
    def resolve_chapter(self, chapter_id: str, client: CatalogClient) -> ChapterManifest:
        try:
            payload = client.get_json(f"{self._API_BASE}/chapter/{chapter_id}")
        except (requests.exceptions.RequestException, ValueError) as e:
            raise UpstreamUnreachable(f"Chapter lookup failed for {chapter_id}: {e}") from e

        data: Optional[Dict] = payload.get("data") if isinstance(payload, dict) else None
        attributes = (data or {}).get("attributes") or {}
        content_hash = attributes.get("hash")
        if not content_hash:
            logger.error("Invalid chapter data for %s: %r", chapter_id, payload)
            raise ChapterUnavailable(f"Chapter {chapter_id} has no content hash")

        pages = self._page_list(attributes)
        if not pages:
            logger.warning("No pages found for chapter: %s", chapter_id)
            raise NoPagesAvailable(f"Chapter {chapter_id} lists no pages")

        server = (attributes.get("server") or self._UPLOADS_BASE).rstrip("/")
        return ChapterManifest(
            chapter_id=chapter_id,
            content_hash=content_hash,
            server_base=server,
            page_filenames=tuple(pages),
        )


__all__ = ["MangaDexSiteHandler"]
