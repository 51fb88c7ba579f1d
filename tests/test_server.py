import asyncio
import io
import logging
import threading

import pytest
import responses
from fastapi.testclient import TestClient
from pypdf import PdfReader

import chapter_server
from chapter_server import _run_until_done, content_disposition, create_app, sanitize_filename
from conftest import API, chapter_payload, make_image_bytes
from settings import Settings
from sites.errors import DownloadCancelled


@pytest.fixture
def app_client(client, tmp_path):
    settings = Settings(PDF_DPI=72, DOWNLOAD_DIR=str(tmp_path / "downloads"))
    return TestClient(create_app(settings, client=client))


def _add_chapter(pages=("1.jpg", "2.jpg", "3.jpg")):
    responses.add(responses.GET, f"{API}/chapter/ch-1", json=chapter_payload(data=list(pages)))


def _add_pages(pages=("1.jpg", "2.jpg", "3.jpg")):
    for n, name in enumerate(pages):
        responses.add(
            responses.GET,
            f"https://u.example/data/abc/{name}",
            body=make_image_bytes((40 * n, 100, 100), fmt="JPEG"),
        )


def test_root(app_client):
    r = app_client.get("/")
    assert r.status_code == 200
    assert r.json()["catalog"] == "mangadex"


def test_download_requires_chapter_id(app_client):
    r = app_client.post("/api/download", json={"mangaId": "m-1"})
    assert r.status_code == 400
    assert r.json() == {"error": "chapterId is required"}


def test_download_without_body(app_client):
    r = app_client.post("/api/download")
    assert r.status_code == 400
    assert r.json()["error"] == "chapterId is required"


@responses.activate
def test_download_returns_pdf(app_client):
    _add_chapter()
    _add_pages()
    r = app_client.post(
        "/api/download",
        json={"mangaId": "m-1", "chapterId": "ch-1", "mangaTitle": "Blue Period"},
    )
    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.headers["content-disposition"] == 'attachment; filename="Blue_Period_ch-1.pdf"'
    reader = PdfReader(io.BytesIO(r.content))
    assert len(reader.pages) == 3
    assert reader.metadata.title == "Blue Period"


@responses.activate
def test_download_filename_falls_back_to_manga_id(app_client):
    _add_chapter(pages=("1.jpg",))
    _add_pages(pages=("1.jpg",))
    r = app_client.post("/api/download", json={"mangaId": "m-1", "chapterId": "ch-1"})
    assert r.status_code == 200
    assert 'filename="m-1_ch-1.pdf"' in r.headers["content-disposition"]


@responses.activate
def test_download_restricted_chapter(app_client):
    responses.add(responses.GET, f"{API}/chapter/ch-1", json=chapter_payload(hash_=None))
    r = app_client.post("/api/download", json={"chapterId": "ch-1"})
    assert r.status_code == 400
    assert r.json()["error"] == "This chapter has no downloadable content or is restricted"


@responses.activate
def test_download_chapter_without_pages(app_client):
    responses.add(responses.GET, f"{API}/chapter/ch-1", json=chapter_payload(data=[]))
    r = app_client.post("/api/download", json={"chapterId": "ch-1"})
    assert r.status_code == 400
    assert r.json()["error"] == "No pages available for this chapter."
    assert len(responses.calls) == 1


@responses.activate
def test_download_page_failure_is_500_without_document(app_client):
    _add_chapter()
    responses.add(responses.GET, "https://u.example/data/abc/1.jpg", body=make_image_bytes((0, 0, 0)))
    responses.add(responses.GET, "https://u.example/data/abc/2.jpg", status=500)
    r = app_client.post("/api/download", json={"chapterId": "ch-1"})
    assert r.status_code == 500
    assert r.headers["content-type"].startswith("application/json")
    body = r.json()
    assert body["error"] == "Download failed"
    assert "index 1" in body["details"]
    assert len(responses.calls) == 3


@responses.activate
def test_download_corrupt_page(app_client):
    _add_chapter(pages=("1.jpg",))
    responses.add(responses.GET, "https://u.example/data/abc/1.jpg", body=b"<html>not found</html>")
    r = app_client.post("/api/download", json={"chapterId": "ch-1"})
    assert r.status_code == 500
    body = r.json()
    assert body["error"] == "Download failed"
    assert "index 0" in body["details"]
    assert "not a readable image" in body["details"]


@responses.activate
def test_download_upstream_unreachable(app_client):
    responses.add(responses.GET, f"{API}/chapter/ch-1", status=503)
    r = app_client.post("/api/download", json={"chapterId": "ch-1"})
    assert r.status_code == 500
    assert r.json()["error"] == "Download failed"
    assert "Chapter lookup failed" in r.json()["details"]


def test_search_requires_query(app_client):
    r = app_client.get("/api/search")
    assert r.status_code == 400
    assert r.json() == {"error": 'Query parameter "q" is required'}


@responses.activate
def test_search(app_client):
    responses.add(
        responses.GET,
        f"{API}/manga",
        json={"data": [{"id": "m-1", "attributes": {"title": {"en": "Blue"}}, "relationships": []}]},
    )
    r = app_client.get("/api/search", params={"q": "blue"})
    assert r.status_code == 200
    assert r.json() == [
        {
            "id": "m-1",
            "title": "Blue",
            "url": "https://mangadex.online/title/m-1",
            "coverUrl": "https://via.placeholder.com/150",
            "downloadable": True,
        }
    ]


@responses.activate
def test_search_upstream_failure(app_client):
    responses.add(responses.GET, f"{API}/manga", status=502)
    r = app_client.get("/api/search", params={"q": "blue"})
    assert r.status_code == 500
    assert r.json()["error"] == "Failed to search manga"
    assert "details" in r.json()


@responses.activate
def test_chapters(app_client):
    responses.add(
        responses.GET,
        f"{API}/manga/m-1/feed",
        json={"data": [{"id": "c-1", "attributes": {"chapter": "1", "title": "", "pages": 3}}]},
    )
    r = app_client.get("/api/manga/m-1/chapters")
    assert r.json() == [{"id": "c-1", "number": "1", "title": "", "pages": 3}]


@responses.activate
def test_chapters_upstream_failure(app_client):
    responses.add(responses.GET, f"{API}/manga/m-1/feed", status=500)
    r = app_client.get("/api/manga/m-1/chapters")
    assert r.status_code == 500
    assert r.json()["error"] == "Failed to get chapters"


@responses.activate
def test_reader(app_client):
    responses.add(
        responses.GET,
        f"{API}/at-home/server/c-1",
        json={"baseUrl": "https://node.example", "chapter": {"hash": "h", "data": ["1.png"]}},
    )
    r = app_client.get("/api/reader/c-1")
    assert r.json() == {"images": ["https://node.example/data/h/1.png"]}


@responses.activate
def test_reader_failure(app_client):
    responses.add(responses.GET, f"{API}/at-home/server/c-1", status=404)
    r = app_client.get("/api/reader/c-1")
    assert r.status_code == 500
    assert r.json()["error"] == "Failed to fetch reader images"


def test_lifespan_creates_download_dir(client, tmp_path):
    target = tmp_path / "out"
    app = create_app(Settings(DOWNLOAD_DIR=str(target)), client=client)
    with TestClient(app):
        assert target.is_dir()


def test_unknown_catalog_site():
    with pytest.raises(ValueError):
        create_app(Settings(CATALOG_SITE="nowhere"))


def test_filename_helpers():
    assert sanitize_filename('a/b:c "d"') == "abc_d"
    assert content_disposition("x.pdf") == 'attachment; filename="x.pdf"'
    header = content_disposition("進撃_1.pdf")
    assert 'filename="_1.pdf"' in header
    assert "filename*=UTF-8''%E9%80%B2%E6%92%83_1.pdf" in header


class GoneRequest:
    """Stands in for a Starlette request whose client has hung up."""

    async def is_disconnected(self):
        return True


def test_disconnect_sets_cancel_and_stops_the_build(monkeypatch):
    monkeypatch.setattr(chapter_server, "DISCONNECT_POLL_SECONDS", 0.01)
    cancel = threading.Event()

    def build():
        if cancel.wait(timeout=5):
            raise DownloadCancelled("Client went away")
        return b"%PDF"

    with pytest.raises(DownloadCancelled):
        asyncio.run(_run_until_done(GoneRequest(), cancel, build))
    assert cancel.is_set()


def test_unhandled_error_is_logged_and_500(client, tmp_path, caplog):
    app = create_app(Settings(DOWNLOAD_DIR=str(tmp_path)), client=client)

    @app.get("/boom")
    def boom():
        raise RuntimeError("kaboom")

    with caplog.at_level(logging.ERROR, logger="chapter_server"):
        r = TestClient(app, raise_server_exceptions=False).get("/boom")
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error", "details": "kaboom"}
    assert "Unhandled exception: kaboom" in caplog.messages
