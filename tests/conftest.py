import io

import pytest
from PIL import Image

from sites import CatalogClient, RateGate
from sites.base import ChapterManifest
from sites.mangadex import MangaDexSiteHandler

API = "https://api.mangadex.org"


class FakeClock:
    def __init__(self):
        self.t = 0.0
        self.sleeps = []

    def time(self):
        return self.t

    def sleep(self, dt):
        self.sleeps.append(dt)
        self.t += dt


def make_image_bytes(color, size=(100, 140), fmt="PNG"):
    im = Image.new("RGB", size, color)
    buf = io.BytesIO()
    im.save(buf, format=fmt)
    return buf.getvalue()


def chapter_payload(hash_="abc", server="https://u.example", data=None, data_saver=None):
    attributes = {"hash": hash_, "server": server}
    if data is not None:
        attributes["data"] = data
    if data_saver is not None:
        attributes["dataSaver"] = data_saver
    return {"result": "ok", "data": {"id": "ch-1", "type": "chapter", "attributes": attributes}}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    c = CatalogClient(RateGate(0))
    yield c
    c.close()


@pytest.fixture
def handler():
    return MangaDexSiteHandler()


@pytest.fixture
def manifest():
    return ChapterManifest(
        chapter_id="ch-1",
        content_hash="abc",
        server_base="https://u.example",
        page_filenames=("1.jpg", "2.jpg", "3.jpg"),
    )
