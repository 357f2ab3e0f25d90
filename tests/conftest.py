import io
import struct
import zlib
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from PIL import Image

from mdsite.config import SiteConfig


def make_png(color=(200, 30, 30), size=(64, 64)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, "PNG")
    return buf.getvalue()


def make_jpeg(size=(64, 64)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (10, 120, 240)).save(buf, "JPEG", quality=100)
    return buf.getvalue()


def make_oversized_png(width=20000, height=20000) -> bytes:
    """A valid PNG header declaring more pixels than Pillow will open."""

    def chunk(kind, payload):
        return (
            struct.pack(">I", len(payload))
            + kind
            + payload
            + struct.pack(">I", zlib.crc32(kind + payload) & 0xFFFFFFFF)
        )

    ihdr = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    idat = zlib.compress(b"")
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", ihdr) + chunk(b"IDAT", idat) + chunk(b"IEND", b"")


def write_tree(root: Path, files: dict) -> None:
    for rel, text in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


@pytest.fixture
def site_config(tmp_path):
    return SiteConfig(source_root=tmp_path / "md", output_root=tmp_path / "public")


class ImageOrigin:
    """Local stand-in for a remote image host; counts requests per path."""

    def __init__(self):
        self.hits = {}
        self.server = None

    async def handle(self, request):
        name = request.match_info["name"]
        self.hits[name] = self.hits.get(name, 0) + 1
        if name.startswith("missing"):
            return web.Response(status=404, text="nope")
        if name.startswith("huge"):
            return web.Response(body=make_oversized_png(), content_type="image/png")
        if name.endswith(".jpg"):
            return web.Response(body=make_jpeg(), content_type="image/jpeg")
        return web.Response(body=make_png(), content_type="image/png")

    def url(self, name):
        return str(self.server.make_url(f"/img/{name}"))


@pytest_asyncio.fixture
async def image_origin():
    origin = ImageOrigin()
    app = web.Application()
    app.router.add_get("/img/{name}", origin.handle)
    origin.server = TestServer(app)
    await origin.server.start_server()
    try:
        yield origin
    finally:
        await origin.server.close()
