"""Remote image externalization, compression and orphan cleanup."""

from __future__ import annotations

import asyncio
import io
import logging
import posixpath
import re
from pathlib import Path
from typing import List, Optional, Set
from urllib.parse import urlsplit

import aiohttp
from PIL import Image

from .utils import display_path

logger = logging.getLogger(__name__)

# ![alt](https://host/path.png) with an optional "title"
IMAGE_PATTERN = re.compile(r'!\[(.*?)\]\((https?://[^\s)]+)(\s+"[^"]*")?\)')

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp"}

JPEG_QUALITY = 80
PNG_COLORS = 256
_PALETTE_MODES = {"RGB", "RGBA", "P"}


# -- compression --
def _encode_jpeg(img: Image.Image) -> bytes:
    if img.mode not in ("RGB", "L", "CMYK"):
        img = img.convert("RGB")
    buf = io.BytesIO()
    img.save(buf, "JPEG", quality=JPEG_QUALITY, optimize=True, progressive=True)
    return buf.getvalue()


def _encode_png(img: Image.Image) -> bytes:
    if img.mode not in _PALETTE_MODES:
        img = img.convert("RGBA")
    if img.mode != "P":
        img = img.quantize(colors=PNG_COLORS)
    buf = io.BytesIO()
    img.save(buf, "PNG", optimize=True)
    return buf.getvalue()


def _encode_gif(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, "GIF", save_all=True, optimize=True)
    return buf.getvalue()


def compress_image(data: bytes) -> bytes:
    """Re-encode JPEG/PNG/GIF bytes to shrink them; other formats pass through.

    JPEG is always re-encoded at quality 80. PNG is reduced to a palette and GIF
    re-optimized, but only kept when the result is smaller than the input.
    Images over the Pillow pixel limit raise DecompressionBombError.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
            if fmt == "JPEG":
                return _encode_jpeg(img)
            if fmt == "PNG":
                encoded = _encode_png(img)
            elif fmt == "GIF":
                encoded = _encode_gif(img)
            else:
                return data
    except (OSError, ValueError) as exc:
        # svg and anything else Pillow cannot decode is stored as downloaded
        logger.debug("Storing image bytes unmodified: %s", exc)
        return data
    return encoded if len(encoded) < len(data) else data


# -- externalization --
def cache_filename(url: str) -> Optional[str]:
    """Local filename for a remote image: the last segment of the URL path."""
    name = posixpath.basename(urlsplit(url).path)
    if name in ("", ".", ".."):
        return None
    return name


class ImageExternalizer:
    """Rewrites remote image references in markdown to locally cached copies.

    Every local path a document resolves to is recorded in ``touched``, whether
    it was downloaded now or found on disk, so that the orphan sweep at the end
    of the pass knows which cached files are still in use.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        image_dir: Path,
        url_prefix: str = "",
        touched: Optional[Set[Path]] = None,
    ):
        self.session = session
        self.image_dir = image_dir
        self.url_prefix = url_prefix.rstrip("/")
        self.touched: Set[Path] = touched if touched is not None else set()

    async def externalize(self, md_text: str) -> str:
        """Return md_text with every remote image pointing at its cached copy."""
        pieces: List[str] = []
        last = 0
        for match in IMAGE_PATTERN.finditer(md_text):
            pieces.append(md_text[last:match.start()])
            pieces.append(await self._externalize_match(match))
            last = match.end()
        pieces.append(md_text[last:])
        return "".join(pieces)

    async def _externalize_match(self, match: re.Match) -> str:
        alt_text, remote_url, title = match.group(1), match.group(2), match.group(3) or ""

        filename = cache_filename(remote_url)
        if filename is None:
            logger.warning("Skipping image without a filename: %s", remote_url)
            return match.group(0)

        local_path = self.image_dir / filename
        self.touched.add(local_path)

        if not local_path.exists():
            if not await self._download(remote_url, local_path):
                return match.group(0)

        return f"![{alt_text}]({self.url_prefix}/{filename}{title})"

    async def _download(self, url: str, local_path: Path) -> bool:
        logger.info("- Downloading image: %s", url)
        data = await self._fetch(url)
        if data is None:
            return False
        try:
            data = compress_image(data)
        except Exception as exc:
            logger.warning("Error processing image %s: %s", url, exc)
            return False

        # a failed write must not leave a partial image at local_path
        part_path = local_path.with_name(local_path.name + ".part")
        try:
            part_path.write_bytes(data)
            part_path.replace(local_path)
        except OSError as exc:
            logger.warning("Error saving image %s: %s", url, exc)
            part_path.unlink(missing_ok=True)
            return False
        logger.info("  -> Saved to: %s", display_path(local_path))
        return True

    async def _fetch(self, url: str) -> Optional[bytes]:
        try:
            async with self.session.get(url) as response:
                if not 200 <= response.status < 300:
                    logger.warning("Failed to fetch %s: HTTP %s", url, response.status)
                    return None
                return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Error downloading image %s: %s", url, exc)
            return None


# -- orphan cleanup --
def collect_orphans(image_dir: Path, touched: Set[Path]) -> List[Path]:
    """Delete image files in image_dir that no document referenced this pass."""
    logger.info("Cleaning up orphaned images...")
    deleted: List[Path] = []
    if not image_dir.is_dir():
        return deleted

    for path in sorted(image_dir.iterdir()):
        if not path.is_file() or path.suffix.lower() not in IMAGE_EXTENSIONS:
            continue
        if path in touched:
            continue
        logger.info("- Deleting orphaned image: %s", display_path(path))
        try:
            path.unlink()
        except OSError as exc:
            logger.warning("Could not delete %s: %s", display_path(path), exc)
            continue
        deleted.append(path)

    logger.info("Cleanup complete.")
    return deleted
