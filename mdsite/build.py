"""
Build pass: markdown source tree -> static HTML output tree.

One pass, in order:
- seed the source root with an index page if it does not exist
- one-shot builds wipe and recreate the output root; live builds keep it
- build the navigation tree once
- walk the source tree (same order as the navigation) and for each document:
  externalize remote images, render markdown, assemble the page, write it
- delete cached images that no document referenced during the pass
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set, Tuple

import aiohttp

from .config import SEED_DOCUMENT, SiteConfig
from .images import ImageExternalizer, collect_orphans
from .nav import INDEX_DOCUMENT, NavNode, build_nav_tree, page_name, prettify_name, scan_directory
from .page import render_nav_html, render_page_html
from .render import render_markdown
from .utils import display_path

logger = logging.getLogger(__name__)


# -- data structures --
@dataclass(frozen=True)
class Document:
    """A markdown source file, read fresh on every pass."""

    source_path: Path
    rel_path: Path
    text: str

    @property
    def parents(self) -> Tuple[str, ...]:
        return self.rel_path.parent.parts

    @property
    def title(self) -> str:
        return prettify_name(self.rel_path.name)


@dataclass(frozen=True)
class OutputPage:
    output_path: Path
    web_path: str
    html: str


@dataclass
class BuildReport:
    """What one pass produced."""

    pages: List[OutputPage] = field(default_factory=list)
    nav: List[NavNode] = field(default_factory=list)
    touched_images: Set[Path] = field(default_factory=set)
    deleted_images: List[Path] = field(default_factory=list)


# -- helpers: directory lifecycle --
def ensure_source_root(source_root: Path) -> None:
    """Create the source root with a starter page when it does not exist yet."""
    if source_root.exists():
        return
    logger.info("-> No '%s' directory found. Creating one with an example file.", source_root.name)
    source_root.mkdir(parents=True)
    (source_root / INDEX_DOCUMENT).write_text(SEED_DOCUMENT, encoding="utf-8")


def _handle_remove_readonly(func, path, exc):  # Windows: clear read-only then retry
    os.chmod(path, stat.S_IWRITE)
    func(path)


def prepare_output_root(output_root: Path, clean: bool) -> None:
    if clean and output_root.is_dir():
        if sys.version_info >= (3, 12):
            shutil.rmtree(output_root, onexc=_handle_remove_readonly)
        else:
            shutil.rmtree(output_root, onerror=_handle_remove_readonly)
    output_root.mkdir(parents=True, exist_ok=True)


# -- the pass --
class _Pass:
    def __init__(
        self,
        config: SiteConfig,
        nav: List[NavNode],
        externalizer: ImageExternalizer,
        live_reload: bool,
    ):
        self.config = config
        self.nav = nav
        self.externalizer = externalizer
        self.live_reload = live_reload
        self.pages: List[OutputPage] = []

    async def write_tree(self, src_dir: Path, out_dir: Path, web_prefix: str) -> None:
        documents, directories = scan_directory(src_dir)

        for name in documents:
            await self.write_page(src_dir / name, out_dir, web_prefix)

        for name in directories:
            sub_out = out_dir / name
            sub_out.mkdir(parents=True, exist_ok=True)
            await self.write_tree(src_dir / name, sub_out, f"{web_prefix}{name}/")

    async def write_page(self, source_path: Path, out_dir: Path, web_prefix: str) -> None:
        document = Document(
            source_path=source_path,
            rel_path=source_path.relative_to(self.config.source_root),
            text=source_path.read_text(encoding="utf-8", errors="replace"),
        )
        md_text = await self.externalizer.externalize(document.text)
        content_html = render_markdown(md_text)

        out_name = page_name(source_path.name)
        web_path = f"{web_prefix}{out_name}"
        full_html = render_page_html(
            title=document.title,
            content_html=content_html,
            nav_html=render_nav_html(self.nav, web_path),
            live_reload=self.live_reload,
            site_title=self.config.site_title,
        )

        out_path = out_dir / out_name
        out_path.write_text(full_html, encoding="utf-8")
        logger.info("- Generated: %s", display_path(out_path))
        self.pages.append(OutputPage(output_path=out_path, web_path=web_path, html=full_html))


async def compile_site(
    config: SiteConfig,
    live_reload: bool = False,
    session: Optional[aiohttp.ClientSession] = None,
) -> BuildReport:
    """Run one full build pass and return what it wrote.

    With live_reload the output root survives between passes (stale images are
    swept by the orphan collector), image links point at the preview server and
    pages carry the reload listener.
    """
    logger.info("Building static pages...")
    source_root, output_root = config.source_root, config.output_root

    ensure_source_root(source_root)
    prepare_output_root(output_root, clean=not live_reload)

    nav = build_nav_tree(source_root, "/")
    touched: Set[Path] = set()
    url_prefix = config.preview_url if live_reload else ""

    async def run(client: aiohttp.ClientSession) -> List[OutputPage]:
        externalizer = ImageExternalizer(client, config.image_dir, url_prefix, touched)
        build_pass = _Pass(config, nav, externalizer, live_reload)
        await build_pass.write_tree(source_root, output_root, "/")
        return build_pass.pages

    if session is None:
        timeout = aiohttp.ClientTimeout(total=config.fetch_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as own_session:
            pages = await run(own_session)
    else:
        pages = await run(session)

    deleted = collect_orphans(config.image_dir, touched)
    logger.info("Build complete!")
    return BuildReport(pages=pages, nav=nav, touched_images=touched, deleted_images=deleted)
