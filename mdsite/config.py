"""Configuration objects, constants and logging setup."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

DEFAULT_SOURCE_DIR = Path("md")
DEFAULT_OUTPUT_DIR = Path("public")
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3000
DEFAULT_DEBOUNCE_MS = 100
DEFAULT_FETCH_TIMEOUT = 30.0

# source documents and their rendered counterparts
DOCUMENT_SUFFIX = ".md"
PAGE_SUFFIX = ".html"
INDEX_STEM = "index"

LIVERELOAD_PATH = "/__livereload__"
RELOAD_MESSAGE = "reload"

EXIT_PORT_IN_USE = 3

SEED_DOCUMENT = (
    "# Hello World\n\nThis is your first page.\n\nEdit `md/index.md` to see changes."
)


@dataclass
class SiteConfig:
    """Settings shared by one-shot builds and the development server."""

    source_root: Path = DEFAULT_SOURCE_DIR
    output_root: Path = DEFAULT_OUTPUT_DIR
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    site_title: str = ""
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT

    @property
    def preview_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def image_dir(self) -> Path:
        # externalized images live flat in the output root
        return self.output_root


def configure_logging(verbose: bool = False) -> None:
    """Route the package's log records to stderr as plain narration lines."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
    )
