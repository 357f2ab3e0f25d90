"""Markdown to sanitized HTML."""

from __future__ import annotations

import xml.etree.ElementTree as etree

import markdown
import nh3
from markdown.extensions import Extension
from markdown.treeprocessors import Treeprocessor

MARKDOWN_EXTENSIONS = ["extra", "nl2br", "sane_lists"]

IMAGE_ATTRIBUTES = {"src", "alt", "title", "loading", "decoding"}


# -- image policy --
def _replace_with_text(parent: etree.Element, child: etree.Element, text: str) -> None:
    """Swap child for plain text, keeping whatever text followed it."""
    text = text + (child.tail or "")
    siblings = list(parent)
    position = siblings.index(child)
    if position == 0:
        parent.text = (parent.text or "") + text
    else:
        previous = siblings[position - 1]
        previous.tail = (previous.tail or "") + text
    parent.remove(child)


class LazyImageTreeprocessor(Treeprocessor):
    """Add loading hints to images; images without a destination become their alt text."""

    def run(self, root: etree.Element) -> None:
        for parent in list(root.iter()):
            for child in list(parent):
                if child.tag != "img":
                    continue
                if not child.get("src"):
                    _replace_with_text(parent, child, child.get("alt", ""))
                    continue
                child.set("loading", "lazy")
                child.set("decoding", "async")


class LazyImageExtension(Extension):
    def extendMarkdown(self, md: markdown.Markdown) -> None:
        # after inline parsing (20) so the img elements exist
        md.treeprocessors.register(LazyImageTreeprocessor(md), "lazy_images", 15)


# -- sanitization --
_cleaner = nh3.Cleaner(
    tags=nh3.ALLOWED_TAGS | {"img"},
    attributes={**nh3.ALLOWED_ATTRIBUTES, "img": IMAGE_ATTRIBUTES},
)


def sanitize_html(html: str) -> str:
    return _cleaner.clean(html)


def render_markdown(md_text: str) -> str:
    """Convert markdown to HTML, then strip anything outside the safe allow-list."""
    md = markdown.Markdown(extensions=MARKDOWN_EXTENSIONS + [LazyImageExtension()])
    return sanitize_html(md.convert(md_text))
