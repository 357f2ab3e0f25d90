"""
Navigation tree derived from the source directory structure.

Ordering rules, applied per directory:
- documents first: index.md leads, the rest sort by filename
- subdirectories after documents, sorted by name
- a subdirectory appears only if it holds at least one document (at any depth)
- a subdirectory links to its index page when it has one, otherwise to "#"
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from .config import DOCUMENT_SUFFIX, INDEX_STEM, PAGE_SUFFIX

INDEX_DOCUMENT = f"{INDEX_STEM}{DOCUMENT_SUFFIX}"
INDEX_PAGE = f"{INDEX_STEM}{PAGE_SUFFIX}"
PLACEHOLDER_PATH = "#"

_WORD_START = re.compile(r"\b\w")


# -- data structures --
@dataclass
class NavNode:
    """One entry in the navigation: a page, or a directory with children."""

    name: str
    path: str
    children: Optional[List["NavNode"]] = None

    @property
    def is_directory(self) -> bool:
        return self.children is not None


# -- helpers: naming and ordering --
def prettify_name(name: str) -> str:
    """Turn a file or directory name into a display label ('getting-started.md' -> 'Getting Started')."""
    stem = name[: -len(DOCUMENT_SUFFIX)] if name.endswith(DOCUMENT_SUFFIX) else name
    if stem == INDEX_STEM:
        return "Home"
    return _WORD_START.sub(lambda m: m.group(0).upper(), stem.replace("-", " "))


def is_document(name: str) -> bool:
    return name.endswith(DOCUMENT_SUFFIX)


def page_name(document_name: str) -> str:
    """Output filename for a source document name."""
    return document_name[: -len(DOCUMENT_SUFFIX)] + PAGE_SUFFIX


def _name_key(name: str) -> Tuple[str, str]:
    return (name.lower(), name)


def sort_documents(names: Iterable[str]) -> List[str]:
    """Order document names: index.md first, remaining names lexicographically."""
    return sorted(names, key=lambda n: (n != INDEX_DOCUMENT, _name_key(n)))


def sort_directories(names: Iterable[str]) -> List[str]:
    return sorted(names, key=_name_key)


def partition_entries(entries: Iterable[os.DirEntry]) -> Tuple[List[str], List[str]]:
    """Split directory entries into sorted (documents, directories) name lists.

    Hidden entries and files that are not markdown documents are dropped.
    """
    documents: List[str] = []
    directories: List[str] = []
    for entry in entries:
        if entry.name.startswith("."):
            continue
        if entry.is_dir():
            directories.append(entry.name)
        elif entry.is_file() and is_document(entry.name):
            documents.append(entry.name)
    return sort_documents(documents), sort_directories(directories)


def scan_directory(directory: Path) -> Tuple[List[str], List[str]]:
    with os.scandir(directory) as it:
        return partition_entries(list(it))


# -- tree building --
def _directory_link(children: List[NavNode]) -> str:
    for child in children:
        if child.path.rsplit("/", 1)[-1] == INDEX_PAGE:
            return child.path
    return PLACEHOLDER_PATH


def build_nav_tree(root: Path, web_prefix: str = "/") -> List[NavNode]:
    """Scan root recursively and return its ordered navigation entries."""
    documents, directories = scan_directory(root)
    nodes: List[NavNode] = [
        NavNode(name=prettify_name(name), path=f"{web_prefix}{page_name(name)}")
        for name in documents
    ]

    for name in directories:
        children = build_nav_tree(root / name, f"{web_prefix}{name}/")
        if not children:
            continue
        nodes.append(
            NavNode(name=prettify_name(name), path=_directory_link(children), children=children)
        )

    return nodes


def iter_nav(nodes: Iterable[NavNode]) -> Iterator[NavNode]:
    """Walk the tree depth-first in display order."""
    for node in nodes:
        yield node
        if node.children:
            yield from iter_nav(node.children)
