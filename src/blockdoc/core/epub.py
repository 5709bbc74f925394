"""E-book assembly: heading anchors, navigation table, and EPUB packaging"""

import io
import itertools
import mimetypes
from typing import Iterator

from ebooklib import epub

from blockdoc.core.assets import AssetMap
from blockdoc.core.models import Block, EbookArchive, NavEntry
from blockdoc.core.serialize import block_text
from blockdoc.core.utils.logger import get_logger
from blockdoc.core.utils.slug import unique_slug


logger = get_logger(__name__)

EPUB_MEDIA_TYPE = "application/epub+zip"
EPUB_EXTENSION = ".epub"
CONTENT_FILE = "index.xhtml"


def _heading_level(block: Block) -> int:
    """Heading level clamped to 1-6; headings without one default to 2."""
    try:
        level = int(block.attributes.get("level") or 2)
    except (TypeError, ValueError):
        level = 2
    return min(max(level, 1), 6)


def prepare_chapters(blocks: list[Block]) -> tuple[list[Block], list[NavEntry]]:
    """Anchor every heading block and collect the navigation table in document order.

    Each heading gets anchor = slug of its text; a slug already used earlier in
    the document is suffixed -2, -3, ... so every nav link is distinct.
    Returns new blocks; the input tree is not modified.
    """
    nav: list[NavEntry] = []
    seen: set[str] = set()

    def _walk(items: list[Block]) -> list[Block]:
        out = []
        for block in items:
            changes = None
            if block.kind == "heading":
                title = block_text(block)
                anchor = unique_slug(title, seen)
                nav.append(NavEntry(title=title, level=_heading_level(block), anchor_href=f"#{anchor}"))
                changes = {"anchor": anchor}
            out.append(block.with_changes(attributes=changes, children=_walk(block.children)))
        return out

    return _walk(blocks), nav


def _nest(nav: list[NavEntry]) -> list[tuple[NavEntry, list]]:
    """Group entries into (entry, children) trees by level."""
    roots: list[tuple[NavEntry, list]] = []
    stack: list[tuple[int, list]] = [(0, roots)]
    for entry in nav:
        while stack[-1][0] >= entry.level:
            stack.pop()
        node = (entry, [])
        stack[-1][1].append(node)
        stack.append((entry.level, node[1]))
    return roots


def _toc(nodes: list[tuple[NavEntry, list]], ids: Iterator[int]) -> list:
    items = []
    for entry, children in nodes:
        href = f"{CONTENT_FILE}{entry.anchor_href}"
        if children:
            items.append((epub.Section(entry.title, href), _toc(children, ids)))
        else:
            items.append(epub.Link(href, entry.title, f"nav-{next(ids)}"))
    return items


def build_epub(
    markup: str,
    title: str,
    unique_id: str,
    language: str,
    assets: AssetMap,
    nav: list[NavEntry],
    ) -> EbookArchive:
    """Package markup as a single-document EPUB 3 with assets and a nested table of contents.

    markup becomes the content document index.xhtml; asset paths are kept so
    relative <img src> references resolve next to it. An empty nav yields one
    entry for the whole document.
    """
    book = epub.EpubBook()
    book.set_identifier(unique_id)
    book.set_title(title)
    book.set_language(language)

    chapter = epub.EpubHtml(title=title, file_name=CONTENT_FILE, lang=language)
    chapter.content = markup if markup.strip() else "<p></p>"
    book.add_item(chapter)

    for n, (path, data) in enumerate(assets.items(), start=1):
        media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        item_cls = epub.EpubImage if media_type.startswith("image/") else epub.EpubItem
        book.add_item(item_cls(uid=f"asset_{n}", file_name=path, media_type=media_type, content=data))

    ids = itertools.count(1)
    book.toc = _toc(_nest(nav), ids) if nav else [epub.Link(CONTENT_FILE, title, f"nav-{next(ids)}")]
    book.add_item(epub.EpubNcx())
    book.add_item(epub.EpubNav())
    book.spine = ["nav", chapter]

    buffer = io.BytesIO()
    epub.write_epub(buffer, book, {"raise_exceptions": True})
    logger.debug("Built e-book %r: %d nav entries, %d assets", title, len(nav), len(assets))
    return EbookArchive(data=buffer.getvalue(), media_type=EPUB_MEDIA_TYPE)
