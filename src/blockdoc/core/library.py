"""Folder library: discover document packages and derive display titles"""

from pathlib import Path

from pydantic import BaseModel

from blockdoc.core.archive import PACKAGE_EXTENSION, decode_package
from blockdoc.core.assets import ResourceCache
from blockdoc.core.errors import UnrecognizedPackage
from blockdoc.core.models import Block
from blockdoc.core.serialize import block_text, iter_blocks, parse_blocks
from blockdoc.core.utils.logger import get_logger


logger = get_logger(__name__)


class DocumentSummary(BaseModel):
    path: Path
    title: str
    assets: int = 0


def discover_packages(path: Path) -> list[Path]:
    """Return sorted document packages under path, or [path] if it is one."""
    if path.is_file():
        return [path] if path.suffix == PACKAGE_EXTENSION else []
    return sorted(p for p in path.rglob(f"*{PACKAGE_EXTENSION}") if p.is_file())


def derive_title(blocks: list[Block], max_words: int = 10) -> str:
    """Title from the first block with text, trimmed to max_words ('...' when cut)."""
    for block in iter_blocks(blocks):
        words = block_text(block).split()
        if words:
            title = " ".join(words[:max_words])
            return f"{title}..." if len(words) > max_words else title
    return ""


def summarize(path: Path, max_words: int = 10) -> DocumentSummary:
    """Read one package: package title, else first-block title, else file name."""
    decoded = decode_package(path.read_bytes(), ResourceCache())
    title = decoded.title or derive_title(parse_blocks(decoded.markup), max_words) or path.name
    return DocumentSummary(path=path, title=title, assets=len(decoded.assets))


def list_documents(folder: Path, max_words: int = 10) -> list[DocumentSummary]:
    """Summaries of every readable package in folder; unreadable ones are skipped and logged."""
    summaries = []
    for p in discover_packages(folder):
        try:
            summaries.append(summarize(p, max_words))
        except (UnrecognizedPackage, ValueError, OSError) as e:
            logger.warning("Skipping %s: %s", p, e)
    return summaries
