"""Image extraction: pull referenced images out of a block tree into an asset map"""

import asyncio
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlsplit
from urllib.request import url2pathname
from uuid import uuid4

import httpx

from blockdoc.core.errors import AssetFetchFailure
from blockdoc.core.models import Block
from blockdoc.core.utils.logger import get_logger


logger = get_logger(__name__)

IMAGE_KINDS = {"image", "cover"}
FETCHABLE_SCHEMES = {"http", "https", "file", "blob"}

AssetMap = dict[str, bytes]


class ResourceCache:
    """Binary content addressable through blob: URLs, the in-process stand-in for object URLs."""

    def __init__(self):
        self._items: dict[str, bytes] = {}

    def __len__(self) -> int:
        return len(self._items)

    def create_url(self, data: bytes, name: str = "") -> str:
        """Register data and return a blob: URL whose last segment is name."""
        url = f"blob:{uuid4()}/{name}" if name else f"blob:{uuid4()}"
        self._items[url] = data
        return url

    def resolve(self, url: str) -> Optional[bytes]:
        """Return registered content for url (fragment ignored), else None."""
        return self._items.get(url.split("#", 1)[0])

    def revoke_all(self) -> None:
        self._items.clear()


class ImageFetcher:
    """Resolve image URLs to bytes: http(s) with httpx, file: from disk, blob: from a ResourceCache."""

    def __init__(self, client: httpx.AsyncClient, resources: ResourceCache = None):
        self.client = client
        self.resources = resources if resources is not None else ResourceCache()

    async def fetch(self, url: str) -> bytes:
        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        if scheme == "blob":
            data = self.resources.resolve(url)
            if data is None:
                raise AssetFetchFailure(url, "no such resource")
            return data
        if scheme == "file":
            try:
                return await asyncio.to_thread(Path(url2pathname(parts.path)).read_bytes)
            except OSError as e:
                raise AssetFetchFailure(url, str(e)) from e
        try:
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise AssetFetchFailure(url, str(e)) from e
        logger.debug("Fetched %s (%d bytes)", url, len(response.content))
        return response.content


def is_fetchable(url: str) -> bool:
    """True for URLs that must be fetched; scheme-less values are already package paths."""
    return urlsplit(url).scheme.lower() in FETCHABLE_SCHEMES


def relative_path(url: str) -> str:
    """Package path for an image URL: its final path segment, with a '#ext' marker as '.ext'.

    https://host/img123.png#png -> img123.png
    blob:0f3c.../img123#png     -> img123.png
    """
    parts = urlsplit(url)
    name = unquote(parts.path.rstrip("/").split("/")[-1]) or "image"
    ext = parts.fragment
    if ext and not name.lower().endswith(f".{ext.lower()}"):
        name = f"{name}.{ext}"
    return name


def _merge(assets: AssetMap, found: AssetMap) -> None:
    """Merge found into assets; a duplicate path keeps the later content."""
    for path, data in found.items():
        if path in assets and assets[path] != data:
            logger.warning("Asset path %s is used by two different images; keeping the later one", path)
        assets[path] = data


async def _extract_block(block: Block, fetcher: ImageFetcher) -> tuple[Block, AssetMap]:
    children, assets = await extract_assets(block.children, fetcher)
    url = block.attributes.get("url")
    if block.kind not in IMAGE_KINDS or not url or not is_fetchable(url):
        return block.with_changes(children=children), assets

    path = relative_path(url)
    _merge(assets, {path: await fetcher.fetch(url)})
    rewritten = block.with_changes(attributes={"url": path, "id": None}, children=children)
    return rewritten, assets


async def extract_assets(blocks: list[Block], fetcher: ImageFetcher) -> tuple[list[Block], AssetMap]:
    """Fetch every image referenced by the tree and point its block at the package path.

    Children are processed before their parent and siblings concurrently; the
    asset map is merged in document order so later duplicates win. The input
    blocks are not modified. Raises AssetFetchFailure for the first failing
    image in document order.
    """
    results = await asyncio.gather(
        *(_extract_block(b, fetcher) for b in blocks), return_exceptions=True,
    )
    new_blocks: list[Block] = []
    assets: AssetMap = {}
    for result in results:
        if isinstance(result, BaseException):
            raise result
        block, found = result
        new_blocks.append(block)
        _merge(assets, found)
    return new_blocks, assets
