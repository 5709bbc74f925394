"""Document package codec: markup + assets <-> zip archive"""

import html
import io
import re
import zipfile
from pathlib import PurePosixPath
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from blockdoc.core.assets import AssetMap, ResourceCache
from blockdoc.core.errors import UnrecognizedPackage
from blockdoc.core.models import DecodedPackage
from blockdoc.core.utils.logger import get_logger


logger = get_logger(__name__)

INDEX_ENTRY = "index.html"
PACKAGE_MEDIA_TYPE = "application/zip"
PACKAGE_EXTENSION = ".blockdoc"

IMG_SRC_RE = re.compile(r'(<img\b[^>]*?\bsrc=)(["\'])(.*?)\2', re.IGNORECASE | re.DOTALL)


def encode_package(markup: str, assets: AssetMap) -> bytes:
    """Build a package: index.html holding markup plus one entry per asset path."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(INDEX_ENTRY, markup.encode("utf-8"))
        for path, data in assets.items():
            zf.writestr(path, data)
    return buffer.getvalue()


def is_relative_reference(src: str) -> bool:
    """True for a bare package path: no scheme, not protocol-relative, not rooted."""
    parts = urlsplit(src)
    return bool(src) and not parts.scheme and not parts.netloc and not src.startswith("/")


def _title(markup: str) -> str | None:
    el = BeautifulSoup(markup, "html.parser").find("title")
    text = el.get_text().strip() if el is not None else ""
    return text or None


def decode_package(data: bytes, resources: ResourceCache) -> DecodedPackage:
    """Open a package and make its images locally resolvable.

    Each relative <img src> with a matching archive entry is registered in
    resources and rewritten to '<blob url>#<ext>', so a later save maps it back
    to the same package path. Raises UnrecognizedPackage if data is not a zip
    archive or has no index.html entry.
    """
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise UnrecognizedPackage(f"Not a zip archive: {e}") from e

    with zf:
        names = set(zf.namelist())
        if INDEX_ENTRY not in names:
            raise UnrecognizedPackage(f"Package has no {INDEX_ENTRY} entry")
        try:
            markup = zf.read(INDEX_ENTRY).decode("utf-8")
        except UnicodeDecodeError as e:
            raise UnrecognizedPackage(f"{INDEX_ENTRY} is not UTF-8 text: {e}") from e

        assets: AssetMap = {}

        def _rewrite(m: re.Match) -> str:
            src = html.unescape(m.group(3))
            if not is_relative_reference(src):
                return m.group(0)
            if src not in names:
                logger.warning("Image %s has no entry in the package; leaving it unresolved", src)
                return m.group(0)
            if src not in assets:
                assets[src] = zf.read(src)
            path = PurePosixPath(src)
            url = resources.create_url(assets[src], path.stem)
            ext = path.suffix.lstrip(".")
            if ext:
                url = f"{url}#{ext}"
            return f"{m.group(1)}{m.group(2)}{html.escape(url)}{m.group(2)}"

        markup = IMG_SRC_RE.sub(_rewrite, markup)

    logger.debug("Decoded package with %d image(s)", len(assets))
    return DecodedPackage(markup=markup, title=_title(markup), assets=assets)
