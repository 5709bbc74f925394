"""Error kinds raised by the persistence core"""


class BlockdocError(Exception):
    """Base class for recognized document persistence failures."""


class AssetFetchFailure(BlockdocError):
    """An image referenced by the document could not be retrieved."""

    def __init__(self, url: str, reason: str = ""):
        self.url = url
        msg = f"Could not fetch image {url}"
        super().__init__(f"{msg}: {reason}" if reason else msg)


class UnrecognizedPackage(BlockdocError):
    """The opened file is not a document package (no index.html entry)."""


class NoWritableTarget(BlockdocError):
    """The platform cannot provide a writable file handle."""
