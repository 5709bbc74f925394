"""Collaborator interfaces: file handles, save-target picker, download fallback, notices"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from blockdoc.core.errors import NoWritableTarget
from blockdoc.core.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class FileType:
    """An accepted save type offered to the picker."""
    description: str
    media_type: str
    extensions: tuple[str, ...]


@runtime_checkable
class ReadableFile(Protocol):
    name: str

    def read(self) -> bytes: ...


@runtime_checkable
class FileHandle(ReadableFile, Protocol):
    """A place the package can be read from and written to."""

    def write(self, data: bytes) -> None: ...


class FilePicker(Protocol):
    def pick_save_target(self, suggested_name: str, accepted_types: list[FileType]) -> Optional[FileHandle]:
        """Return a writable handle, None if the user cancelled; raise NoWritableTarget if unsupported."""
        ...


class Downloader(Protocol):
    def download(self, data: bytes, filename: str) -> None: ...


class Notifier(Protocol):
    def notify_success(self, message: str) -> None: ...

    def notify_error(self, message: str) -> None: ...


@dataclass
class PlainFile:
    """A read-only file (e.g. an upload) that can be opened but never saved back to."""
    name: str
    data: bytes

    def read(self) -> bytes:
        return self.data


class LocalFileHandle:
    """File handle backed by a path on the local filesystem."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self.name = self.path.name

    def __repr__(self) -> str:
        return f"LocalFileHandle({str(self.path)!r})"

    def read(self) -> bytes:
        return self.path.read_bytes()

    def write(self, data: bytes) -> None:
        """Write data to a sibling temp file, then move it over the target."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f".{self.path.name}.tmp")
        tmp.write_bytes(data)
        tmp.replace(self.path)


class DirectoryPicker:
    """Picks save targets inside a fixed directory, using the suggested name."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def pick_save_target(self, suggested_name: str, accepted_types: list[FileType]) -> Optional[FileHandle]:
        if not self.directory.is_dir():
            raise NoWritableTarget(f"{self.directory} is not a writable directory")
        return LocalFileHandle(self.directory / suggested_name)


class DirectoryDownloader:
    """One-shot download: drop the bytes into a downloads directory."""

    def __init__(self, directory: Path | str):
        self.directory = Path(directory)

    def download(self, data: bytes, filename: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.directory / filename
        target.write_bytes(data)
        logger.info("Downloaded %s (%d bytes)", target, len(data))


class LogNotifier:
    """Notifier that reports user-visible outcomes through the log."""

    def notify_success(self, message: str) -> None:
        logger.info(message)

    def notify_error(self, message: str) -> None:
        logger.error(message)
