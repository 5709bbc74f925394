"""Document store: session state and the open, edit, save, undo, and redo actions

A DocumentStore owns one open document, its undo history, the resources its
images resolve through, and the file handle it saves to. Every change to that
state goes through dispatch() with one of the action types below.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import httpx
from pydantic import ValidationError

from blockdoc.config import Settings
from blockdoc.core.archive import PACKAGE_EXTENSION, PACKAGE_MEDIA_TYPE, decode_package, encode_package
from blockdoc.core.assets import ImageFetcher, ResourceCache, extract_assets
from blockdoc.core.epub import EPUB_EXTENSION, EPUB_MEDIA_TYPE, build_epub, prepare_chapters
from blockdoc.core.errors import BlockdocError, NoWritableTarget, UnrecognizedPackage
from blockdoc.core.handles import (
    DirectoryDownloader, Downloader, FileHandle, FilePicker, FileType,
    LocalFileHandle, LogNotifier, Notifier, ReadableFile,
)
from blockdoc.core.history import UndoManager
from blockdoc.core.library import derive_title
from blockdoc.core.models import (
    EDITABLE_FIELDS, Block, ChangeRecord, Document, DocumentStatus, FieldChange, RecordEntry,
)
from blockdoc.core.serialize import parse_blocks, serialize_blocks
from blockdoc.core.utils.logger import get_logger
from blockdoc.core.utils.slug import slugify


logger = get_logger(__name__)

SAVE_NOTICE = "Item updated"
DOWNLOAD_NOTICE = (
    "Files cannot be saved in place here, so the document was downloaded instead. "
    "Each save downloads a new copy."
)

PACKAGE_TYPE = FileType("Block Documents", PACKAGE_MEDIA_TYPE, (PACKAGE_EXTENSION,))
EPUB_TYPE = FileType("E-books", EPUB_MEDIA_TYPE, (EPUB_EXTENSION,))


class SaveOutcome(str, Enum):
    saved = "saved"            # written through a handle
    downloaded = "downloaded"  # no writable target; sent to the downloader
    skipped = "skipped"        # nothing to save
    cancelled = "cancelled"    # user dismissed the picker
    failed = "failed"


@dataclass(frozen=True)
class EditFields:
    fields: dict[str, Any]
    undo_ignore: bool = False
    is_cached: bool = False


@dataclass(frozen=True)
class Undo:
    pass


@dataclass(frozen=True)
class Redo:
    pass


@dataclass(frozen=True)
class SetHandle:
    handle: Optional[FileHandle] = None


@dataclass(frozen=True)
class ClearHistory:
    pass


Action = Union[EditFields, Undo, Redo, SetHandle, ClearHistory]


class DocumentStore:
    """State of one editing session.

    Saves are serialized: a second save() waits for the one in flight, so two
    saves never race to adopt a handle or overwrite each other's file.
    """

    def __init__(
        self,
        settings: Settings = None,
        picker: FilePicker = None,
        downloader: Downloader = None,
        notifier: Notifier = None,
        transport: httpx.AsyncBaseTransport = None,
        ):
        self.settings = settings or Settings()
        self.picker = picker
        self.downloader = downloader or DirectoryDownloader(self.settings.download_dir)
        self.notifier = notifier or LogNotifier()
        self.transport = transport

        self.document = Document(title=self.settings.default_title)
        self.history = UndoManager()
        self.resources = ResourceCache()
        self._handle: Optional[FileHandle] = None
        self._lock = asyncio.Lock()

    # --- selectors

    @property
    def file_handle(self) -> Optional[FileHandle]:
        return self._handle

    @property
    def has_undo(self) -> bool:
        return self.history.has_undo()

    @property
    def has_redo(self) -> bool:
        return self.history.has_redo()

    # --- actions

    def dispatch(self, action: Action) -> bool:
        """Apply one action; False when there was nothing to undo or redo."""
        if isinstance(action, EditFields):
            self._edit(action)
        elif isinstance(action, Undo):
            record = self.history.undo()
            if record is None:
                return False
            self._apply(record, undo=True)
        elif isinstance(action, Redo):
            record = self.history.redo()
            if record is None:
                return False
            self._apply(record, undo=False)
        elif isinstance(action, SetHandle):
            self._handle = action.handle
        elif isinstance(action, ClearHistory):
            self.history.reset()
        else:
            raise TypeError(f"Unknown action: {action!r}")
        return True

    def edit_fields(self, fields: dict[str, Any], undo_ignore: bool = False, is_cached: bool = False) -> None:
        self.dispatch(EditFields(fields, undo_ignore=undo_ignore, is_cached=is_cached))

    def undo(self) -> bool:
        return self.dispatch(Undo())

    def redo(self) -> bool:
        return self.dispatch(Redo())

    def new_document(self) -> None:
        """Start an empty document with no handle and no history."""
        self.resources.revoke_all()
        self.document = Document(title=self.settings.default_title, blocks=[])
        self.dispatch(SetHandle(None))
        self.dispatch(ClearHistory())

    def _edit(self, action: EditFields) -> None:
        if unknown := set(action.fields) - set(EDITABLE_FIELDS):
            raise ValueError(f"Not an editable field: {', '.join(sorted(unknown))}")

        changes: dict[str, FieldChange] = {}
        try:
            for name, value in action.fields.items():
                current = getattr(self.document, name)
                if current == value:
                    continue
                setattr(self.document, name, value)
                changes[name] = FieldChange(from_=current, to=getattr(self.document, name))
        except ValidationError:
            # all fields or none
            for name, change in changes.items():
                setattr(self.document, name, change.from_)
            raise

        if changes and not action.undo_ignore:
            record: ChangeRecord = [RecordEntry(id=self.document.id, changes=changes)]
            self.history.add_record(record, is_cached=action.is_cached)

    def _apply(self, record: ChangeRecord, undo: bool) -> None:
        for entry in record:
            if entry.id != self.document.id:
                logger.debug("Skipping history entry for another document (%s)", entry.id)
                continue
            for name, change in entry.changes.items():
                setattr(self.document, name, change.from_ if undo else change.to)

    # --- open

    async def open(self, source: ReadableFile | Path | str) -> None:
        """Load a document package, replacing the current document and history.

        The handle is remembered only when source can be written back to; a
        read-only source leaves the store with no handle, so the next save
        asks for a target.
        """
        if isinstance(source, (str, Path)):
            source = LocalFileHandle(source)

        async with self._lock:
            resources = ResourceCache()
            try:
                data = await asyncio.to_thread(source.read)
                decoded = await asyncio.to_thread(decode_package, data, resources)
                try:
                    blocks = parse_blocks(decoded.markup)
                except ValueError as e:
                    raise UnrecognizedPackage(f"{source.name}: {e}") from e
            except (UnrecognizedPackage, OSError) as e:
                logger.warning("Could not open %s: %s", source.name, e)
                self.notifier.notify_error(f"Could not open {source.name}: {e}")
                raise

            self.resources.revoke_all()
            self.resources = resources
            self.dispatch(EditFields({
                "title": decoded.title or source.name,
                "content": serialize_blocks(blocks),
                "status": DocumentStatus.draft,
                "blocks": blocks,
            }, undo_ignore=True))
            self.dispatch(ClearHistory())
            self.dispatch(SetHandle(source if isinstance(source, FileHandle) else None))
            logger.info("Opened %s: %d blocks, %d assets", source.name, len(blocks), len(decoded.assets))

    # --- save

    async def save(self) -> SaveOutcome:
        """Write the current document to its handle, picking or downloading as needed."""
        async with self._lock:
            return await self._save()

    async def _save(self) -> SaveOutcome:
        blocks = self.document.blocks
        if blocks is None:
            logger.debug("Nothing to save")
            return SaveOutcome.skipped

        file_type = EPUB_TYPE if self.settings.target_format == "epub" else PACKAGE_TYPE
        try:
            data = await self._encode(blocks)
        except (BlockdocError, httpx.HTTPError, OSError, ValueError) as e:
            return self._fail(e)

        handle = self._handle if self._handle_accepts(file_type) else None
        if handle is None:
            try:
                handle = self._pick(file_type)
            except NoWritableTarget as e:
                return self._download(data, file_type, e)
            except (BlockdocError, OSError) as e:
                return self._fail(e)
            if handle is None:
                logger.info("Save cancelled")
                return SaveOutcome.cancelled

        try:
            await asyncio.to_thread(handle.write, data)
        except OSError as e:
            return self._fail(e)

        if handle is not self._handle:
            self.dispatch(SetHandle(handle))
            self.dispatch(EditFields({"title": handle.name}, undo_ignore=True))
        # edits made while saving keep their own content
        if self.document.blocks is blocks:
            self.dispatch(EditFields({"content": serialize_blocks(blocks)}, undo_ignore=True))
        logger.info("Saved %s (%d bytes)", handle.name, len(data))
        self.notifier.notify_success(SAVE_NOTICE)
        return SaveOutcome.saved

    async def _encode(self, blocks: list[Block]) -> bytes:
        async with httpx.AsyncClient(
            timeout=self.settings.fetch_timeout, follow_redirects=True, transport=self.transport,
        ) as client:
            extracted, assets = await extract_assets(blocks, ImageFetcher(client, self.resources))

        if self.settings.target_format == "epub":
            anchored, nav = prepare_chapters(extracted)
            book = await asyncio.to_thread(
                build_epub,
                serialize_blocks(anchored),
                self._book_title(),
                f"urn:uuid:{self.document.id}",
                self.settings.language,
                assets,
                nav,
            )
            return book.data
        return await asyncio.to_thread(encode_package, serialize_blocks(extracted), assets)

    def _handle_accepts(self, file_type: FileType) -> bool:
        """A remembered handle is reused only for the format it was saved as."""
        return self._handle is not None and self._handle.name.lower().endswith(file_type.extensions)

    def _pick(self, file_type: FileType) -> Optional[FileHandle]:
        if self.picker is None:
            raise NoWritableTarget("no file picker available")
        return self.picker.pick_save_target(self._suggested_name(file_type), [file_type])

    def _download(self, data: bytes, file_type: FileType, reason: Exception) -> SaveOutcome:
        filename = self._suggested_name(file_type)
        logger.warning("No writable target (%s); downloading %s", reason, filename)
        try:
            self.downloader.download(data, filename)
        except OSError as e:
            return self._fail(e)
        self.notifier.notify_success(DOWNLOAD_NOTICE)
        return SaveOutcome.downloaded

    def _fail(self, error: Exception) -> SaveOutcome:
        logger.error("Save failed: %s", error, exc_info=error)
        self.notifier.notify_error(f"Save failed: {error}")
        return SaveOutcome.failed

    def _book_title(self) -> str:
        title = self.document.title
        path = Path(title)
        if path.suffix.lower() in (PACKAGE_EXTENSION, EPUB_EXTENSION):
            title = path.stem
        if not title or title == self.settings.default_title:
            title = derive_title(self.document.blocks or [], self.settings.title_words) or title
        return title or self.settings.default_title

    def _suggested_name(self, file_type: FileType) -> str:
        title = self._book_title()
        stem = slugify(title) if title != self.settings.default_title else ""
        return f"{stem or 'new'}{file_type.extensions[0]}"
