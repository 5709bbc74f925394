"""Unit tests for core/store.py"""

import asyncio
import io
import zipfile
from pathlib import Path

import httpx
import pytest
from pydantic import ValidationError

from blockdoc.config import Settings
from blockdoc.core.archive import decode_package, encode_package
from blockdoc.core.assets import ResourceCache
from blockdoc.core.errors import NoWritableTarget, UnrecognizedPackage
from blockdoc.core.handles import LocalFileHandle, PlainFile
from blockdoc.core.models import Block, DocumentStatus
from blockdoc.core.serialize import serialize_blocks
from blockdoc.core.store import (
    DOWNLOAD_NOTICE, EPUB_TYPE, PACKAGE_TYPE, SAVE_NOTICE,
    ClearHistory, DocumentStore, EditFields, Redo, SaveOutcome, SetHandle, Undo,
)


# --- fakes ---

class FakePicker:
    """Picks files in a directory; can simulate a cancelled dialog or an unsupported platform."""

    def __init__(self, directory: Path, cancel: bool = False, unsupported: bool = False, error: Exception = None):
        self.directory = directory
        self.cancel = cancel
        self.unsupported = unsupported
        self.error = error
        self.calls = []

    def pick_save_target(self, suggested_name, accepted_types):
        self.calls.append((suggested_name, accepted_types))
        if self.unsupported:
            raise NoWritableTarget("no save dialog")
        if self.error is not None:
            raise self.error
        if self.cancel:
            return None
        return LocalFileHandle(self.directory / suggested_name)


class FakeNotifier:
    def __init__(self):
        self.successes = []
        self.errors = []

    def notify_success(self, message):
        self.successes.append(message)

    def notify_error(self, message):
        self.errors.append(message)


class FakeDownloader:
    def __init__(self):
        self.downloads = []

    def download(self, data, filename):
        self.downloads.append((filename, data))


def _image(url: str) -> Block:
    return Block(name="core/image", attributes={"url": url})


def _para(text: str) -> Block:
    return Block(name="core/paragraph", attributes={"content": text})


@pytest.fixture(name="picker")
def picker_fixture(tmp_path):
    return FakePicker(tmp_path)


@pytest.fixture(name="notifier")
def notifier_fixture():
    return FakeNotifier()


@pytest.fixture(name="downloader")
def downloader_fixture():
    return FakeDownloader()


@pytest.fixture(name="store")
def store_fixture(picker, notifier, downloader, transport):
    return DocumentStore(picker=picker, downloader=downloader, notifier=notifier, transport=transport)


# --- edits, undo, redo ---

def test_new_store_state(store):
    """A fresh store has the default title, no blocks, no handle, and no history."""
    assert store.document.title == "Unsaved Document"
    assert store.document.status == DocumentStatus.draft
    assert store.document.blocks is None
    assert store.file_handle is None
    assert not store.has_undo and not store.has_redo


def test_edit_fields_records_change(store):
    """An edit changes the document and becomes undoable."""
    store.edit_fields({"title": "Draft"})
    assert store.document.title == "Draft"
    assert store.has_undo


def test_undo_redo_inverse(store, sample_blocks):
    """Undoing every edit restores the start; redoing them restores the end."""
    start = store.document.model_copy()
    store.edit_fields({"title": "One"})
    store.edit_fields({"blocks": sample_blocks})
    store.edit_fields({"title": "Two", "status": "private"})
    end = store.document.model_copy()

    assert [store.undo() for _ in range(3)] == [True, True, True]
    assert store.document == start
    assert store.undo() is False

    assert [store.redo() for _ in range(3)] == [True, True, True]
    assert store.document == end
    assert store.redo() is False


def test_cached_edits_undo_as_one(store):
    """A burst of cached edits undoes in one step back to the first value."""
    store.edit_fields({"content": "h"})
    store.edit_fields({"content": "he"}, is_cached=True)
    store.edit_fields({"content": "hey"}, is_cached=True)
    assert len(store.history) == 1
    store.undo()
    assert store.document.content == ""
    store.redo()
    assert store.document.content == "hey"


def test_edit_after_undo_discards_redo(store):
    """A new edit after an undo cannot be followed by a redo of the undone edit."""
    store.edit_fields({"title": "A"})
    store.edit_fields({"title": "B"})
    store.undo()
    store.edit_fields({"title": "C"})
    assert not store.has_redo
    assert store.redo() is False
    assert store.document.title == "C"


def test_undo_ignore_edits_not_recorded(store):
    """Edits flagged undo_ignore are applied but not undoable."""
    store.edit_fields({"title": "Silent"}, undo_ignore=True)
    assert store.document.title == "Silent"
    assert not store.has_undo


def test_unchanged_values_not_recorded(store):
    """Setting a field to its current value records nothing."""
    store.edit_fields({"title": "Unsaved Document", "status": "draft"})
    assert not store.has_undo


def test_edit_unknown_field_raises(store):
    """Only title, content, status, and blocks are editable."""
    with pytest.raises(ValueError, match="id"):
        store.edit_fields({"id": "other"})


def test_edit_status_is_validated(store):
    """Status strings are coerced to DocumentStatus; unknown ones are rejected."""
    store.edit_fields({"status": "publish"})
    assert store.document.status is DocumentStatus.publish
    with pytest.raises(ValueError):
        store.edit_fields({"status": "archived"})


def test_rejected_edit_changes_nothing(store):
    """When one field fails validation the fields before it are restored and nothing is recorded."""
    with pytest.raises(ValidationError):
        store.edit_fields({"title": "New", "status": "bogus"})
    assert store.document.title == "Unsaved Document"
    assert store.document.status is DocumentStatus.draft
    assert not store.has_undo


def test_dispatch_actions(store, tmp_path):
    """Each action type is handled by dispatch."""
    handle = LocalFileHandle(tmp_path / "x.blockdoc")
    assert store.dispatch(EditFields({"title": "T"}))
    assert store.dispatch(SetHandle(handle))
    assert store.file_handle is handle
    assert store.dispatch(Undo())
    assert store.dispatch(Redo())
    assert store.dispatch(ClearHistory())
    assert not store.has_undo


def test_dispatch_unknown_action_raises(store):
    """Anything outside the action union is rejected."""
    with pytest.raises(TypeError):
        store.dispatch("EDIT_ENTITY_RECORD")


def test_new_document_resets(store, sample_blocks, tmp_path):
    """new_document starts empty, forgets the handle, and clears history."""
    store.edit_fields({"blocks": sample_blocks, "title": "Old"})
    store.dispatch(SetHandle(LocalFileHandle(tmp_path / "old.blockdoc")))
    store.new_document()
    assert store.document.blocks == []
    assert store.document.title == "Unsaved Document"
    assert store.file_handle is None
    assert not store.has_undo


# --- save ---

@pytest.mark.asyncio
async def test_save_without_blocks_is_skipped(store, picker):
    """Nothing is saved before a document exists."""
    assert await store.save() == SaveOutcome.skipped
    assert picker.calls == []


@pytest.mark.asyncio
async def test_save_picks_target_and_adopts_handle(store, picker, notifier, sample_blocks, tmp_path):
    """The first save asks for a target, writes the package, and adopts the file name as title."""
    store.edit_fields({"blocks": sample_blocks})
    assert await store.save() == SaveOutcome.saved

    assert picker.calls == [("chapter-one.blockdoc", [PACKAGE_TYPE])]
    path = tmp_path / "chapter-one.blockdoc"
    decoded = decode_package(path.read_bytes(), ResourceCache())
    assert decoded.markup == serialize_blocks(sample_blocks)
    assert store.file_handle.name == "chapter-one.blockdoc"
    assert store.document.title == "chapter-one.blockdoc"
    assert store.document.content == serialize_blocks(sample_blocks)
    assert notifier.successes == [SAVE_NOTICE]


@pytest.mark.asyncio
async def test_save_title_change_not_undoable(store, sample_blocks):
    """Adopting the file name as title does not add an undo step."""
    store.edit_fields({"blocks": sample_blocks})
    await store.save()
    assert store.undo()
    assert store.document.blocks is None
    assert not store.has_undo


@pytest.mark.asyncio
async def test_save_reuses_handle(store, picker, sample_blocks, tmp_path):
    """Later saves write through the remembered handle without asking again."""
    store.edit_fields({"blocks": sample_blocks})
    await store.save()
    store.edit_fields({"blocks": [_para("changed")]})
    assert await store.save() == SaveOutcome.saved
    assert len(picker.calls) == 1
    decoded = decode_package((tmp_path / "chapter-one.blockdoc").read_bytes(), ResourceCache())
    assert "changed" in decoded.markup


@pytest.mark.asyncio
async def test_save_untitled_suggests_new(store, picker):
    """A document without text suggests 'new.blockdoc'."""
    store.new_document()
    await store.save()
    assert picker.calls[0][0] == "new.blockdoc"


@pytest.mark.asyncio
async def test_save_cancelled(store, picker, notifier, sample_blocks, tmp_path):
    """Dismissing the picker writes nothing and changes nothing."""
    picker.cancel = True
    store.edit_fields({"blocks": sample_blocks})
    assert await store.save() == SaveOutcome.cancelled
    assert store.file_handle is None
    assert store.document.title == "Unsaved Document"
    assert notifier.successes == [] and notifier.errors == []
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_save_falls_back_to_download(store, picker, notifier, downloader, sample_blocks):
    """Without a writable target the package is downloaded with a distinct notice."""
    picker.unsupported = True
    store.edit_fields({"blocks": sample_blocks})
    assert await store.save() == SaveOutcome.downloaded

    [(filename, data)] = downloader.downloads
    assert filename == "chapter-one.blockdoc"
    assert decode_package(data, ResourceCache()).markup == serialize_blocks(sample_blocks)
    assert notifier.successes == [DOWNLOAD_NOTICE]
    assert store.file_handle is None
    assert store.document.title == "Unsaved Document"


@pytest.mark.asyncio
async def test_save_picker_error_fails(store, picker, notifier, downloader, sample_blocks):
    """A picker that raises is reported as one failed save, not an exception."""
    picker.error = PermissionError("denied")
    store.edit_fields({"blocks": sample_blocks})
    assert await store.save() == SaveOutcome.failed
    assert len(notifier.errors) == 1 and "denied" in notifier.errors[0]
    assert notifier.successes == []
    assert downloader.downloads == []
    assert store.file_handle is None


@pytest.mark.asyncio
async def test_save_without_picker_downloads(notifier, downloader, transport, sample_blocks):
    """A store with no picker always downloads."""
    store = DocumentStore(downloader=downloader, notifier=notifier, transport=transport)
    store.edit_fields({"blocks": sample_blocks})
    assert await store.save() == SaveOutcome.downloaded
    assert len(downloader.downloads) == 1


@pytest.mark.asyncio
async def test_save_fetch_failure(store, picker, notifier, tmp_path):
    """A failed image fetch aborts the save and reports an error."""
    store.edit_fields({"blocks": [_image("https://host/missing.png")]})
    assert await store.save() == SaveOutcome.failed
    assert picker.calls == []
    assert len(notifier.errors) == 1 and "missing.png" in notifier.errors[0]
    assert store.file_handle is None
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_save_packages_remote_images(store, png, tmp_path):
    """Remote images are stored in the package while the editor keeps its URLs."""
    blocks = [_image("https://host/img123.png#png")]
    store.edit_fields({"blocks": blocks})
    await store.save()

    decoded = decode_package((tmp_path / "new.blockdoc").read_bytes(), ResourceCache())
    assert decoded.assets == {"img123.png": png}
    assert store.document.blocks[0].attributes["url"] == "https://host/img123.png#png"


@pytest.mark.asyncio
async def test_save_keeps_edits_made_during_save(picker, notifier, downloader, png):
    """Edits made while a save is in flight are not overwritten or saved."""
    later = [_para("later")]

    def handler(request):
        store.edit_fields({"blocks": later})
        return httpx.Response(200, content=png)

    store = DocumentStore(
        picker=picker, downloader=downloader, notifier=notifier, transport=httpx.MockTransport(handler),
    )
    store.edit_fields({"blocks": [_image("https://host/a.png")]})
    assert await store.save() == SaveOutcome.saved

    assert store.document.blocks == later
    assert store.document.content == ""
    decoded = decode_package(store.file_handle.read(), ResourceCache())
    assert "a.png" in decoded.assets
    assert "later" not in decoded.markup


@pytest.mark.asyncio
async def test_concurrent_saves_pick_once(store, picker, sample_blocks):
    """Two overlapping saves share one picked target."""
    store.edit_fields({"blocks": sample_blocks})
    outcomes = await asyncio.gather(store.save(), store.save())
    assert outcomes == [SaveOutcome.saved, SaveOutcome.saved]
    assert len(picker.calls) == 1


@pytest.mark.asyncio
async def test_save_epub(picker, notifier, downloader, transport, tmp_path):
    """With the epub target the save writes an e-book with anchored headings."""
    store = DocumentStore(
        settings=Settings(target_format="epub"),
        picker=picker, downloader=downloader, notifier=notifier, transport=transport,
    )
    store.edit_fields({"blocks": [
        Block(name="core/heading", attributes={"content": "Chapter One", "level": 1}),
        _image("https://host/img123.png#png"),
    ]})
    assert await store.save() == SaveOutcome.saved
    assert picker.calls == [("chapter-one.epub", [EPUB_TYPE])]

    with zipfile.ZipFile(io.BytesIO((tmp_path / "chapter-one.epub").read_bytes())) as zf:
        content = zf.read("EPUB/index.xhtml").decode()
        assert "EPUB/img123.png" in zf.namelist()
    assert 'id="chapter-one"' in content
    assert 'src="img123.png"' in content
    assert "anchor" not in store.document.blocks[0].attributes


@pytest.mark.asyncio
async def test_epub_save_does_not_reuse_package_handle(store, picker, sample_blocks, tmp_path):
    """Switching to the epub target asks for a new file instead of overwriting the package."""
    store.edit_fields({"blocks": sample_blocks})
    await store.save()
    store.settings = Settings(target_format="epub")
    assert await store.save() == SaveOutcome.saved

    assert [name for name, _ in picker.calls] == ["chapter-one.blockdoc", "chapter-one.epub"]
    assert zipfile.is_zipfile(tmp_path / "chapter-one.epub")
    package = decode_package((tmp_path / "chapter-one.blockdoc").read_bytes(), ResourceCache())
    assert package.markup == serialize_blocks(sample_blocks)
    assert store.file_handle.name == "chapter-one.epub"


# --- open ---

@pytest.mark.asyncio
async def test_open_saved_package(store, picker, notifier, downloader, transport, sample_blocks, tmp_path):
    """Opening a saved package restores blocks, title, and handle with empty history."""
    store.edit_fields({"blocks": sample_blocks})
    await store.save()

    other = DocumentStore(picker=picker, downloader=downloader, notifier=notifier, transport=transport)
    other.edit_fields({"title": "Scratch"})
    await other.open(tmp_path / "chapter-one.blockdoc")

    assert other.document.blocks == sample_blocks
    assert other.document.title == "chapter-one.blockdoc"
    assert other.document.content == serialize_blocks(sample_blocks)
    assert other.file_handle.name == "chapter-one.blockdoc"
    assert not other.has_undo


@pytest.mark.asyncio
async def test_open_then_save_keeps_images(store, notifier, downloader, transport, png, tmp_path):
    """Images loaded from a package survive a re-save byte-for-byte."""
    store.edit_fields({"blocks": [_image("https://host/img123.png#png")]})
    await store.save()
    path = tmp_path / "new.blockdoc"

    other = DocumentStore(notifier=notifier, downloader=downloader, transport=transport)
    await other.open(str(path))
    url = other.document.blocks[0].attributes["url"]
    assert url.startswith("blob:") and url.endswith("#png")
    assert other.resources.resolve(url) == png

    other.edit_fields({"blocks": [*other.document.blocks, _para("more")]})
    assert await other.save() == SaveOutcome.saved
    decoded = decode_package(path.read_bytes(), ResourceCache())
    assert decoded.assets == {"img123.png": png}
    assert "more" in decoded.markup


@pytest.mark.asyncio
async def test_open_read_only_file_has_no_handle(store, sample_blocks, tmp_path):
    """A read-only source is loaded but the next save asks for a target."""
    store.edit_fields({"blocks": sample_blocks})
    await store.save()
    data = (tmp_path / "chapter-one.blockdoc").read_bytes()

    await store.open(PlainFile(name="upload.blockdoc", data=data))
    assert store.document.title == "upload.blockdoc"
    assert store.file_handle is None


@pytest.mark.asyncio
async def test_open_unrecognized_package(store, notifier, sample_blocks):
    """A file without index.html is rejected and the current document is kept."""
    store.edit_fields({"blocks": sample_blocks, "title": "Keep"})
    with pytest.raises(UnrecognizedPackage):
        await store.open(PlainFile(name="bad.blockdoc", data=b"not a zip"))
    assert store.document.blocks == sample_blocks
    assert store.document.title == "Keep"
    assert store.has_undo
    assert len(notifier.errors) == 1


@pytest.mark.asyncio
async def test_open_malformed_markup(store):
    """A package whose markup has unbalanced delimiters is unrecognized."""
    data = encode_package("<!-- wp:paragraph -->\n<p>x</p>", {})
    with pytest.raises(UnrecognizedPackage, match="Unclosed"):
        await store.open(PlainFile(name="bad.blockdoc", data=data))
    assert store.document.blocks is None
