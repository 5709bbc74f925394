"""CLI command implementations"""

import asyncio
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from pydantic import ValidationError

from blockdoc.config import Settings, load_config
from blockdoc.core.errors import UnrecognizedPackage
from blockdoc.core.handles import DirectoryPicker
from blockdoc.core.library import list_documents
from blockdoc.core.models import Block
from blockdoc.core.serialize import block_text
from blockdoc.core.store import DocumentStore, SaveOutcome
from blockdoc.core.utils.logger import set_level


def _fail(msg: str, *details: object) -> NoReturn:
    """Print msg and any detail lines to stderr and exit 1."""
    typer.echo(f"Error: {msg}", err=True)
    for detail in details:
        typer.echo(f"  {detail}", err=True)
    raise typer.Exit(1)


def _settings(overrides: dict = None) -> Settings:
    """Load config; each invalid setting is reported on its own line."""
    try:
        settings = load_config(overrides=overrides)
    except ValidationError as e:
        _fail("Invalid settings", *(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()))
    except ValueError as e:
        _fail(str(e))
    _init_logging(settings)
    return settings


def _init_logging(settings: Settings) -> None:
    set_level(settings.log_level)


def _open(store: DocumentStore, package: Path) -> None:
    if not package.is_file():
        _fail(f"No such file: {package}")
    try:
        asyncio.run(store.open(package))
    except (UnrecognizedPackage, OSError) as e:
        _fail(f"Could not open {package}", e)


def _echo_outline(blocks: list[Block], depth: int = 0) -> None:
    for block in blocks:
        text = block_text(block) or block.attributes.get("url") or ""
        line = f"{'  ' * (depth + 1)}{block.kind}"
        typer.echo(f"{line}: {text[:60]}" if text else line)
        _echo_outline(block.children, depth + 1)


def list_cmd(
    folder: Annotated[str, typer.Argument(help="Folder to search for document packages")],
    words: Annotated[Optional[int], typer.Option("--title-words", help="Max words of a derived title")] = None,
    ):
    """List document packages in a folder with their titles."""
    settings = _settings(overrides={"title_words": words})
    path = Path(folder)
    if not path.exists():
        _fail(f"No such folder: {path}")
    summaries = list_documents(path, settings.title_words)
    if not summaries:
        typer.echo("No documents found.")
        raise typer.Exit(1)
    for s in summaries:
        typer.echo(f"  {s.path.name}: {s.title} ({s.assets} image(s))")
    typer.echo(f"Found {len(summaries)} document(s) in {path}/")


def show_cmd(
    package: Annotated[str, typer.Argument(help="Document package to open")],
    ):
    """Open a package and print its title and block outline."""
    store = DocumentStore(settings=_settings())
    _open(store, Path(package))
    doc = store.document
    typer.echo(f"Title: {doc.title}")
    typer.echo(f"Blocks: {len(doc.blocks)}, images: {len(store.resources)}")
    _echo_outline(doc.blocks)


def epub_cmd(
    package: Annotated[str, typer.Argument(help="Document package to convert")],
    out: Annotated[Optional[str], typer.Option("--out-dir", help="Output directory (default: next to the package)")] = None,
    language: Annotated[Optional[str], typer.Option("--language", help="Language code for the e-book")] = None,
    ):
    """Re-save a document package as an EPUB e-book."""
    settings = _settings(overrides={"target_format": "epub", "language": language})
    path = Path(package)
    out_dir = Path(out) if out else path.parent
    out_dir.mkdir(parents=True, exist_ok=True)

    store = DocumentStore(settings=settings, picker=DirectoryPicker(out_dir))
    _open(store, path)
    outcome = asyncio.run(store.save())
    if outcome != SaveOutcome.saved:
        _fail(f"E-book export {outcome.value}")
    typer.echo(f"  {path} -> {store.file_handle.path}")
    typer.echo(f"Exported 1 e-book to {out_dir}/")
