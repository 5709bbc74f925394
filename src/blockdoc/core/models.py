"""Data models for blocks, documents, undo history, and packages"""

from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


CORE_NAMESPACE = "core/"

EDITABLE_FIELDS = ("title", "content", "status", "blocks")


class Block(BaseModel):
    """A node of the editor's content tree."""
    name: str
    attributes: dict[str, Any] = {}
    children: list["Block"] = []

    @property
    def kind(self) -> str:
        """Block type without the core/ namespace (e.g. 'core/image' -> 'image')."""
        return self.name.removeprefix(CORE_NAMESPACE)

    def with_changes(self, attributes: dict[str, Any] = None, children: list["Block"] = None) -> "Block":
        """Return a copy with merged attributes and/or replaced children; self is untouched."""
        update: dict[str, Any] = {}
        if attributes is not None:
            update["attributes"] = {**self.attributes, **attributes}
        if children is not None:
            update["children"] = children
        return self.model_copy(update=update)


class DocumentStatus(str, Enum):
    draft = "draft"
    private = "private"
    publish = "publish"


class Document(BaseModel):
    """The editable record. blocks is None until a document is created or opened."""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str = "Unsaved Document"
    content: str = ""               # body markup, recomputed from blocks before persistence
    status: DocumentStatus = DocumentStatus.draft
    blocks: Optional[list[Block]] = None


class FieldChange(BaseModel):
    """Before/after values of one field in a change record."""
    model_config = ConfigDict(populate_by_name=True)

    from_: Any = Field(alias="from")
    to: Any


class RecordEntry(BaseModel):
    """Per-record field changes; a change record is an ordered list of these."""
    id: str
    changes: dict[str, FieldChange]


ChangeRecord = list[RecordEntry]


class NavEntry(BaseModel):
    """One table-of-contents line of an e-book."""
    title: str
    level: int = Field(ge=1, le=6)
    anchor_href: str


class DecodedPackage(BaseModel):
    """Result of decoding a document package."""
    markup: str
    title: Optional[str] = None
    assets: dict[str, bytes] = {}

    def resolve_asset(self, path: str) -> Optional[bytes]:
        return self.assets.get(path)


class EbookArchive(BaseModel):
    data: bytes
    media_type: str = "application/epub+zip"
