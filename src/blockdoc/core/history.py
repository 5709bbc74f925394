"""Linear undo/redo history of field-level change records"""

from typing import Optional

from blockdoc.core.models import ChangeRecord, FieldChange, RecordEntry


def _copy(entry: RecordEntry) -> RecordEntry:
    return RecordEntry(id=entry.id, changes=dict(entry.changes))


def _merge_into(previous: ChangeRecord, record: ChangeRecord) -> None:
    """Fold record into previous: keep each field's original from, take the newer to."""
    for entry in record:
        target = next((e for e in previous if e.id == entry.id), None)
        if target is None:
            previous.append(_copy(entry))
            continue
        for field, change in entry.changes.items():
            if field in target.changes:
                target.changes[field] = FieldChange(from_=target.changes[field].from_, to=change.to)
            else:
                target.changes[field] = change


class UndoManager:
    """History of change records with a cursor; records before the cursor are undoable."""

    def __init__(self):
        self._history: list[ChangeRecord] = []
        self._cursor = 0

    def __len__(self) -> int:
        return len(self._history)

    @property
    def cursor(self) -> int:
        return self._cursor

    def add_record(self, record: ChangeRecord, is_cached: bool = False) -> None:
        """Record an edit, discarding any redoable future.

        A cached record is merged into the one just behind the cursor when
        there is one, so a burst of keystrokes undoes as a single step.
        """
        if not record or not any(entry.changes for entry in record):
            return
        del self._history[self._cursor:]
        if is_cached and self._cursor > 0:
            _merge_into(self._history[self._cursor - 1], record)
            return
        self._history.append([_copy(entry) for entry in record])
        self._cursor += 1

    def undo(self) -> Optional[ChangeRecord]:
        """Step back; returns the record whose from values the caller applies."""
        if self._cursor == 0:
            return None
        self._cursor -= 1
        return self._history[self._cursor]

    def redo(self) -> Optional[ChangeRecord]:
        """Step forward; returns the record whose to values the caller applies."""
        if self._cursor == len(self._history):
            return None
        record = self._history[self._cursor]
        self._cursor += 1
        return record

    def has_undo(self) -> bool:
        return self._cursor > 0

    def has_redo(self) -> bool:
        return self._cursor < len(self._history)

    def reset(self) -> None:
        self._history = []
        self._cursor = 0
