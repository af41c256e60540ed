"""
Status history - the append-only log attached to every application.

Entries are immutable once appended. Stored entries are loaded through
HistoryEntry, which is also where older record shapes are converted to the
current one (legacy ``requiredDocument``, legacy status spellings, missing
``autoNote`` flags, unparseable dates). Nothing downstream branches on the
legacy shapes.
"""
import copy
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic.alias_generators import to_camel

from app.services import status_catalog

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Template of the note written when an operator gives none
DEFAULT_NOTE_TEMPLATE = "Status updated to {status}"
_LEGACY_DEFAULT_NOTE_MARKER = "Status updated to"


def default_note(status: str) -> str:
    return DEFAULT_NOTE_TEMPLATE.format(status=status)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Best-effort conversion of a stored timestamp to an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings, epoch seconds and document-database
    timestamp objects (``{"seconds": ..., "nanoseconds": ...}``). Anything
    else, including malformed strings, yields None.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, dict) and "seconds" in value:
            seconds = float(value["seconds"]) + float(value.get("nanoseconds", 0)) / 1e9
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        elif isinstance(value, (int, float)):
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        elif isinstance(value, str) and value.strip():
            text = value.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
        else:
            return None
    except (TypeError, ValueError, OverflowError, OSError):
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class CamelModel(BaseModel):
    """Frozen model persisted with camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_document(self) -> dict:
        """JSON-ready dict in the persisted shape. Unset fields are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DocumentReference(CamelModel):
    """A stored file attached to an application. Unknown stored keys are kept."""
    model_config = ConfigDict(extra="allow")

    type: str
    url: str
    original_name: Optional[str] = None
    size: Optional[int] = None
    content_type: Optional[str] = None
    upload_date: Optional[datetime] = None
    storage_path: Optional[str] = None

    @field_validator("upload_date", mode="before")
    @classmethod
    def _parse_upload_date(cls, value):
        return parse_timestamp(value)


class HistoryEntry(CamelModel):
    """
    One recorded status transition.

    ``auto_note`` is True when the note was synthesized rather than written by
    an operator; the timeline hides those notes.
    """
    status: str
    date: Optional[datetime] = None
    note: str = ""
    auto_note: bool = False
    tentative_date: Optional[datetime] = None
    required_documents: Optional[Tuple[str, ...]] = None
    attached_document: Optional[DocumentReference] = None

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_shape(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)

        status = data.get("status")
        if isinstance(status, str):
            data["status"] = status_catalog.canonical(status)

        legacy_document = data.pop("requiredDocument", None)
        legacy_document = data.pop("required_document", legacy_document)
        has_list = data.get("requiredDocuments") is not None or data.get("required_documents") is not None
        if not has_list and isinstance(legacy_document, str) and legacy_document.strip():
            data["requiredDocuments"] = [legacy_document]

        if data.get("note") is None:
            data["note"] = ""

        # Records written before the flag existed: infer it once, here
        if "autoNote" not in data and "auto_note" not in data:
            note = data["note"]
            data["autoNote"] = isinstance(note, str) and _LEGACY_DEFAULT_NOTE_MARKER in note
        return data

    @field_validator("date", "tentative_date", mode="before")
    @classmethod
    def _parse_dates(cls, value):
        return parse_timestamp(value)

    @field_validator("required_documents", mode="before")
    @classmethod
    def _coerce_required_documents(cls, value):
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        return tuple(str(doc) for doc in value if doc is not None)

    @property
    def sort_date(self) -> datetime:
        """Date used for ordering; entries without a usable date sort as oldest."""
        return self.date or EPOCH


class HistoryLog(Sequence):
    """
    Ordered, append-only sequence of HistoryEntry for one application.

    Order is the order in which transitions were applied, not timestamp
    order. The raw stored form of every loaded entry is kept verbatim so that
    writing the log back never rewrites earlier entries.

    Invariants:
    - append() returns a new log; an existing log is never mutated
    - every appended entry's status is in the status catalog
    """

    __slots__ = ("_entries", "_raw")

    def __init__(self, entries: Tuple[HistoryEntry, ...] = (), raw: Tuple[dict, ...] = ()):
        self._entries = tuple(entries)
        self._raw = tuple(raw) if raw else tuple(e.to_document() for e in self._entries)

    @classmethod
    def load(cls, stored: Optional[Sequence[Any]]) -> "HistoryLog":
        """Build a log from stored entries (dicts or HistoryEntry objects)."""
        entries = []
        raw = []
        for item in stored or ():
            if isinstance(item, HistoryEntry):
                entries.append(item)
                raw.append(item.to_document())
            else:
                entries.append(HistoryEntry.model_validate(item))
                raw.append(copy.deepcopy(dict(item)))
        return cls(tuple(entries), tuple(raw))

    def append(self, entry: HistoryEntry) -> "HistoryLog":
        if not status_catalog.is_valid_status(entry.status):
            raise status_catalog.StatusNotFoundError(entry.status)
        return HistoryLog(self._entries + (entry,), self._raw + (entry.to_document(),))

    @property
    def latest(self) -> Optional[HistoryEntry]:
        return self._entries[-1] if self._entries else None

    def latest_with_status(self, status: str, with_documents: bool = False) -> Optional[HistoryEntry]:
        """Most recently appended entry with the given status.

        With ``with_documents``, only entries that list required documents count.
        """
        for entry in reversed(self._entries):
            if entry.status != status:
                continue
            if with_documents and not entry.required_documents:
                continue
            return entry
        return None

    def to_raw(self) -> List[dict]:
        """Persisted form: loaded entries untouched, appended entries serialized."""
        return copy.deepcopy(list(self._raw))

    def to_documents(self) -> List[dict]:
        """Normalized form of every entry, for API responses."""
        return [entry.to_document() for entry in self._entries]

    def __getitem__(self, index):
        return self._entries[index]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(self._entries)

    def __eq__(self, other) -> bool:
        if isinstance(other, HistoryLog):
            return self._entries == other._entries
        return NotImplemented

    def __hash__(self):
        return hash(self._entries)

    def __repr__(self) -> str:
        return f"HistoryLog({len(self._entries)} entries)"
