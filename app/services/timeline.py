"""
Timeline reconstruction - turns a raw status history into display groups.

Pure functions only: nothing here reads or writes storage.
"""
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from app.models.application import Application
from app.models.enums import ProgressState
from app.models.history import CamelModel, HistoryEntry, HistoryLog
from app.services import status_catalog


class TimelineNote(CamelModel):
    note: str
    date: Optional[datetime] = None


class TimelineGroup(CamelModel):
    """Every visit to one status, collapsed into a single group."""
    status: str
    step: Optional[int] = None
    date: Optional[datetime] = None
    tentative_date: Optional[datetime] = None
    required_documents: Optional[Tuple[str, ...]] = None
    notes: List[TimelineNote] = []


class ProgressStep(CamelModel):
    status: str
    step: int
    message: str
    state: ProgressState
    reached_at: Optional[datetime] = None
    estimated_at: Optional[datetime] = None


def _entries(status_history) -> List[HistoryEntry]:
    if isinstance(status_history, HistoryLog):
        return list(status_history)
    return list(HistoryLog.load(status_history))


def _ordinal(status: str) -> int:
    # Statuses the catalog no longer knows sort after every known stage
    if status_catalog.is_valid_status(status):
        return status_catalog.ordinal_of(status)
    return 0


def reconstruct_timeline(status_history: Optional[Iterable]) -> List[TimelineGroup]:
    """
    Group a status history by status for display.

    - Entries are folded newest first; the newest entry of each status
      supplies the group's date, tentative date and required documents
    - Operator notes from every visit are kept, oldest first; auto-generated
      notes are dropped
    - Groups are ordered by flow position, most advanced stage first
    - Entries without a usable date count as the oldest
    """
    entries = _entries(status_history)
    if not entries:
        return []

    # Equal dates: the later-appended entry is the newer one
    newest_first = [
        entry for _, entry in sorted(
            enumerate(entries), key=lambda pair: (pair[1].sort_date, pair[0]), reverse=True
        )
    ]

    groups: Dict[str, TimelineGroup] = {}
    for entry in newest_first:
        group = groups.get(entry.status)
        if group is None:
            group = TimelineGroup(
                status=entry.status,
                step=_ordinal(entry.status) or None,
                date=entry.date,
                tentative_date=entry.tentative_date,
                required_documents=entry.required_documents,
                notes=[],
            )
            groups[entry.status] = group
        if entry.note and not entry.auto_note:
            group.notes.append(TimelineNote(note=entry.note, date=entry.date))

    for group in groups.values():
        group.notes.reverse()

    return sorted(groups.values(), key=lambda g: _ordinal(g.status), reverse=True)


def progress(application: Application) -> List[ProgressStep]:
    """
    Where the application stands on each stage of the canonical flow.

    Stages not reached yet get an estimated date: the last reached date plus
    the catalog's typical duration of each stage in between. The estimate is
    informational only.
    """
    reached: Dict[str, Optional[datetime]] = {}
    for entry in application.status_history:
        if status_catalog.is_valid_status(entry.status):
            reached[entry.status] = entry.date

    current_step = (
        status_catalog.ordinal_of(application.current_status)
        if status_catalog.is_valid_status(application.current_status)
        else 0
    )

    steps = []
    estimate = application.status_history.latest.date if application.status_history.latest else None
    for meta in status_catalog.statuses():
        if meta.step < current_step:
            state = ProgressState.COMPLETED
        elif meta.step == current_step:
            state = ProgressState.CURRENT
        else:
            state = ProgressState.PENDING

        estimated_at = None
        if state == ProgressState.PENDING and estimate is not None:
            if meta.step > 1:
                previous = status_catalog.statuses()[meta.step - 2]
                estimate = estimate + timedelta(days=previous.default_offset_days)
            estimated_at = estimate

        steps.append(ProgressStep(
            status=meta.status,
            step=meta.step,
            message=meta.default_message,
            state=state,
            reached_at=reached.get(meta.status) if state != ProgressState.PENDING else None,
            estimated_at=estimated_at,
        ))
    return steps
