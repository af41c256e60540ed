"""Tests for aggregate persistence and optimistic locking."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from app.database import engine_options, init_db
from app.models.domain import VisaApplication
from app.services.document_store import DocumentStore
from app.services.errors import ApplicationNotFoundError, StoreError, StoreWriteConflictError
from app.services.transition_processor import Attachment, TransitionOptions, TransitionProcessor
from tests.conftest import MemoryStorage, SteppingClock


@pytest.fixture
def file_sessions(tmp_path):
    """Two independent sessions on the same on-disk database."""
    engine = create_engine(f"sqlite:///{tmp_path / 'store.db'}")
    init_db(engine)
    Session = sessionmaker(bind=engine)
    first, second = Session(), Session()

    yield first, second

    first.close()
    second.close()
    engine.dispose()


def test_engine_options():
    assert engine_options("sqlite://") == {"connect_args": {"check_same_thread": False}}
    assert engine_options("postgresql://u@db/visa")["pool_pre_ping"] is True


class TestRoundTrip:

    def test_version_starts_at_one(self, sample_application):
        assert sample_application.version == 1

    def test_write_bumps_version(self, processor, sample_application):
        app = processor.apply_transition(sample_application.id, "Visa Approved")
        assert app.version == 2

    def test_legacy_rows_load(self, db_session, store):
        """Rows written by older versions of the portal load without conversion errors."""
        db_session.add(VisaApplication(
            id="legacy-1",
            current_status="Additional Documents Needed",
            status_history=[
                {"status": "Document Submitted", "date": {"seconds": 1740819600, "nanoseconds": 0},
                 "note": "Application submitted successfully", "tentativeDate": None},
                {"status": "Additional Documents Needed", "date": "2025-03-02T09:00:00.000Z",
                 "note": "Status updated to Additional Documents Needed", "requiredDocument": "Passport"},
            ],
            documents=[{"type": "Passport", "url": "https://f/p.pdf", "name": "p.pdf", "size": 10}],
        ))
        db_session.commit()

        app = store.get_aggregate("legacy-1")
        assert app.is_consistent()
        assert app.status_history[-1].required_documents == ("Passport",)
        assert app.status_history[-1].auto_note is True
        # Unknown document keys survive
        assert app.documents[0].to_document()["name"] == "p.pdf"

    def test_legacy_entries_not_rewritten_by_append(self, db_session, store, processor):
        legacy_entry = {"status": "Document Submitted", "date": "2025-03-01T09:00:00.000Z",
                        "note": "Application submitted successfully", "tentativeDate": None}
        db_session.add(VisaApplication(
            id="legacy-2", current_status="Document Submitted",
            status_history=[legacy_entry], documents=[],
        ))
        db_session.commit()

        processor.apply_transition("legacy-2", "Visa Approved")

        row = db_session.get(VisaApplication, "legacy-2")
        assert row.status_history[0] == legacy_entry
        assert row.status_history[1]["status"] == "Visa Approved"

    def test_missing(self, store):
        with pytest.raises(ApplicationNotFoundError):
            store.get_aggregate("nope")

    def test_list_filters_by_user(self, processor, store, sample_application):
        processor.create_application(user_id="someone_else", name="B", email="b@example.com")
        assert [a.id for a in store.list_aggregates(user_id="user_123")] == [sample_application.id]
        assert len(store.list_aggregates()) == 2

    def test_delete(self, store, sample_application):
        store.delete_aggregate(sample_application.id)
        with pytest.raises(ApplicationNotFoundError):
            store.get_aggregate(sample_application.id)


class TestOptimisticLocking:

    def test_stale_write_is_refused(self, file_sessions):
        """Two requests read the same version; the second writer must not overwrite the first."""
        first, second = file_sessions
        storage = MemoryStorage()
        seed = TransitionProcessor(DocumentStore(first), storage, clock=SteppingClock())
        application = seed.create_application(user_id="u", name="A", email="a@example.com")

        first_store = DocumentStore(first)
        stale = first_store.get_aggregate(application.id)

        TransitionProcessor(DocumentStore(second), storage, clock=SteppingClock()).apply_transition(
            application.id, "Additional Documents Needed", TransitionOptions(note="from request two"),
        )

        updated = stale.model_copy(update={"current_status": "Visa Approved"})
        with pytest.raises(StoreWriteConflictError):
            first_store.put_aggregate(updated)

        current = DocumentStore(first).get_aggregate(application.id)
        assert current.current_status == "Additional Documents Needed"
        assert len(current.status_history) == 2

    def test_outdated_aggregate_version_is_refused(self, store, processor, sample_application):
        processor.apply_transition(sample_application.id, "Visa Approved")
        with pytest.raises(StoreWriteConflictError):
            store.put_aggregate(sample_application)

    def test_processor_recovers_from_real_conflict(self, file_sessions):
        """A stale read in one session is retried against the other session's write."""
        first, second = file_sessions
        storage = MemoryStorage()
        clock = SteppingClock()
        first_processor = TransitionProcessor(DocumentStore(first), storage, clock=clock)
        application = first_processor.create_application(user_id="u", name="A", email="a@example.com")

        class RacingStore(DocumentStore):
            raced = False

            def put_aggregate(self, aggregate, events=()):
                if not self.raced:
                    self.raced = True
                    TransitionProcessor(DocumentStore(second), storage, clock=clock).apply_transition(
                        aggregate.id, "Additional Documents Needed", TransitionOptions(note="racer"),
                    )
                return super().put_aggregate(aggregate, events)

        app = TransitionProcessor(RacingStore(first), storage, clock=clock).apply_transition(
            application.id, "Visa Approved", TransitionOptions(note="mine"),
        )
        assert [e.note for e in app.status_history][1:] == ["racer", "mine"]
        assert app.is_consistent()


def _raising(error):
    def fail(*args, **kwargs):
        raise error
    return fail


LOCKED = OperationalError("COMMIT", {}, Exception("database is locked"))


class TestDatabaseFailures:

    def test_failed_update_is_typed_and_rolled_back(self, monkeypatch, db_session, store, sample_application):
        monkeypatch.setattr(db_session, "commit", _raising(LOCKED))
        with pytest.raises(StoreError) as exc_info:
            store.put_aggregate(sample_application.model_copy(update={"current_status": "Visa Approved"}))
        assert exc_info.value.step == "persist"
        assert exc_info.value.retryable is True

        monkeypatch.undo()
        assert store.get_aggregate(sample_application.id).current_status == "Document Submitted"

    def test_constraint_violation_is_not_retryable(self, monkeypatch, db_session, store, sample_application):
        monkeypatch.setattr(db_session, "commit", _raising(
            IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))))
        with pytest.raises(StoreError) as exc_info:
            store.add_aggregate(sample_application.model_copy(update={"id": "second"}))
        assert exc_info.value.step == "persist"
        assert exc_info.value.retryable is False

    def test_failed_delete_keeps_the_application(self, monkeypatch, db_session, store, sample_application):
        monkeypatch.setattr(db_session, "commit", _raising(LOCKED))
        with pytest.raises(StoreError):
            store.delete_aggregate(sample_application.id)

        monkeypatch.undo()
        assert store.get_aggregate(sample_application.id).id == sample_application.id

    def test_failed_read(self, monkeypatch, db_session, store):
        monkeypatch.setattr(db_session, "query", _raising(LOCKED))
        with pytest.raises(StoreError) as exc_info:
            store.get_aggregate("any")
        assert exc_info.value.step == "load"

    def test_failed_write_discards_attachment(self, monkeypatch, db_session, processor, storage, sample_application):
        """Nothing is recorded and the uploaded file is removed."""
        monkeypatch.setattr(db_session, "commit", _raising(LOCKED))
        with pytest.raises(StoreError):
            processor.apply_transition(
                sample_application.id, "Visa Approved",
                TransitionOptions(attachment=Attachment(data=b"%PDF", filename="offer.pdf")),
            )
        assert storage.files == {}

        monkeypatch.undo()
        assert len(processor.store.get_aggregate(sample_application.id).status_history) == 1
