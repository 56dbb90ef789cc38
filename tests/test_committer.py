import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from contact_ingest.db.models import Client, Contact
from contact_ingest.domain.imports.batching import ImportBatch
from contact_ingest.domain.imports.committer import (
    DUPLICATE_EMAIL,
    DUPLICATE_PHONE,
    OTHER_ERROR,
    FallbackStrategy,
    PerRecordFallback,
    TransactionalBatchCommitter,
    classify_commit_error,
    error_message,
)
from contact_ingest.domain.imports.results import CommitOutcome
from contact_ingest.domain.imports.validators import CandidateContact
from contact_ingest.domain.stores import SqlClientStore, SqlContactStore, transaction_scope


def _contact(n, client="C1", phone=None, **fields):
    return CandidateContact(
        row_number=n,
        client_number=client,
        last_name=f"Nom{n}",
        phone=phone if phone is not None else f"06{n:08d}",
        profile="imported",
        status="active",
        **fields,
    )


def _counts(session_factory):
    with transaction_scope(session_factory) as session:
        return session.query(Client).count(), session.query(Contact).count()


def _integrity_error(message):
    return IntegrityError("INSERT INTO contacts", {}, Exception(message))


@pytest.mark.parametrize(
    "message, category",
    [
        ("UNIQUE constraint failed: contacts.num_tel", DUPLICATE_PHONE),
        ('duplicate key value violates unique constraint "contacts_numTel_key"', DUPLICATE_PHONE),
        ("UNIQUE constraint failed: contacts.email", DUPLICATE_EMAIL),
        ("NOT NULL constraint failed: contacts.nom", OTHER_ERROR),
    ],
)
def test_classify_integrity_errors(message, category):
    assert classify_commit_error(_integrity_error(message)) == (category, message)


def test_non_integrity_errors_are_other():
    assert classify_commit_error(RuntimeError("unique phone somewhere")) == (OTHER_ERROR, "unique phone somewhere")


def test_error_message_keeps_first_line_and_truncates():
    assert error_message(RuntimeError("first line\nsecond line")) == "first line"
    assert error_message(RuntimeError()) == "RuntimeError"
    assert len(error_message(RuntimeError("x" * 1000))) == 300


def test_batch_commit_writes_clients_and_contacts_atomically(session_factory):
    committer = TransactionalBatchCommitter(SqlClientStore(), SqlContactStore(), session_factory)
    batch = ImportBatch(1, tuple(_contact(n, client=f"C{n % 2}") for n in range(1, 6)))

    outcome = committer.commit(batch)

    assert outcome == CommitOutcome(successful=5)
    assert _counts(session_factory) == (2, 5)


def test_empty_batch_is_a_no_op(session_factory):
    committer = TransactionalBatchCommitter(SqlClientStore(), SqlContactStore(), session_factory)
    assert committer.commit(ImportBatch(1, ())) == CommitOutcome()


def test_failed_batch_falls_back_to_per_record_commits(session_factory, unique_phone_index):
    committer = TransactionalBatchCommitter(SqlClientStore(), SqlContactStore(), session_factory)
    batch = ImportBatch(
        1,
        (
            _contact(1, phone="0102030405"),
            _contact(2, client="C2"),
            _contact(3, client="C3", phone="0102030405"),
            _contact(4),
        ),
    )

    outcome = committer.commit(batch)

    assert outcome.successful == 3
    assert outcome.duplicate_phone == 1
    assert outcome.total == len(batch)
    # C3 only appeared on the rejected record, whose transaction rolled back
    assert _counts(session_factory) == (2, 3)


def test_fallback_reports_other_errors_with_messages(session_factory):
    class FlakyContactStore(SqlContactStore):
        def bulk_insert(self, session, contacts):
            if any(contact["nom"] == "Nom2" for contact in contacts):
                raise OperationalError("INSERT INTO contacts", {}, Exception("disk I/O error"))
            super().bulk_insert(session, contacts)

    contact_store = FlakyContactStore()
    fallback = PerRecordFallback(SqlClientStore(), contact_store, session_factory)
    batch = ImportBatch(7, (_contact(1), _contact(2), _contact(3)))

    outcome = fallback.replay(batch)

    assert outcome.successful == 2
    assert outcome.other_errors == 1
    assert outcome.error_messages == ["disk I/O error"]
    assert outcome.total == len(batch)


def test_fallback_strategy_is_swappable(session_factory, unique_phone_index):
    replayed = []

    class RecordingFallback(FallbackStrategy):
        def replay(self, batch):
            replayed.append(batch.sequence)
            return CommitOutcome.all_failed(len(batch), "skipped")

    committer = TransactionalBatchCommitter(
        SqlClientStore(), SqlContactStore(), session_factory, fallback=RecordingFallback()
    )
    batch = ImportBatch(3, (_contact(1, phone="0611111111"), _contact(2, phone="0611111111")))

    outcome = committer.commit(batch)

    assert replayed == [3]
    assert outcome.other_errors == 2
    assert _counts(session_factory) == (0, 0)
