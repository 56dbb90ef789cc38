"""
Batch persistence with automatic fallback to per-record commits.

A batch is first written optimistically in one transaction (client upserts
followed by a bulk contact insert). If anything in that transaction fails,
it is rolled back in full and the batch is replayed by a ``FallbackStrategy``
that isolates the offending rows.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError

from contact_ingest.domain.stores import (
    ClientStore,
    ClientUpsert,
    ContactStore,
    SessionFactory,
    transaction_scope,
)
from .batching import ImportBatch
from .results import CommitOutcome
from .validators import CandidateContact

logger = logging.getLogger(__name__)

DUPLICATE_PHONE = "duplicate_phone"
DUPLICATE_EMAIL = "duplicate_email"
OTHER_ERROR = "other"

_PHONE_MARKERS = ("num_tel", "numtel", "phone")
_UNIQUE_MARKERS = ("unique", "duplicate")
ERROR_MESSAGE_MAX_LENGTH = 300


def error_message(exc: BaseException) -> str:
    """First line of the driver error (or the exception itself), trimmed."""
    source = getattr(exc, "orig", None) or exc
    text = str(source).strip() or type(exc).__name__
    first_line = text.splitlines()[0].strip()
    if len(first_line) > ERROR_MESSAGE_MAX_LENGTH:
        first_line = first_line[:ERROR_MESSAGE_MAX_LENGTH - 3] + "..."
    return first_line


def classify_commit_error(exc: BaseException) -> Tuple[str, str]:
    """
    Map a per-record commit failure to an outcome category.

    Unique violations naming the phone column count as duplicate phones, those
    naming the email column as duplicate emails; everything else is an
    "other" error reported with its message.
    """
    message = error_message(exc)
    if isinstance(exc, IntegrityError):
        lowered = message.lower()
        if any(marker in lowered for marker in _UNIQUE_MARKERS):
            if any(marker in lowered for marker in _PHONE_MARKERS):
                return DUPLICATE_PHONE, message
            if "email" in lowered:
                return DUPLICATE_EMAIL, message
    return OTHER_ERROR, message


def client_upsert_for(contact: CandidateContact) -> ClientUpsert:
    return ClientUpsert(
        number=contact.client_number,
        profile=contact.profile or None,
        status=contact.status or None,
        company_name=contact.company_name or None,
    )


class FallbackStrategy(ABC):
    """Replays a batch whose atomic commit failed."""

    @abstractmethod
    def replay(self, batch: ImportBatch) -> CommitOutcome:
        """Return an outcome whose total equals ``len(batch)``."""


class PerRecordFallback(FallbackStrategy):
    """Commits each record of a failed batch in its own transaction."""

    def __init__(
        self,
        client_store: ClientStore,
        contact_store: ContactStore,
        session_factory: SessionFactory,
    ):
        self.client_store = client_store
        self.contact_store = contact_store
        self.session_factory = session_factory

    def replay(self, batch: ImportBatch) -> CommitOutcome:
        outcome = CommitOutcome()
        for contact in batch.contacts:
            try:
                self.commit_record(contact)
            except Exception as exc:
                category, message = classify_commit_error(exc)
                logger.debug(
                    "Row %d (client %s) rejected: %s", contact.row_number, contact.client_number, message
                )
                if category == DUPLICATE_PHONE:
                    outcome.duplicate_phone += 1
                elif category == DUPLICATE_EMAIL:
                    outcome.duplicate_email += 1
                else:
                    outcome.other_errors += 1
                    if message not in outcome.error_messages:
                        outcome.error_messages.append(message)
            else:
                outcome.successful += 1
        return outcome

    def commit_record(self, contact: CandidateContact) -> None:
        upsert = client_upsert_for(contact)
        with transaction_scope(self.session_factory) as session:
            self.client_store.upsert_by_number(
                session,
                upsert.number,
                profile=upsert.profile,
                status=upsert.status,
                company_name=upsert.company_name,
            )
            self.contact_store.bulk_insert(session, [contact.to_contact_row()])


class TransactionalBatchCommitter:
    """All-or-nothing batch commit that degrades to ``fallback`` on failure."""

    def __init__(
        self,
        client_store: ClientStore,
        contact_store: ContactStore,
        session_factory: SessionFactory,
        fallback: Optional[FallbackStrategy] = None,
    ):
        self.client_store = client_store
        self.contact_store = contact_store
        self.session_factory = session_factory
        self.fallback = fallback or PerRecordFallback(client_store, contact_store, session_factory)

    def commit(self, batch: ImportBatch) -> CommitOutcome:
        if not len(batch):
            return CommitOutcome()

        started = time.time()
        try:
            with transaction_scope(self.session_factory) as session:
                self.client_store.upsert_many(
                    session, [client_upsert_for(contact) for contact in batch.contacts]
                )
                self.contact_store.bulk_insert(
                    session, [contact.to_contact_row() for contact in batch.contacts]
                )
        except Exception as exc:
            logger.warning(
                "Batch %d (%d records) failed, retrying records individually: %s",
                batch.sequence,
                len(batch),
                error_message(exc),
            )
            return self.fallback.replay(batch)

        logger.debug(
            "Batch %d inserted %d records for %d clients in %.2fs",
            batch.sequence,
            len(batch),
            len(batch.client_numbers),
            time.time() - started,
        )
        return CommitOutcome(successful=len(batch))
