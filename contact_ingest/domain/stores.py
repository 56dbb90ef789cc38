"""
Client and contact persistence used by the import pipeline.

The pipeline only needs two narrow operations: upsert clients by their
business number and bulk insert contacts. Both take the caller's session so
that the batch committer decides where a transaction starts and ends.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Set

from sqlalchemy import insert, select
from sqlalchemy.orm import Session

from contact_ingest.db.models import Client, Contact

logger = logging.getLogger(__name__)

CONTACT_INSERT_CHUNK_SIZE = 100

SessionFactory = Callable[[], Session]


@dataclass(frozen=True)
class ClientUpsert:
    number: str
    profile: Optional[str] = None
    status: Optional[str] = None
    company_name: Optional[str] = None

    def merged_with(self, later: "ClientUpsert") -> "ClientUpsert":
        """Combine two upserts of the same client; later non-empty values win."""
        return ClientUpsert(
            number=self.number,
            profile=later.profile or self.profile,
            status=later.status or self.status,
            company_name=later.company_name or self.company_name,
        )


@contextmanager
def transaction_scope(session_factory: SessionFactory) -> Iterator[Session]:
    """Open a session, commit on success, roll back on any error."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _apply_non_empty(client: Client, upsert: ClientUpsert) -> bool:
    """Copy non-empty incoming values onto a stored client. Returns True on change."""
    changed = False
    for attribute, value in (
        ("profile", upsert.profile),
        ("status", upsert.status),
        ("raison_sociale", upsert.company_name),
    ):
        if value and getattr(client, attribute) != value:
            setattr(client, attribute, value)
            changed = True
    return changed


def _new_client(upsert: ClientUpsert) -> Client:
    return Client(
        num_client=upsert.number,
        profile=upsert.profile or None,
        status=upsert.status or "active",
        raison_sociale=upsert.company_name or None,
    )


class ClientStore(ABC):
    @abstractmethod
    def upsert_by_number(
        self,
        session: Session,
        number: str,
        profile: Optional[str] = None,
        status: Optional[str] = None,
        company_name: Optional[str] = None,
    ) -> Client:
        """Create the client if absent, else update only non-empty fields."""

    @abstractmethod
    def upsert_many(self, session: Session, clients: Sequence[ClientUpsert]) -> int:
        """Batch form of ``upsert_by_number``; returns the number of distinct clients."""


class ContactStore(ABC):
    @abstractmethod
    def bulk_insert(self, session: Session, contacts: Sequence[Mapping[str, object]]) -> None:
        """Insert contact rows."""

    @abstractmethod
    def existing_phone_numbers(self, session: Session) -> Set[str]:
        """Phone numbers already stored (used by the duplicate-phone check)."""


class SqlClientStore(ClientStore):
    """Client upserts against the ``clients`` table."""

    def upsert_by_number(self, session, number, profile=None, status=None, company_name=None):
        upsert = ClientUpsert(number, profile, status, company_name)
        client = session.query(Client).filter(Client.num_client == number).one_or_none()
        if client is None:
            client = _new_client(upsert)
            session.add(client)
        else:
            _apply_non_empty(client, upsert)
        # Surface constraint errors inside the caller's transaction
        session.flush()
        return client

    def upsert_many(self, session, clients):
        merged: Dict[str, ClientUpsert] = {}
        for upsert in clients:
            previous = merged.get(upsert.number)
            merged[upsert.number] = previous.merged_with(upsert) if previous else upsert
        if not merged:
            return 0

        existing = {
            client.num_client: client
            for client in session.query(Client).filter(Client.num_client.in_(list(merged)))
        }

        to_insert: List[Client] = []
        updated = 0
        for number, upsert in merged.items():
            client = existing.get(number)
            if client is None:
                to_insert.append(_new_client(upsert))
            elif _apply_non_empty(client, upsert):
                updated += 1

        if to_insert:
            session.add_all(to_insert)
        session.flush()
        logger.debug(
            "Upserted %d clients (%d new, %d updated)", len(merged), len(to_insert), updated
        )
        return len(merged)


class SqlContactStore(ContactStore):
    """Contact inserts against the ``contacts`` table."""

    def __init__(self, chunk_size: int = CONTACT_INSERT_CHUNK_SIZE):
        self.chunk_size = max(1, chunk_size)

    def bulk_insert(self, session, contacts):
        rows = [dict(contact) for contact in contacts]
        for start in range(0, len(rows), self.chunk_size):
            session.execute(insert(Contact), rows[start:start + self.chunk_size])

    def existing_phone_numbers(self, session):
        result = session.execute(
            select(Contact.num_tel).where(Contact.num_tel.is_not(None)).distinct()
        )
        return {phone for phone in result.scalars() if phone}
