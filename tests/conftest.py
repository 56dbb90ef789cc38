"""
Pytest configuration and fixtures for the contact import tests.

Provides a throwaway SQLite database per test plus thread-safe in-memory
stores for tests that only care about pipeline bookkeeping.
"""

import os

# The API tests never touch the configured database at startup.
os.environ.setdefault("SKIP_DB_INIT", "1")

import io
import threading

import pandas as pd
import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from contact_ingest.db.models import create_contact_tables
from contact_ingest.domain.stores import ClientStore, ClientUpsert, ContactStore


@pytest.fixture
def sqlite_engine(tmp_path):
    """
    File-backed SQLite engine with the clients/contacts tables created.

    Every transaction opens with BEGIN IMMEDIATE so batch commits running
    on worker threads queue on the write lock instead of failing.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'contacts.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    create_contact_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=sqlite_engine)


@pytest.fixture
def unique_phone_index(sqlite_engine):
    """Add a unique index on contacts.num_tel so duplicate phones hit the database."""
    with sqlite_engine.begin() as conn:
        conn.execute(text("CREATE UNIQUE INDEX uq_contacts_num_tel ON contacts (num_tel)"))
    return sqlite_engine


class FakeSession:
    """Stand-in for a SQLAlchemy session; the fake stores ignore it."""

    def commit(self):
        pass

    def rollback(self):
        pass

    def close(self):
        pass


class FakeClientStore(ClientStore):
    def __init__(self):
        self.clients = {}
        self._lock = threading.Lock()

    def upsert_by_number(self, session, number, profile=None, status=None, company_name=None):
        return self.upsert_many(session, [ClientUpsert(number, profile, status, company_name)])

    def upsert_many(self, session, clients):
        with self._lock:
            for upsert in clients:
                stored = self.clients.get(upsert.number)
                self.clients[upsert.number] = stored.merged_with(upsert) if stored else upsert
        return len({upsert.number for upsert in clients})


class FakeContactStore(ContactStore):
    """
    Records inserted contact rows.

    Rows whose phone is in ``rejected_phones`` make the whole insert fail
    with a unique-violation IntegrityError before anything is stored.
    """

    def __init__(self, rejected_phones=()):
        self.rows = []
        self.rejected_phones = set(rejected_phones)
        self.insert_calls = 0
        self._lock = threading.Lock()

    def bulk_insert(self, session, contacts):
        contacts = [dict(contact) for contact in contacts]
        with self._lock:
            self.insert_calls += 1
            for contact in contacts:
                if contact.get("num_tel") in self.rejected_phones:
                    raise IntegrityError(
                        "INSERT INTO contacts",
                        {},
                        Exception("UNIQUE constraint failed: contacts.num_tel"),
                    )
            self.rows.extend(contacts)

    def existing_phone_numbers(self, session):
        with self._lock:
            return {row["num_tel"] for row in self.rows if row.get("num_tel")}


@pytest.fixture
def fake_client_store():
    return FakeClientStore()


@pytest.fixture
def fake_contact_store():
    return FakeContactStore()


@pytest.fixture
def fake_session_factory():
    return FakeSession


def csv_upload(text_content: str) -> io.BytesIO:
    return io.BytesIO(text_content.encode("utf-8"))


def xlsx_upload(rows) -> io.BytesIO:
    """Build an in-memory workbook whose first sheet holds ``rows`` verbatim."""
    buffer = io.BytesIO()
    pd.DataFrame(rows).to_excel(buffer, index=False, header=False, engine="openpyxl")
    buffer.seek(0)
    return buffer


@pytest.fixture
def make_csv():
    return csv_upload


@pytest.fixture
def make_xlsx():
    return xlsx_upload
