from contact_ingest.db.models import Client, Contact
from contact_ingest.domain.stores import (
    ClientUpsert,
    SqlClientStore,
    SqlContactStore,
    transaction_scope,
)


def _clients(session_factory):
    with transaction_scope(session_factory) as session:
        return {
            client.num_client: (client.profile, client.status, client.raison_sociale)
            for client in session.query(Client).all()
        }


def test_upsert_by_number_creates_then_updates(session_factory):
    store = SqlClientStore()

    with transaction_scope(session_factory) as session:
        store.upsert_by_number(session, "C1", profile="imported", company_name="ACME")
    with transaction_scope(session_factory) as session:
        store.upsert_by_number(session, "C1", status="inactive")

    assert _clients(session_factory) == {"C1": ("imported", "inactive", "ACME")}


def test_new_client_status_defaults_to_active(session_factory):
    with transaction_scope(session_factory) as session:
        SqlClientStore().upsert_by_number(session, "C9")

    assert _clients(session_factory)["C9"][1] == "active"


def test_empty_values_never_overwrite_stored_values(session_factory):
    store = SqlClientStore()

    with transaction_scope(session_factory) as session:
        store.upsert_by_number(session, "C1", profile="vip", status="active", company_name="ACME")
    with transaction_scope(session_factory) as session:
        store.upsert_by_number(session, "C1", profile="", status=None, company_name="")

    assert _clients(session_factory) == {"C1": ("vip", "active", "ACME")}


def test_upsert_many_is_idempotent_and_merges_within_the_batch(session_factory):
    store = SqlClientStore()
    batch = [
        ClientUpsert("C1", profile="imported", company_name="ACME"),
        ClientUpsert("C2", profile="imported"),
        ClientUpsert("C1", profile="", status="prospect", company_name=None),
    ]

    with transaction_scope(session_factory) as session:
        assert store.upsert_many(session, batch) == 2
    with transaction_scope(session_factory) as session:
        assert store.upsert_many(session, batch) == 2

    assert _clients(session_factory) == {
        "C1": ("imported", "prospect", "ACME"),
        "C2": ("imported", "active", None),
    }


def test_failed_transaction_leaves_nothing_behind(session_factory):
    store = SqlClientStore()

    try:
        with transaction_scope(session_factory) as session:
            store.upsert_by_number(session, "C1", profile="imported")
            raise RuntimeError("abort")
    except RuntimeError:
        pass

    assert _clients(session_factory) == {}


def test_bulk_insert_in_chunks_and_existing_phone_numbers(session_factory):
    store = SqlContactStore(chunk_size=2)
    rows = [
        {"num_client": "C1", "nom": f"N{i}", "prenom": "", "raison_sociale": None,
         "fonction": "", "email": "", "num_tel": f"060000000{i}" if i % 2 else None}
        for i in range(5)
    ]

    with transaction_scope(session_factory) as session:
        store.bulk_insert(session, rows)

    with transaction_scope(session_factory) as session:
        assert session.query(Contact).count() == 5
        assert store.existing_phone_numbers(session) == {"0600000001", "0600000003"}
