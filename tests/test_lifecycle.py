import json
from datetime import date

import pytest

from smb_backoffice.db import DatabaseConfig, SQLiteStore
from smb_backoffice.errors import InputEmptyError, InputMalformedError, StoreError
from smb_backoffice.importer import ImportOrchestrator
from smb_backoffice.lifecycle import (
    backup_filename,
    delete_all,
    delete_by_type,
    deletion_order,
    dumps_backup,
    export_all,
    insertion_order,
    loads_backup,
    restore_backup,
)
from smb_backoffice.templates import TEMPLATES, EntityTemplate


def make_tmp_store(tmp_path, name="test_lifecycle.sqlite") -> SQLiteStore:
    """Helper to build a SQLiteStore backed by a temporary SQLite file."""
    return SQLiteStore(DatabaseConfig(engine="sqlite", path=tmp_path / name))


def seed_ledger(store: SQLiteStore, tenant_id: str = "t1") -> dict:
    """Insert one bank account, one category and one transaction using both."""
    bank_id = store.insert(
        "bank_accounts", {"name": "Main", "initial_balance": 100.0}, tenant_id
    )
    category_id = store.insert(
        "categories", {"name": "Rent", "type": "expense"}, tenant_id
    )
    tx_id = store.insert(
        "transactions",
        {
            "description": "Rent January",
            "amount": 500.0,
            "due_date": "2024-01-31",
            "type": "expense",
            "status": "pending",
            "bank_account_id": bank_id,
            "category_id": category_id,
        },
        tenant_id,
    )
    return {"bank": bank_id, "category": category_id, "transaction": tx_id}


class FailingDeleteStore:
    """Store double whose deletion fails for some entity types."""

    def __init__(self, failing):
        self.failing = set(failing)
        self.deleted = []

    def delete_where(self, entity_key, tenant_id, record_id=None):
        if entity_key in self.failing:
            raise StoreError(f"cannot delete {entity_key}")
        self.deleted.append(entity_key)
        return 1


# ---------------------------------------------------------------------------
# Dependency order
# ---------------------------------------------------------------------------


def test_deletion_order_puts_dependents_first():
    assert deletion_order() == [
        "transactions",
        "employees",
        "services",
        "products",
        "suppliers",
        "clients",
        "payment_methods",
        "categories",
        "bank_accounts",
    ]


def test_insertion_order_puts_referenced_types_first():
    order = insertion_order()

    for target in TEMPLATES["transactions"].references.values():
        assert order.index(target) < order.index("transactions")


def test_insertion_order_follows_references_not_registry_position():
    templates = {
        "lines": EntityTemplate(
            entity_key="lines",
            display_name="Lines",
            fields=("order_id",),
            required_fields=frozenset(),
            references={"order_id": "orders"},
        ),
        "orders": EntityTemplate(
            entity_key="orders",
            display_name="Orders",
            fields=("name",),
            required_fields=frozenset(),
        ),
    }

    assert insertion_order(templates) == ["orders", "lines"]
    assert deletion_order(templates) == ["lines", "orders"]


def test_insertion_order_detects_cycles():
    templates = {
        "a": EntityTemplate(
            entity_key="a",
            display_name="A",
            fields=("b_id",),
            required_fields=frozenset(),
            references={"b_id": "b"},
        ),
        "b": EntityTemplate(
            entity_key="b",
            display_name="B",
            fields=("a_id",),
            required_fields=frozenset(),
            references={"a_id": "a"},
        ),
    }

    with pytest.raises(ValueError, match="cycle"):
        insertion_order(templates)


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


def test_delete_all_succeeds_with_references(tmp_path):
    """Dependents are deleted first, so foreign keys never block."""
    store = make_tmp_store(tmp_path)
    seed_ledger(store)
    store.insert("clients", {"name": "Ana"}, "t2")

    report = delete_all(store, "t1")

    assert report.ok
    assert report.deleted["transactions"] == 1
    assert report.deleted["bank_accounts"] == 1
    assert report.total == 3
    assert store.select_all("transactions", "t1") == []
    # Other tenants are untouched.
    assert len(store.select_all("clients", "t2")) == 1


def test_cross_tenant_reference_is_rejected_and_other_tenant_stays_deletable(
    tmp_path,
):
    """A t1 import cannot hang transactions on a client owned by t2."""
    store = make_tmp_store(tmp_path)
    zed = store.insert("clients", {"name": "Zed"}, "t2")
    orchestrator = ImportOrchestrator(store)

    text = f"description,amount,due_date,client_id\nFee,10,2024-01-01,{zed}\n"
    result = orchestrator.import_delimited("transactions", text, "t1")

    assert result.success_count == 0
    assert result.failures[0].kind == "persistence_failed"
    assert "FOREIGN KEY constraint failed" in result.failures[0].reason

    report = delete_all(store, "t2")
    assert report.ok
    assert report.deleted["clients"] == 1


def test_delete_referenced_type_alone_fails(tmp_path):
    store = make_tmp_store(tmp_path)
    seed_ledger(store)

    with pytest.raises(StoreError, match="FOREIGN KEY"):
        delete_by_type(store, "bank_accounts", "t1")

    report = delete_all(store, "t1", entity_keys=["bank_accounts"])
    assert not report.ok
    assert "FOREIGN KEY" in report.errors["bank_accounts"]
    assert len(store.select_all("bank_accounts", "t1")) == 1


def test_delete_by_type_single_record(tmp_path):
    store = make_tmp_store(tmp_path)
    first = store.insert("categories", {"name": "Rent", "type": "expense"}, "t1")
    store.insert("categories", {"name": "Food", "type": "expense"}, "t1")

    assert delete_by_type(store, "categories", "t1", record_id=first) == 1
    assert [r["name"] for r in store.select_all("categories", "t1")] == ["Food"]


def test_delete_all_continues_after_a_failure():
    store = FailingDeleteStore(failing={"clients"})

    report = delete_all(store, "t1")

    assert report.errors == {"clients": "cannot delete clients"}
    assert "clients" not in report.deleted
    # Types after the failing one are still processed.
    assert store.deleted[-3:] == ["payment_methods", "categories", "bank_accounts"]
    assert report.total == len(TEMPLATES) - 1


# ---------------------------------------------------------------------------
# Export / restore
# ---------------------------------------------------------------------------


def test_export_all_contains_every_entity_type(tmp_path):
    store = make_tmp_store(tmp_path)
    ids = seed_ledger(store)

    document = export_all(store, "t1")

    assert list(document) == list(TEMPLATES)
    assert document["clients"] == []
    (tx,) = document["transactions"]
    assert tx["id"] == ids["transaction"]
    assert tx["bank_account_id"] == ids["bank"]


def test_restore_remaps_references_to_new_ids(tmp_path):
    source = make_tmp_store(tmp_path, "source.sqlite")
    seed_ledger(source)
    backup = dumps_backup(export_all(source, "t1"))

    target = make_tmp_store(tmp_path, "target.sqlite")
    target.insert("bank_accounts", {"name": "Other"}, "t9")

    results = restore_backup(ImportOrchestrator(target), backup, "t9")

    assert set(results) == {"bank_accounts", "categories", "transactions"}
    assert all(r.success_count == 1 for r in results.values())

    accounts = target.select_all("bank_accounts", "t9")
    (main,) = [r for r in accounts if r["name"] == "Main"]
    (category,) = target.select_all("categories", "t9")
    (tx,) = target.select_all("transactions", "t9")
    assert main["id"] != 1
    assert tx["bank_account_id"] == main["id"]
    assert tx["category_id"] == category["id"]
    assert tx["amount"] == 500.0
    assert tx["due_date"] == "2024-01-31"


def test_restore_into_same_tenant_skips_existing_records(tmp_path):
    store = make_tmp_store(tmp_path)
    seed_ledger(store)
    document = export_all(store, "t1")

    results = restore_backup(ImportOrchestrator(store), document, "t1")

    assert results["bank_accounts"].skipped_count == 1
    assert results["categories"].skipped_count == 1
    assert results["bank_accounts"].messages() == [
        "Record 1: duplicate skipped: name 'Main' already exists"
    ]


def test_restore_ignores_unknown_sections():
    class Store:
        def __init__(self):
            self.inserted = []

        def insert(self, entity_key, record, tenant_id):
            self.inserted.append((entity_key, record["name"]))
            return len(self.inserted)

        def exists_where(self, entity_key, field, value, tenant_id):
            return False

    store = Store()
    document = {"payment_methods": [{"id": 4, "name": "Pix"}], "invoices": [{"x": 1}]}

    results = restore_backup(ImportOrchestrator(store), document, "t1")

    assert list(results) == ["payment_methods"]
    assert store.inserted == [("payment_methods", "Pix")]


def test_restore_rejects_empty_and_malformed_documents():
    orchestrator = ImportOrchestrator(FailingDeleteStore(failing=()))

    with pytest.raises(InputEmptyError):
        restore_backup(orchestrator, {"clients": [], "invoices": [{"x": 1}]}, "t1")
    with pytest.raises(InputMalformedError):
        restore_backup(orchestrator, {"clients": "Ana"}, "t1")
    with pytest.raises(InputMalformedError):
        restore_backup(orchestrator, {"clients": ["Ana"]}, "t1")
    with pytest.raises(InputMalformedError):
        restore_backup(orchestrator, "[1, 2]", "t1")
    with pytest.raises(InputMalformedError):
        restore_backup(orchestrator, "{oops", "t1")


def test_dumps_and_loads_backup():
    document = {"clients": [{"name": "João", "created_at": date(2024, 1, 2)}]}
    text = dumps_backup(document)

    assert "João" in text
    assert json.loads(text)["clients"][0]["created_at"] == "2024-01-02"
    assert loads_backup(text.encode("utf-8"))["clients"][0]["name"] == "João"


def test_backup_filename():
    assert backup_filename(date(2024, 5, 1)) == "backup_2024-05-01.json"
    assert backup_filename().startswith("backup_")
