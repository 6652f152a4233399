import pytest

from smb_backoffice.db import DatabaseConfig, SQLiteStore
from smb_backoffice.errors import InputEmptyError
from smb_backoffice.statements import (
    DEFAULT_DESCRIPTION,
    import_bank_statement,
    parse_ofx,
    parse_statement_csv,
    statement_transaction,
)

OFX_STATEMENT = """OFXHEADER:100
DATA:OFXSGML

<OFX>
<BANKMSGSRSV1><STMTTRNRS><STMTRS><BANKTRANLIST>
<STMTTRN>
<TRNTYPE>CREDIT</TRNTYPE>
<DTPOSTED>20240105120000[-3:BRT]</DTPOSTED>
<TRNAMT>1500.00</TRNAMT>
<FITID>A-1</FITID>
<MEMO>Client payment</MEMO>
</STMTTRN>
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20240107
<TRNAMT>-89.90
<FITID>A-2
</STMTTRN>
<STMTTRN>
<TRNTYPE>DEBIT</TRNTYPE>
<MEMO>No date, no amount</MEMO>
</STMTTRN>
</BANKTRANLIST></STMTRS></STMTTRNRS></BANKMSGSRSV1>
</OFX>
"""

CSV_STATEMENT = (
    "data,valor,identificador,descricao\n"
    "05/01/2024,1500.00,A-1,Client payment\n"
    "\n"
    "7/1/2024,-89.90,A-2\n"
    "broken line\n"
)


def make_tmp_store(tmp_path) -> SQLiteStore:
    """Helper to build a SQLiteStore backed by a temporary SQLite file."""
    cfg = DatabaseConfig(engine="sqlite", path=tmp_path / "test_statements.sqlite")
    return SQLiteStore(cfg)


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def test_parse_ofx_reads_closed_and_unclosed_tags():
    rows = list(parse_ofx(OFX_STATEMENT))

    assert [r.position for r in rows] == [1, 2]
    assert rows[0].values == {
        "date": "2024-01-05",
        "value": "1500.00",
        "identifier": "A-1",
        "description": "Client payment",
    }
    assert rows[1].values["date"] == "2024-01-07"
    assert rows[1].values["value"] == "-89.90"
    assert rows[1].values["identifier"] == "A-2"
    assert rows[1].values["description"] is None


def test_parse_ofx_without_transactions_yields_nothing():
    assert list(parse_ofx("<OFX></OFX>")) == []


def test_parse_statement_csv_skips_header_blank_and_short_lines():
    rows = list(parse_statement_csv(CSV_STATEMENT))

    assert [r.position for r in rows] == [2, 4]
    assert rows[0].values["date"] == "2024-01-05"
    assert rows[1].values == {
        "date": "2024-01-07",
        "value": "-89.90",
        "identifier": "A-2",
        "description": None,
    }


def test_parse_statement_csv_other_delimiter():
    text = "data;valor;id;descricao\n31/01/2024;-1.234,56;X9;Rent\n"

    rows = list(parse_statement_csv(text, delimiter=";"))

    assert rows[0].values["value"] == "-1.234,56"
    assert rows[0].values["date"] == "2024-01-31"


# ---------------------------------------------------------------------------
# Statement line -> transaction
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, expected_type, expected_amount",
    [
        ("1500.00", "income", 1500.0),
        ("0", "income", 0.0),
        ("-89.90", "expense", 89.9),
        ("-1.234,56", "expense", 1234.56),
    ],
)
def test_statement_transaction_sign_gives_type(value, expected_type, expected_amount):
    record = statement_transaction(
        {"date": "2024-01-05", "value": value, "identifier": "A-1"}, 3
    )

    assert record["type"] == expected_type
    assert record["amount"] == expected_amount
    assert record["paid_amount"] == expected_amount


def test_statement_transaction_fields():
    record = statement_transaction(
        {"date": "2024-01-05", "value": "-10", "identifier": "A-1", "description": ""},
        3,
    )

    assert record == {
        "description": DEFAULT_DESCRIPTION,
        "status": "confirmed",
        "bank_account_id": 3,
        "amount": 10.0,
        "paid_amount": 10.0,
        "type": "expense",
        "due_date": "2024-01-05",
        "paid_date": "2024-01-05",
        "notes": "ID: A-1",
    }


def test_statement_transaction_without_identifier_or_readable_amount():
    record = statement_transaction({"date": None, "value": "n/a", "identifier": ""}, 3)

    assert "notes" not in record
    assert "amount" not in record
    assert "due_date" not in record


# ---------------------------------------------------------------------------
# End-to-end against SQLite
# ---------------------------------------------------------------------------


def test_import_ofx_statement_creates_confirmed_transactions(tmp_path):
    store = make_tmp_store(tmp_path)
    account = store.insert("bank_accounts", {"name": "Main"}, "t1")

    result = import_bank_statement(store, OFX_STATEMENT, "t1", account)

    assert result.success_count == 2
    assert result.position_label == "Record"
    rows = store.select_all("transactions", "t1")
    assert [(r["type"], r["amount"], r["status"]) for r in rows] == [
        ("income", 1500.0, "confirmed"),
        ("expense", 89.9, "confirmed"),
    ]
    assert rows[1]["description"] == DEFAULT_DESCRIPTION
    assert rows[1]["paid_date"] == "2024-01-07"
    assert {r["bank_account_id"] for r in rows} == {account}


def test_reimporting_a_statement_skips_known_identifiers(tmp_path):
    store = make_tmp_store(tmp_path)
    account = store.insert("bank_accounts", {"name": "Main"}, "t1")
    import_bank_statement(store, CSV_STATEMENT, "t1", account, fmt="csv")

    again = import_bank_statement(store, CSV_STATEMENT, "t1", account, fmt="csv")

    assert again.success_count == 0
    assert again.skipped_count == 2
    assert [f.position for f in again.failures] == [2, 4]
    assert again.failures[0].reason == (
        "duplicate skipped: notes 'ID: A-1' already exists"
    )
    assert len(store.select_all("transactions", "t1")) == 2


def test_same_identifier_on_another_account_is_imported(tmp_path):
    store = make_tmp_store(tmp_path)
    main = store.insert("bank_accounts", {"name": "Main"}, "t1")
    savings = store.insert("bank_accounts", {"name": "Savings"}, "t1")
    import_bank_statement(store, OFX_STATEMENT, "t1", main)

    result = import_bank_statement(store, OFX_STATEMENT, "t1", savings)

    assert result.success_count == 2
    assert len(store.select_all("transactions", "t1")) == 4


def test_lines_without_identifier_are_always_imported(tmp_path):
    store = make_tmp_store(tmp_path)
    account = store.insert("bank_accounts", {"name": "Main"}, "t1")
    text = "data,valor,id\n05/01/2024,-10,\n"

    import_bank_statement(store, text, "t1", account, fmt="csv")
    result = import_bank_statement(store, text, "t1", account, fmt="csv")

    assert result.success_count == 1
    assert len(store.select_all("transactions", "t1")) == 2


def test_unreadable_line_is_rejected_with_its_position(tmp_path):
    store = make_tmp_store(tmp_path)
    account = store.insert("bank_accounts", {"name": "Main"}, "t1")
    text = "data,valor,id\n2024/31/01,-10,A-1\n05/01/2024,abc,A-2\n"

    result = import_bank_statement(store, text, "t1", account, fmt="csv")

    assert result.success_count == 0
    assert [(f.position, f.kind) for f in result.failures] == [
        (2, "validation_failed"),
        (3, "validation_failed"),
    ]
    assert "due_date" in result.failures[0].reason
    assert "amount" in result.failures[1].reason


def test_bank_account_must_belong_to_the_tenant(tmp_path):
    store = make_tmp_store(tmp_path)
    account = store.insert("bank_accounts", {"name": "Main"}, "t2")

    with pytest.raises(ValueError, match=f"Bank account {account} not found"):
        import_bank_statement(store, OFX_STATEMENT, "t1", account)
    assert store.select_all("transactions", "t1") == []


def test_empty_statement_and_unknown_format(tmp_path):
    store = make_tmp_store(tmp_path)
    account = store.insert("bank_accounts", {"name": "Main"}, "t1")

    with pytest.raises(InputEmptyError):
        import_bank_statement(store, "<OFX></OFX>", "t1", account)
    with pytest.raises(InputEmptyError):
        import_bank_statement(store, "data,valor,id\n", "t1", account, fmt="csv")
    with pytest.raises(ValueError, match="Unknown statement format"):
        import_bank_statement(store, "", "t1", account, fmt="qif")
