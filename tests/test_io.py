import io
from datetime import datetime

import pandas as pd
import pytest

from smb_backoffice.db import DatabaseConfig, SQLiteStore
from smb_backoffice.importer import ImportOrchestrator
from smb_backoffice.io import (
    detect_format,
    read_source_file,
    spreadsheet_rows,
    spreadsheet_to_delimited,
)
from smb_backoffice.parsing import parse_delimited


def make_workbook(records) -> bytes:
    """Helper to build an .xlsx workbook in memory from a list of dicts."""
    buffer = io.BytesIO()
    pd.DataFrame(records).to_excel(buffer, index=False, engine="openpyxl")
    return buffer.getvalue()


@pytest.mark.parametrize(
    "name, expected",
    [
        ("clientes.csv", "csv"),
        ("export.TSV", "csv"),
        ("dump.txt", "csv"),
        ("backup.json", "json"),
        ("planilha.xlsx", "xlsx"),
        ("extrato.OFX", "ofx"),
    ],
)
def test_detect_format(name, expected):
    assert detect_format(name) == expected


def test_detect_format_unsupported_suffix():
    with pytest.raises(ValueError, match="Unsupported file type"):
        detect_format("report.pdf")


def test_read_source_file_drops_bom(tmp_path):
    path = tmp_path / "clients.csv"
    path.write_bytes("\ufeffname\nJoão\n".encode("utf-8"))

    assert read_source_file(path) == "name\nJoão\n"


def test_read_source_file_other_encoding(tmp_path):
    path = tmp_path / "clients.csv"
    path.write_bytes("name\nJoão\n".encode("latin-1"))

    assert read_source_file(path, encoding="latin-1") == "name\nJoão\n"


def test_spreadsheet_to_delimited_feeds_the_delimited_parser():
    df = pd.DataFrame(
        [
            {"Nome": "Caneta", "Preco": "2,50", "Codigo": "C1"},
            {"Nome": "Lapis", "Preco": "1,00", "Codigo": None},
        ]
    )
    buffer = io.BytesIO()
    df.to_excel(buffer, index=False, engine="openpyxl")

    text = spreadsheet_to_delimited(buffer.getvalue(), delimiter=";")
    rows = list(parse_delimited(text, ";"))

    assert text.splitlines()[0] == "Nome;Preco;Codigo"
    assert [r.position for r in rows] == [2, 3]
    assert rows[0].values == {"Nome": "Caneta", "Preco": "2,50", "Codigo": "C1"}
    assert rows[1].values["Codigo"] == ""


def test_spreadsheet_to_delimited_rejects_non_workbook():
    with pytest.raises(ValueError, match="spreadsheet"):
        spreadsheet_to_delimited(b"name,email\nAna,a@x.com\n")


def test_spreadsheet_date_cells_become_iso_dates():
    content = make_workbook(
        [{"description": "Rent", "amount": 10.5, "due_date": datetime(2024, 1, 31)}]
    )

    assert spreadsheet_to_delimited(content) == (
        "description,amount,due_date\nRent,10.5,2024-01-31\n"
    )


def test_workbook_with_date_cells_imports_transactions(tmp_path):
    content = make_workbook(
        [
            {"description": "Rent", "amount": 500, "due_date": datetime(2024, 1, 31)},
            {"description": "Water", "amount": 80.25, "due_date": datetime(2024, 2, 5)},
        ]
    )
    store = SQLiteStore(DatabaseConfig(engine="sqlite", path=tmp_path / "io.sqlite"))
    orchestrator = ImportOrchestrator(store)

    from_text = orchestrator.import_delimited(
        "transactions", spreadsheet_to_delimited(content), "t1"
    )
    from_rows = orchestrator.run("transactions", spreadsheet_rows(content), "t2")

    assert from_text.success_count == 2
    assert from_rows.success_count == 2
    for tenant in ("t1", "t2"):
        rows = store.select_all("transactions", tenant)
        assert [r["due_date"] for r in rows] == ["2024-01-31", "2024-02-05"]
        assert [r["amount"] for r in rows] == [500.0, 80.25]


def test_spreadsheet_rows_keep_cells_with_delimiters_and_quotes():
    content = make_workbook(
        [
            {"name": "Silva, Souza & Cia", "notes": 'said "hi"'},
            {"name": "Ana", "notes": None},
        ]
    )

    rows = spreadsheet_rows(content)

    assert [r.position for r in rows] == [2, 3]
    assert rows[0].values == {"name": "Silva, Souza & Cia", "notes": 'said "hi"'}
    assert rows[1].values == {"name": "Ana", "notes": ""}


def test_spreadsheet_to_delimited_refuses_cells_containing_the_delimiter():
    content = make_workbook(
        [{"name": "Ana", "city": "Rio"}, {"name": "Bia; Carla", "city": "SP"}]
    )

    with pytest.raises(ValueError, match=r"Row 3, column 'name'"):
        spreadsheet_to_delimited(content, delimiter=";")
    # The same sheet is fine with a delimiter that no cell contains.
    assert spreadsheet_to_delimited(content, delimiter=",").splitlines()[2] == (
        "Bia; Carla,SP"
    )
