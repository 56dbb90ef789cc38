import io

import pytest

from contact_ingest.core.errors import InvalidFormatError
from contact_ingest.domain.imports.sources import (
    SourceFormat,
    detect_source_format,
    iter_delimited_rows,
    iter_spreadsheet_rows,
    open_row_source,
    sniff_delimiter,
    unique_headers,
)


@pytest.mark.parametrize(
    "file_name, content_type, expected",
    [
        ("contacts.csv", None, SourceFormat.DELIMITED),
        ("CONTACTS.CSV", "application/octet-stream", SourceFormat.DELIMITED),
        # Windows browsers send the Excel media type for CSV files
        ("contacts.csv", "application/vnd.ms-excel", SourceFormat.DELIMITED),
        ("contacts.xlsx", None, SourceFormat.SPREADSHEET),
        (
            "upload",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            SourceFormat.SPREADSHEET,
        ),
        ("upload", "text/csv", SourceFormat.DELIMITED),
    ],
)
def test_detect_source_format(file_name, content_type, expected):
    assert detect_source_format(file_name, content_type) is expected


@pytest.mark.parametrize(
    "file_name, content_type",
    [("notes.txt", "text/plain"), (None, None), ("data.json", None), ("legacy.xls", None)],
)
def test_detect_source_format_rejects_unknown_files(file_name, content_type):
    with pytest.raises(InvalidFormatError) as exc_info:
        detect_source_format(file_name, content_type)
    assert exc_info.value.error_kind == "InvalidFormat"
    assert exc_info.value.status_code == 400


def test_sniff_delimiter():
    assert sniff_delimiter(b"a;b;c\n1;2;3\n") == ";"
    assert sniff_delimiter(b"a\tb\tc\n1\t2\t3\n") == "\t"
    assert sniff_delimiter(b"a,b,c\n1,2,3\n") == ","
    assert sniff_delimiter(b"") == ","


def test_delimited_rows_keep_values_as_text(make_csv):
    stream = make_csv("ClientID,Phone,Zip\n00042,0102030405,01000\n7,+33 1 02 03 04 05,\n")

    rows = list(iter_delimited_rows(stream))

    assert rows == [
        {"ClientID": "00042", "Phone": "0102030405", "Zip": "01000"},
        {"ClientID": "7", "Phone": "+33 1 02 03 04 05", "Zip": ""},
    ]


def test_delimited_rows_trim_headers_values_and_skip_blank_lines(make_csv):
    stream = make_csv("\ufeff ClientID , Nom \n C1 , Dupont \n\n C2 ,Martin\n")

    rows = list(iter_delimited_rows(stream))

    assert rows == [
        {"ClientID": "C1", "Nom": "Dupont"},
        {"ClientID": "C2", "Nom": "Martin"},
    ]


def test_delimited_rows_stream_across_chunks(make_csv):
    lines = ["ClientID,Phone"] + [f"C{i},06{i:08d}" for i in range(25)]
    stream = make_csv("\n".join(lines) + "\n")

    rows = iter_delimited_rows(stream, chunk_rows=4)
    first = next(rows)
    remaining = list(rows)

    assert first == {"ClientID": "C0", "Phone": "0600000000"}
    assert len(remaining) == 24
    assert remaining[-1]["ClientID"] == "C24"


def test_header_only_and_empty_files_yield_no_rows(make_csv):
    assert list(iter_delimited_rows(make_csv("ClientID,Phone\n"))) == []
    assert list(iter_delimited_rows(io.BytesIO(b""))) == []


def test_malformed_delimited_file_is_invalid_format(make_csv):
    stream = make_csv('ClientID,Phone\nC1,"0102\nC2,0304\n')

    with pytest.raises(InvalidFormatError) as exc_info:
        list(iter_delimited_rows(stream))
    assert exc_info.value.message.startswith("Error processing file:")


def test_spreadsheet_rows_use_first_row_as_headers(make_xlsx):
    stream = make_xlsx([["ClientID", "Phone", "Email"], ["C1", "0102030405", None], ["C2", None, "a@b.fr"]])

    rows = list(iter_spreadsheet_rows(stream))

    assert rows == [
        {"ClientID": "C1", "Phone": "0102030405", "Email": ""},
        {"ClientID": "C2", "Phone": "", "Email": "a@b.fr"},
    ]


def test_unique_headers_name_blank_and_repeated_cells():
    assert unique_headers(["Phone", " ", "Phone", None, "Phone"]) == [
        "Phone",
        "Unnamed: 1",
        "Phone.1",
        "Unnamed: 3",
        "Phone.2",
    ]


def test_spreadsheet_and_csv_keep_repeated_columns_alike(make_csv, make_xlsx):
    spreadsheet = make_xlsx([["ClientID", "Phone", "Phone"], ["C1", "0102030405", "0600000000"]])
    delimited = make_csv("ClientID,Phone,Phone\nC1,0102030405,0600000000\n")

    spreadsheet_rows = list(iter_spreadsheet_rows(spreadsheet))

    assert spreadsheet_rows == [{"ClientID": "C1", "Phone": "0102030405", "Phone.1": "0600000000"}]
    assert spreadsheet_rows == list(iter_delimited_rows(delimited))


@pytest.mark.parametrize("rows", [[], [["ClientID", "Phone"]]])
def test_spreadsheet_without_data_row_is_invalid_format(make_xlsx, rows):
    with pytest.raises(InvalidFormatError) as exc_info:
        iter_spreadsheet_rows(make_xlsx(rows))
    assert exc_info.value.message == "File must contain at least a header row and one data row"


def test_unreadable_workbook_is_invalid_format():
    with pytest.raises(InvalidFormatError) as exc_info:
        iter_spreadsheet_rows(io.BytesIO(b"definitely not a workbook"))
    assert "Could not read Excel file" in exc_info.value.message


def test_open_row_source_dispatches_on_format(make_csv, make_xlsx):
    delimited = open_row_source(make_csv("ClientID\nC1\n"), SourceFormat.DELIMITED)
    spreadsheet = open_row_source(make_xlsx([["ClientID"], ["C9"]]), SourceFormat.SPREADSHEET)

    assert delimited.format is SourceFormat.DELIMITED
    assert list(delimited) == [{"ClientID": "C1"}]
    assert list(spreadsheet) == [{"ClientID": "C9"}]
