"""
Tabular source adapters for contact imports.

Turns an uploaded file into a uniform iterator of raw rows
(``{column name: cell text}``). Delimited text is streamed chunk by chunk
with pandas so large CSVs are never fully materialized; spreadsheets are
decoded in one pass (the format requires it) and only their first sheet is
used. Every cell is kept as text so leading zeros survive.
"""
import csv
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, BinaryIO, Dict, Iterator, List, Optional

import pandas as pd
from pandas.errors import EmptyDataError, ParserError

from contact_ingest.core.errors import InvalidFormatError

logger = logging.getLogger(__name__)

RawRow = Dict[str, str]

CSV_EXTENSIONS = (".csv",)
SPREADSHEET_EXTENSIONS = (".xlsx", ".xlsm")
CANDIDATE_DELIMITERS = ",;\t|"
DEFAULT_DELIMITER = ","
DEFAULT_CSV_CHUNK_ROWS = 5000
DEFAULT_SNIFF_BYTES = 64 * 1024


class SourceFormat(str, Enum):
    DELIMITED = "csv"
    SPREADSHEET = "spreadsheet"


@dataclass
class RowSource:
    """A detected format plus its lazy, single-use row iterator."""
    format: SourceFormat
    rows: Iterator[RawRow]

    def __iter__(self) -> Iterator[RawRow]:
        return self.rows


def detect_source_format(file_name: Optional[str], content_type: Optional[str] = None) -> SourceFormat:
    """
    Detect the file format from its name, falling back to the media type.

    Raises:
        InvalidFormatError: if neither identifies CSV or a spreadsheet
    """
    name = (file_name or "").strip().lower()
    if name.endswith(CSV_EXTENSIONS):
        return SourceFormat.DELIMITED
    if name.endswith(SPREADSHEET_EXTENSIONS):
        return SourceFormat.SPREADSHEET

    media_type = (content_type or "").lower()
    if "csv" in media_type:
        return SourceFormat.DELIMITED
    if "spreadsheet" in media_type or "excel" in media_type:
        return SourceFormat.SPREADSHEET

    raise InvalidFormatError()


def _cell_text(value: Any) -> str:
    """Convert a parsed cell to trimmed text; missing cells become ''."""
    if value is None:
        return ""
    if not isinstance(value, str) and pd.isna(value):
        return ""
    return str(value).strip()


def sniff_delimiter(sample: bytes) -> str:
    """Guess the CSV delimiter from the first bytes of the file."""
    text = sample.decode("utf-8-sig", errors="ignore")
    # Drop a trailing partial line so the sniffer sees whole records only
    last_newline = text.rfind("\n")
    if last_newline > 0:
        text = text[:last_newline]
    if not text.strip():
        return DEFAULT_DELIMITER
    try:
        return csv.Sniffer().sniff(text, delimiters=CANDIDATE_DELIMITERS).delimiter
    except csv.Error:
        return DEFAULT_DELIMITER


def iter_delimited_rows(
    stream: BinaryIO,
    *,
    chunk_rows: int = DEFAULT_CSV_CHUNK_ROWS,
    sniff_bytes: int = DEFAULT_SNIFF_BYTES,
) -> Iterator[RawRow]:
    """
    Stream rows of a delimited text file.

    The first line is the header. Blank lines are skipped, header names and
    values are trimmed, and nothing is cast. A zero-byte or header-only file
    yields no rows.

    Raises:
        InvalidFormatError: if the text cannot be decoded or tokenized
    """
    sample = stream.read(sniff_bytes)
    stream.seek(0)
    if not sample.strip():
        return
    delimiter = sniff_delimiter(sample)
    logger.info("Streaming delimited file (delimiter=%r, chunk=%d rows)", delimiter, chunk_rows)

    try:
        reader = pd.read_csv(
            stream,
            sep=delimiter,
            dtype=str,
            na_filter=False,
            skip_blank_lines=True,
            encoding="utf-8-sig",
            chunksize=chunk_rows,
        )
    except EmptyDataError:
        return
    except (ParserError, UnicodeDecodeError) as exc:
        raise InvalidFormatError(f"Error processing file: {exc}") from exc

    columns: Optional[List[str]] = None
    with reader:
        try:
            for chunk in reader:
                if columns is None:
                    columns = [str(column).strip() for column in chunk.columns]
                chunk.columns = columns
                for record in chunk.to_dict("records"):
                    yield {column: _cell_text(value) for column, value in record.items()}
        except EmptyDataError:
            return
        except (ParserError, UnicodeDecodeError) as exc:
            raise InvalidFormatError(f"Error processing file: {exc}") from exc


def _read_first_sheet(stream: BinaryIO) -> pd.DataFrame:
    try:
        return pd.read_excel(stream, engine="openpyxl", sheet_name=0, header=None, dtype=str, na_filter=False)
    except Exception as e:
        raise InvalidFormatError(f"Could not read Excel file: {str(e)}") from e


def unique_headers(cells: List[Any]) -> List[str]:
    """
    Name spreadsheet columns the way ``read_csv`` names CSV columns.

    Blank cells become ``Unnamed: <position>`` and repeated names get a
    ``.1``, ``.2``... suffix, so no column is silently dropped.
    """
    headers: List[str] = []
    seen: Dict[str, int] = {}
    for position, cell in enumerate(cells):
        name = _cell_text(cell) or f"Unnamed: {position}"
        candidate = name
        while candidate in seen:
            seen[name] += 1
            candidate = f"{name}.{seen[name]}"
        seen.setdefault(candidate, 0)
        headers.append(candidate)
    return headers


def iter_spreadsheet_rows(stream: BinaryIO) -> Iterator[RawRow]:
    """
    Decode the first sheet of a workbook and return an iterator of its rows.

    The sheet is read eagerly so that an unreadable or too-short workbook
    fails here, before any row is handed out.

    Raises:
        InvalidFormatError: if the workbook cannot be read or has fewer than
            a header row plus one data row
    """
    frame = _read_first_sheet(stream)
    if len(frame.index) < 2:
        raise InvalidFormatError("File must contain at least a header row and one data row")

    headers = unique_headers(frame.iloc[0].tolist())
    logger.info("Spreadsheet decoded: %d data rows, columns: %s", len(frame.index) - 1, headers)

    def _rows() -> Iterator[RawRow]:
        for values in frame.iloc[1:].itertuples(index=False, name=None):
            yield {header: _cell_text(value) for header, value in zip(headers, values)}

    return _rows()


def open_row_source(
    stream: BinaryIO,
    source_format: SourceFormat,
    *,
    chunk_rows: int = DEFAULT_CSV_CHUNK_ROWS,
    sniff_bytes: int = DEFAULT_SNIFF_BYTES,
) -> RowSource:
    """Build the row iterator for an already detected format."""
    if source_format is SourceFormat.SPREADSHEET:
        return RowSource(source_format, iter_spreadsheet_rows(stream))
    return RowSource(
        source_format,
        iter_delimited_rows(stream, chunk_rows=chunk_rows, sniff_bytes=sniff_bytes),
    )
