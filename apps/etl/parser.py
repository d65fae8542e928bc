"""
Spreadsheet Parser - Workbook/CSV to Raw Records

Reads the first worksheet of an .xlsx/.xlsm workbook (openpyxl, read-only) or
a delimited .csv/.txt file and returns the header keys plus one RawRecord
(header -> cell value) per non-empty data row.

Rules:
- The first row with any non-empty cell is the header row.
- Header cells are trimmed and lower-cased to form the column keys; columns
  with an empty header are ignored, a repeated header keeps its first column.
- Every later row with at least one non-empty cell becomes a RawRecord.

Raises ParsingError for missing files, unsupported formats, unreadable
workbooks and sheets without a header row.
"""

import csv
import io
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from utils.errors import ParsingError

logger = logging.getLogger(__name__)

WORKBOOK_SUFFIXES = {".xlsx", ".xlsm"}
DELIMITED_SUFFIXES = {".csv", ".txt"}
CSV_DELIMITERS = ",;\t|"
CSV_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")

RawRecord = dict[str, Any]


@dataclass
class ParsedSheet:
    """Header keys and raw data rows of one sheet."""

    headers: list[str]
    records: list[RawRecord] = field(default_factory=list)
    header_row: int = 1


def parse_spreadsheet(path: str | Path) -> ParsedSheet:
    """Parse a spreadsheet file into raw records.

    Blocking (file IO + zip decoding); run it with asyncio.to_thread from
    async code.

    Args:
        path: Path to an .xlsx, .xlsm, .csv or .txt file

    Returns:
        ParsedSheet with headers and records

    Raises:
        ParsingError: If the file is missing, unreadable or has no header row
    """
    file_path = Path(path)

    if not file_path.is_file():
        raise ParsingError(f"Spreadsheet not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix in WORKBOOK_SUFFIXES:
        rows = _read_workbook_rows(file_path)
    elif suffix in DELIMITED_SUFFIXES:
        rows = _read_delimited_rows(file_path)
    else:
        raise ParsingError(f"Unsupported spreadsheet format: {suffix or '<none>'}")

    sheet = rows_to_records(rows)
    logger.info(
        "Spreadsheet parsed: file=%s, headers=%d, records=%d",
        file_path.name, len(sheet.headers), len(sheet.records),
    )
    return sheet


def rows_to_records(rows: Iterable[Iterable[Any]]) -> ParsedSheet:
    """Turn positional rows into header-keyed raw records.

    Raises:
        ParsingError: If no row has a non-empty cell
    """
    columns: Optional[list[Optional[str]]] = None
    sheet: Optional[ParsedSheet] = None

    for row_number, row in enumerate(rows, 1):
        cells = list(row)
        if not any(_is_filled(cell) for cell in cells):
            continue

        if columns is None:
            columns = _header_keys(cells)
            sheet = ParsedSheet(headers=[c for c in columns if c], header_row=row_number)
            continue

        record: RawRecord = {}
        for key, cell in zip(columns, cells):
            if key and _is_filled(cell):
                record[key] = cell
        if record:
            sheet.records.append(record)

    if sheet is None or not sheet.headers:
        raise ParsingError("Spreadsheet has no header row")

    return sheet


def _is_filled(cell: Any) -> bool:
    if cell is None:
        return False
    if isinstance(cell, str):
        return bool(cell.strip())
    return True


def _header_keys(cells: list[Any]) -> list[Optional[str]]:
    keys: list[Optional[str]] = []
    seen: set[str] = set()

    for cell in cells:
        key = str(cell).strip().lower() if _is_filled(cell) else None
        if key in seen:
            logger.debug("Duplicate header ignored: %s", key)
            key = None
        if key:
            seen.add(key)
        keys.append(key)

    return keys


def _read_workbook_rows(file_path: Path) -> list[tuple[Any, ...]]:
    try:
        workbook = load_workbook(file_path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ParsingError(f"Unreadable workbook {file_path.name}: {e}") from e

    try:
        if not workbook.worksheets:
            raise ParsingError(f"Workbook has no worksheets: {file_path.name}")
        return list(workbook.worksheets[0].iter_rows(values_only=True))
    finally:
        workbook.close()


def _read_delimited_rows(file_path: Path) -> list[list[str]]:
    content = _decode(file_path.read_bytes())
    lines = content.splitlines()

    # Blank lines break the sniffer's per-line consistency check
    sample = "\n".join(line for line in lines[:50] if line.strip())
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters=CSV_DELIMITERS)
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = ","

    logger.debug("CSV delimiter detected: %r (%s)", delimiter, file_path.name)

    try:
        return list(csv.reader(io.StringIO(content, newline=""), delimiter=delimiter))
    except csv.Error as e:
        raise ParsingError(f"Invalid CSV format in {file_path.name}: {e}") from e


def _decode(data: bytes) -> str:
    *strict, last_resort = CSV_ENCODINGS
    for encoding in strict:
        try:
            return data.decode(encoding)
        except UnicodeDecodeError:
            continue
    # latin-1 maps every byte
    return data.decode(last_resort)
