"""Read and write spreadsheet uploads (CSV and XLSX) as header-keyed row dicts."""

import csv
import io
import re
from datetime import date, datetime
from typing import Any, Iterable, Sequence

from openpyxl import Workbook, load_workbook

CSV_CONTENT_TYPE = "text/csv"
XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class TabularFormatError(ValueError):
    """Upload could not be read as CSV or XLSX."""


def detect_format(filename: str | None, content_type: str | None = None) -> str:
    name = (filename or "").lower()
    if name.endswith((".xlsx", ".xlsm")) or content_type == XLSX_CONTENT_TYPE:
        return "xlsx"
    if name.endswith((".csv", ".txt")) or (content_type or "").startswith("text/"):
        return "csv"
    raise TabularFormatError(f"Unsupported file type: {filename or content_type or 'unknown'}")


def _cell_to_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return value.strip()
    return value


def _rows_from_matrix(matrix: Iterable[Sequence[Any]]) -> tuple[list[str], list[dict[str, Any]]]:
    iterator = iter(matrix)
    try:
        header_row = next(iterator)
    except StopIteration:
        return [], []
    headers = [str(h).strip() if h is not None else "" for h in header_row]
    while headers and headers[-1] == "":
        headers.pop()
    rows: list[dict[str, Any]] = []
    for raw in iterator:
        cells = list(raw)[: len(headers)]
        if all(c is None or (isinstance(c, str) and not c.strip()) for c in cells):
            continue
        row = {}
        for header, cell in zip(headers, cells):
            if header:
                row[header] = _cell_to_value(cell)
        rows.append(row)
    return headers, rows


def read_csv(data: bytes) -> tuple[list[str], list[dict[str, Any]]]:
    """Headers and non-blank rows from UTF-8 (optionally BOM-prefixed) CSV bytes."""
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise TabularFormatError("CSV file must be UTF-8 encoded") from e
    return _rows_from_matrix(csv.reader(io.StringIO(text)))


def read_xlsx(data: bytes) -> tuple[list[str], list[dict[str, Any]]]:
    """Headers and non-blank rows from the first worksheet of an XLSX workbook."""
    try:
        wb = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except Exception as e:  # BadZipFile, KeyError, InvalidFileException
        raise TabularFormatError(f"Could not read XLSX file: {e}") from e
    try:
        ws = wb.worksheets[0]
        return _rows_from_matrix(ws.iter_rows(values_only=True))
    finally:
        wb.close()


def read_table(data: bytes, filename: str | None, content_type: str | None = None) -> tuple[list[str], list[dict[str, Any]]]:
    if detect_format(filename, content_type) == "xlsx":
        return read_xlsx(data)
    return read_csv(data)


def write_csv(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])
    return buf.getvalue().encode("utf-8")


def write_xlsx(headers: Sequence[str], rows: Iterable[Sequence[Any]], sheet_title: str = "Data") -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = re.sub(r"[\\/?*\[\]:]", " ", sheet_title)[:31].strip() or "Data"
    ws.append(list(headers))
    for row in rows:
        ws.append(list(row))
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
