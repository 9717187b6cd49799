import csv
import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import BytesIO, StringIO
from pathlib import PurePath
from typing import Optional

import pandas as pd

from config import get_settings
from errors import (
    EmptyFileError,
    SpreadsheetParseError,
    UnsupportedFormatError,
    ValidationError,
)
from ports import ParsedSheet, SpreadsheetParser
from values import strip_accents

logger = logging.getLogger(__name__)

CSV_TYPES = {"text/csv", "application/csv", "text/plain", "text/comma-separated-values"}
XLSX_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
}
EXTENSIONS = {".csv": "csv", ".xlsx": "xlsx"}

DATE_FORMATS = ("%d/%m/%Y", "%Y-%m-%d", "%d-%m-%Y", "%m/%d/%Y", "%d.%m.%Y")

CURRENCY_MARKERS = re.compile(r"(?i)\b(?:brl|usd|eur)\b|us\$|r\$|[$€£\s]")

HEADER_ALIASES = {
    "date": ("data", "date", "dt", "data_transacao", "transaction_date"),
    "amount": ("valor", "amount", "value", "quantia", "montante"),
    "description": ("descricao", "description", "memo", "historico", "note"),
    "category": ("categoria", "category"),
    "type": ("tipo", "type", "kind"),
}


def detect_format(filename: str, content_type: Optional[str]) -> str:
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    suffix = PurePath(filename or "").suffix.lower()
    if suffix in EXTENSIONS:
        return EXTENSIONS[suffix]
    if mime in XLSX_TYPES:
        return "xlsx"
    if mime in CSV_TYPES:
        return "csv"
    raise UnsupportedFormatError(
        f"Unsupported file '{filename}' ({mime or 'unknown type'}); use CSV or XLSX",
        field="file",
    )


def normalize_header(value: str) -> str:
    clean = strip_accents(str(value or "")).strip().lower()
    return re.sub(r"[\s\-]+", "_", clean)


def locate_columns(header: list[str]) -> dict[str, int]:
    """Map logical field names to column indexes using pt/en header aliases."""
    positions: dict[str, int] = {}
    normalized = [normalize_header(cell) for cell in header]
    for field_name, aliases in HEADER_ALIASES.items():
        for idx, cell in enumerate(normalized):
            if cell in aliases:
                positions[field_name] = idx
                break
    return positions


def parse_date(value: str) -> date:
    value = (value or "").strip()
    if not value:
        raise ValueError("Date is required")
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        raise ValueError(f"Unrecognized date '{value}'") from None


def parse_amount(value: str) -> Decimal:
    clean = CURRENCY_MARKERS.sub("", (value or "").strip())
    if not clean:
        raise ValueError("Amount is required")
    if re.search(r"[^\d.,\-]", clean):
        raise ValueError(f"Invalid amount '{value}'")
    if "," in clean and "." in clean:
        # the right-most separator is the decimal mark
        if clean.rfind(",") > clean.rfind("."):
            clean = clean.replace(".", "").replace(",", ".")
        else:
            clean = clean.replace(",", "")
    else:
        clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount '{value}'") from exc
    if amount <= 0:
        raise ValueError("Amount must be positive")
    return amount


class TabularFileParser(SpreadsheetParser):
    def __init__(self, max_bytes: Optional[int] = None) -> None:
        self.max_bytes = max_bytes or get_settings().max_upload_bytes

    def parse(
        self, content: bytes, filename: str, content_type: Optional[str] = None
    ) -> ParsedSheet:
        kind = detect_format(filename, content_type)
        if not content:
            raise EmptyFileError(f"File '{filename}' is empty", field="file")
        if len(content) > self.max_bytes:
            raise ValidationError(
                f"File exceeds the {self.max_bytes // (1024 * 1024)}MB limit", field="file"
            )
        table = self._read_csv(content) if kind == "csv" else self._read_xlsx(content)
        table = [row for row in table if any(cell.strip() for cell in row)]
        if len(table) < 2:
            raise EmptyFileError(f"File '{filename}' has no data rows", field="file")
        header = [cell.strip() for cell in table[0]]
        rows = [(idx, row) for idx, row in enumerate(table[1:], start=1)]
        logger.info(f"spreadsheet_parsed: file={filename!r} format={kind} rows={len(rows)}")
        return ParsedSheet(filename=filename, header=header, rows=rows)

    def _read_csv(self, content: bytes) -> list[list[str]]:
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = content.decode("latin-1")
        sample = text[:4096]
        try:
            dialect = csv.Sniffer().sniff(sample, delimiters=",;\t")
        except csv.Error:
            dialect = csv.excel
        try:
            return [list(row) for row in csv.reader(StringIO(text), dialect)]
        except csv.Error as exc:
            raise SpreadsheetParseError(f"Malformed CSV: {exc}") from exc

    def _read_xlsx(self, content: bytes) -> list[list[str]]:
        try:
            frame = pd.read_excel(
                BytesIO(content),
                sheet_name=0,
                header=None,
                dtype=object,
                keep_default_na=False,
                engine="openpyxl",
            )
        except Exception as exc:
            logger.warning(f"xlsx_read_failed: error={exc}")
            raise SpreadsheetParseError("Could not read XLSX workbook") from exc
        return [[_cell_text(value) for value in row] for row in frame.itertuples(index=False)]


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, pd.Timestamp)):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float):
        if value != value:
            return ""
        return format(Decimal(repr(value)), "f")
    return str(value).strip()
