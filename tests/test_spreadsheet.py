from datetime import date
from decimal import Decimal
from io import BytesIO

import pytest
from openpyxl import Workbook

from errors import EmptyFileError, UnsupportedFormatError, ValidationError
from spreadsheet import (
    TabularFileParser,
    detect_format,
    locate_columns,
    parse_amount,
    parse_date,
)


def _xlsx(rows) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    for row in rows:
        sheet.append(row)
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def parser() -> TabularFileParser:
    return TabularFileParser(max_bytes=1024 * 1024)


def test_detect_format_prefers_extension() -> None:
    assert detect_format("extrato.CSV", None) == "csv"
    assert detect_format("extrato.xlsx", "text/csv") == "xlsx"
    assert detect_format("upload", "text/csv; charset=utf-8") == "csv"
    assert (
        detect_format(
            "upload", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        == "xlsx"
    )
    with pytest.raises(UnsupportedFormatError):
        detect_format("extrato.pdf", "application/pdf")


def test_parse_amount_handles_locales() -> None:
    assert parse_amount("R$ 1.234,56") == Decimal("1234.56")
    assert parse_amount("1,234.56") == Decimal("1234.56")
    assert parse_amount("10,5") == Decimal("10.5")
    assert parse_amount("$99") == Decimal("99")
    with pytest.raises(ValueError):
        parse_amount("-5,00")
    with pytest.raises(ValueError):
        parse_amount("abc")


def test_parse_date_formats() -> None:
    assert parse_date("15/03/2024") == date(2024, 3, 15)
    assert parse_date("2024-03-15") == date(2024, 3, 15)
    assert parse_date("15.03.2024") == date(2024, 3, 15)
    with pytest.raises(ValueError, match="required"):
        parse_date("  ")
    with pytest.raises(ValueError, match="Unrecognized"):
        parse_date("March 15th")


def test_locate_columns_accepts_portuguese_headers() -> None:
    columns = locate_columns(["Data", "Descrição", "Valor", "Categoria", "Tipo"])
    assert columns == {"date": 0, "description": 1, "amount": 2, "category": 3, "type": 4}
    assert "type" not in locate_columns(["date", "amount", "description", "category"])


def test_comma_csv(parser) -> None:
    content = (
        b"date,amount,description,category\n"
        b"2024-05-01,10.50,Bakery,ALIMENTACAO\n"
        b"2024-05-02,20.00,Bus,TRANSPORTE\n"
    )
    sheet = parser.parse(content, "may.csv", "text/csv")
    assert sheet.header == ["date", "amount", "description", "category"]
    assert sheet.rows == [
        (1, ["2024-05-01", "10.50", "Bakery", "ALIMENTACAO"]),
        (2, ["2024-05-02", "20.00", "Bus", "TRANSPORTE"]),
    ]


def test_semicolon_csv_with_bom_and_decimal_commas(parser) -> None:
    content = (
        "data;valor;descrição;categoria\n"
        "01/05/2024;10,50;Padaria;ALIMENTACAO\n"
        "02/05/2024;1.200,00;Aluguel;MORADIA\n"
        "03/05/2024;35,90;Farmácia;SAUDE\n"
    ).encode("utf-8-sig")
    sheet = parser.parse(content, "maio.csv")
    assert sheet.header == ["data", "valor", "descrição", "categoria"]
    assert sheet.rows[1] == (2, ["02/05/2024", "1.200,00", "Aluguel", "MORADIA"])
    assert len(sheet.rows) == 3


def test_latin1_csv_is_decoded(parser) -> None:
    content = (
        "data;valor;descricao;categoria\n"
        "01/05/2024;10,50;Pão de queijo;ALIMENTACAO\n"
        "02/05/2024;12,00;Café;ALIMENTACAO\n"
    ).encode("latin-1")
    sheet = parser.parse(content, "maio.csv")
    assert sheet.rows[0][1][2] == "Pão de queijo"


def test_blank_lines_are_ignored(parser) -> None:
    content = b"date,amount,description,category\n\n2024-05-01,10.50,Bakery,ALIMENTACAO\n\n"
    sheet = parser.parse(content, "may.csv")
    assert len(sheet.rows) == 1


def test_xlsx_cells_are_normalized(parser) -> None:
    content = _xlsx(
        [
            ["Data", "Valor", "Descrição", "Categoria"],
            [date(2024, 5, 1), 10.5, "Padaria", "ALIMENTACAO"],
            ["02/05/2024", 20, "Ônibus", "TRANSPORTE"],
        ]
    )
    sheet = parser.parse(content, "maio.xlsx")
    assert sheet.header == ["Data", "Valor", "Descrição", "Categoria"]
    assert sheet.rows[0] == (1, ["2024-05-01", "10.5", "Padaria", "ALIMENTACAO"])
    assert sheet.rows[1] == (2, ["02/05/2024", "20", "Ônibus", "TRANSPORTE"])


def test_rejects_empty_oversized_and_unsupported(parser) -> None:
    with pytest.raises(EmptyFileError):
        parser.parse(b"", "empty.csv")
    with pytest.raises(EmptyFileError):
        parser.parse(b"date,amount,description,category\n", "header.csv")
    with pytest.raises(UnsupportedFormatError):
        parser.parse(b"%PDF-1.4", "statement.pdf", "application/pdf")

    tiny = TabularFileParser(max_bytes=16)
    with pytest.raises(ValidationError, match="limit"):
        tiny.parse(b"date,amount,description,category\n2024-05-01,1,x,LAZER\n", "big.csv")


def test_parse_amount_rejects_stray_letters() -> None:
    assert parse_amount("BRL 12,50") == Decimal("12.50")
    assert parse_amount("US$ 7.00") == Decimal("7.00")
    with pytest.raises(ValueError, match="Invalid amount"):
        parse_amount("12abc34")
