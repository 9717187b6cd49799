from datetime import date, timedelta
from decimal import Decimal
from io import BytesIO

import pytest
from openpyxl import Workbook

from errors import InactiveOwnerError, UnsupportedFormatError, ValidationError
from importer import SpreadsheetImportService
from schemas import BudgetIn, ImportIn, TransactionIn
from services import BudgetService, TransactionService, UserService
from values import Money, TransactionType

TODAY = date.today()
YESTERDAY = TODAY - timedelta(days=1)


def _csv(*lines: str) -> bytes:
    return ("\n".join(lines) + "\n").encode("utf-8")


def _upload(content: bytes, filename: str = "extrato.csv", **kwargs) -> ImportIn:
    return ImportIn(filename=filename, content=content, **kwargs)


def _service(session, owner, settings, notifier=None) -> SpreadsheetImportService:
    return SpreadsheetImportService(session, owner.id, notifier=notifier, settings=settings)


def test_partial_import_reports_row_errors(session, owner, notifier, settings) -> None:
    content = _csv(
        "data;valor;descricao;categoria",
        f"{YESTERDAY:%d/%m/%Y};45,90;Padaria;ALIMENTACAO",
        ";120,00;Uber;TRANSPORTE",
        f"{TODAY:%d/%m/%Y};3.500,00;Salario;SALARIO",
    )
    result = _service(session, owner, settings, notifier).import_file(_upload(content))

    assert result.total_rows == 3
    assert result.successes == 2
    assert result.failures == 1
    assert result.skipped == 0
    [error] = result.errors
    assert error.row == 2
    assert error.field == "date"
    assert "date is required" in error.message
    assert result.initial_data_loaded is True
    assert UserService(session, settings=settings).get(owner.id).initial_data_loaded

    kinds = {txn.description: txn.type for txn in result.transactions}
    assert kinds == {"Padaria": TransactionType.expense, "Salario": TransactionType.income}
    assert notifier.imports == [result]


def test_row_errors_collect_every_problem(session, owner, settings) -> None:
    future = TODAY + timedelta(days=10)
    content = _csv(
        "date,amount,description,category,type",
        f"{future:%Y-%m-%d},abc,,ALIMENTACAO,expense",
        f"{TODAY:%Y-%m-%d},10.00,Freela,SALARIO,despesa",
        f"{TODAY:%Y-%m-%d},-4.00,Estorno,LAZER,expense",
        f"{TODAY:%Y-%m-%d},10.00,Cinema,LAZER,transfer",
    )
    result = _service(session, owner, settings).import_file(_upload(content))
    assert result.successes == 0
    assert result.initial_data_loaded is False
    assert [e.row for e in result.errors] == [1, 2, 3, 4]
    first = result.errors[0]
    assert first.field == "date"
    assert "future" in first.message
    assert "description is required" in first.message
    assert result.errors[1].field == "category"
    assert result.errors[2].field == "amount"
    assert result.errors[3].field == "type"
    assert not UserService(session, settings=settings).get(owner.id).initial_data_loaded


def test_initial_flag_only_set_by_first_successful_import(session, owner, settings) -> None:
    service = _service(session, owner, settings)
    first = service.import_file(
        _upload(_csv("date,amount,description,category", f"{TODAY},10.00,Pao,ALIMENTACAO"))
    )
    second = service.import_file(
        _upload(_csv("date,amount,description,category", f"{TODAY},99.00,Cinema,LAZER"))
    )
    assert first.initial_data_loaded is True
    assert second.initial_data_loaded is False
    assert second.successes == 1


def test_duplicates_against_existing_are_flagged_but_imported(session, owner, settings) -> None:
    txns = TransactionService(session, owner.id, settings=settings)
    existing = txns.create(
        TransactionIn(
            amount=Decimal("89.90"),
            description="Conta de luz",
            category="MORADIA",
            type=TransactionType.expense,
            date=YESTERDAY,
        )
    )
    content = _csv(
        "date,amount,description,category",
        f"{YESTERDAY},89.90,Conta de Luz,MORADIA",
        f"{YESTERDAY},15.00,Padaria,ALIMENTACAO",
    )
    result = _service(session, owner, settings).import_file(_upload(content))

    [flag] = result.duplicates
    assert flag.row == 1
    assert flag.existing_transaction_id == existing.id
    assert flag.duplicate_of_row is None
    assert flag.score >= 0.9
    assert "same amount" in flag.reason
    assert "same date" in flag.reason
    assert result.successes == 2
    assert len(txns.list()) == 3


def test_skip_duplicates_and_explicit_rows(session, owner, settings) -> None:
    content = _csv(
        "date,amount,description,category",
        f"{TODAY},50.00,Mercado Extra,ALIMENTACAO",
        f"{TODAY},50.00,Mercado Extra,ALIMENTACAO",
        f"{TODAY},12.00,Cafe,ALIMENTACAO",
        f"{TODAY},30.00,Cinema,LAZER",
    )
    result = _service(session, owner, settings).import_file(
        _upload(content, skip_duplicates=True, skip_rows=[4])
    )
    [flag] = result.duplicates
    assert flag.row == 2
    assert flag.duplicate_of_row == 1
    assert flag.existing_transaction_id is None
    assert result.skipped == 2
    assert result.successes == 2
    assert result.failures == 0
    assert sorted(t.description for t in result.transactions) == ["Cafe", "Mercado Extra"]


def test_threshold_is_configurable(session, owner, settings) -> None:
    settings.duplicate_threshold = 0.95
    content = _csv(
        "date,amount,description,category",
        f"{YESTERDAY},50.00,Mercado,ALIMENTACAO",
        f"{TODAY},50.00,Mercado,ALIMENTACAO",
    )
    preview = _service(session, owner, settings).preview(_upload(content))
    assert preview.duplicates == []

    settings.duplicate_threshold = 0.8
    preview = _service(session, owner, settings).preview(_upload(content))
    assert [flag.row for flag in preview.duplicates] == [2]


def test_preview_persists_nothing(session, owner, settings) -> None:
    content = _csv(
        "Data,Valor,Descrição,Categoria,Tipo",
        f'{TODAY:%d/%m/%Y},"R$ 1.234,56",Freela site,FREELANCE,Receita',
        f"{TODAY:%d/%m/%Y},0,Nada,LAZER,Despesa",
    )
    preview = _service(session, owner, settings).preview(_upload(content))
    assert preview.total_rows == 2
    [candidate] = preview.candidates
    assert candidate.amount == Decimal("1234.56")
    assert candidate.type == TransactionType.income
    assert candidate.category == "FREELANCE"
    assert [error.row for error in preview.errors] == [2]
    assert TransactionService(session, owner.id, settings=settings).list() == []
    assert not UserService(session, settings=settings).get(owner.id).initial_data_loaded


def test_imported_expenses_feed_budgets(session, owner, notifier, settings) -> None:
    budget = BudgetService(session, owner.id, notifier=notifier, settings=settings).create(
        BudgetIn(category="ALIMENTACAO", limit=Decimal("100.00"))
    )
    content = _csv(
        "date,amount,description,category",
        f"{TODAY},60.00,Feira,ALIMENTACAO",
        f"{TODAY},45.00,Acougue,ALIMENTACAO",
    )
    _service(session, owner, settings, notifier).import_file(_upload(content))
    refreshed = BudgetService(session, owner.id, settings=settings).get(budget.id)
    assert refreshed.spent == Money("105.00")
    assert notifier.budget_events == [(budget.id, Decimal("105.00"))]


def test_xlsx_import(session, owner, settings) -> None:
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["Data", "Valor", "Descrição", "Categoria"])
    sheet.append([YESTERDAY, 250.75, "Supermercado", "ALIMENTACAO"])
    sheet.append([TODAY, 4000, "Salário", "SALARIO"])
    buffer = BytesIO()
    workbook.save(buffer)

    result = _service(session, owner, settings).import_file(
        _upload(buffer.getvalue(), filename="extrato.xlsx")
    )
    assert result.successes == 2
    amounts = sorted(txn.amount for txn in result.transactions)
    assert amounts == [Decimal("250.75"), Decimal("4000.00")]


def test_file_level_failures(session, owner, settings) -> None:
    service = _service(session, owner, settings)
    with pytest.raises(ValidationError, match="category"):
        service.import_file(_upload(_csv("date,amount,description", f"{TODAY},1.00,x")))
    with pytest.raises(UnsupportedFormatError):
        service.import_file(_upload(b"%PDF", filename="extrato.pdf"))

    UserService(session, settings=settings).deactivate(owner.id)
    with pytest.raises(InactiveOwnerError):
        service.import_file(
            _upload(_csv("date,amount,description,category", f"{TODAY},1.00,x,LAZER"))
        )


def test_out_of_range_amount_is_a_row_error(session, owner, settings) -> None:
    content = _csv(
        "date,amount,description,category",
        f"{TODAY},10.00,Pao,ALIMENTACAO",
        f"{TODAY},100000000000000000000,Erro de digitacao,LAZER",
        f"{TODAY},25.00,Onibus,TRANSPORTE",
    )
    result = _service(session, owner, settings).import_file(_upload(content))
    assert result.successes == 2
    assert result.failures == 1
    [error] = result.errors
    assert error.row == 2
    assert error.field == "amount"
    assert "exceed" in error.message
    assert len(TransactionService(session, owner.id, settings=settings).list()) == 2
