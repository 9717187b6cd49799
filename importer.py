"""Spreadsheet import: parse, validate per row, flag duplicates, persist."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from duplicates import DuplicateDetector, Record
from errors import DomainError, ValidationError
from ports import ParsedSheet, SpreadsheetParser
from schemas import (
    CandidateRow,
    DuplicateFlag,
    ImportIn,
    ImportPreview,
    ImportResult,
    ImportRowError,
    TransactionIn,
    TransactionOut,
)
from services import OwnerScopedService, TransactionService
from spreadsheet import TabularFileParser, locate_columns, parse_amount, parse_date
from values import Category, Money, TransactionType

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "amount", "description", "category")


class ImportStage(str, Enum):
    received = "received"
    parsed = "parsed"
    validated = "validated"
    deduplicated = "deduplicated"
    persisted = "persisted"


@dataclass
class _Analysis:
    sheet: ParsedSheet
    stage: ImportStage
    candidates: list[CandidateRow] = field(default_factory=list)
    errors: list[ImportRowError] = field(default_factory=list)
    duplicates: list[DuplicateFlag] = field(default_factory=list)


class SpreadsheetImportService(OwnerScopedService):
    def __init__(
        self,
        session: Session,
        owner_id: int,
        *,
        parser: Optional[SpreadsheetParser] = None,
        **kwargs,
    ) -> None:
        super().__init__(session, owner_id, **kwargs)
        self.parser = parser or TabularFileParser(self.settings.max_upload_bytes)
        self.detector = DuplicateDetector(
            threshold=self.settings.duplicate_threshold,
            window_days=self.settings.duplicate_window_days,
        )
        self.transaction_service = TransactionService(
            session,
            owner_id,
            notifier=self.notifier,
            settings=self.settings,
            users=self.users,
            transactions=self.transactions,
            budgets=self.budgets,
            goals=self.goals,
        )

    def preview(self, data: ImportIn) -> ImportPreview:
        analysis = self._analyse(data)
        return ImportPreview(
            filename=analysis.sheet.filename,
            total_rows=len(analysis.sheet.rows),
            candidates=analysis.candidates,
            errors=analysis.errors,
            duplicates=analysis.duplicates,
        )

    def import_file(self, data: ImportIn) -> ImportResult:
        analysis = self._analyse(data)
        flagged = {flag.row for flag in analysis.duplicates}
        excluded = set(data.skip_rows)
        if data.skip_duplicates:
            excluded |= flagged

        errors = list(analysis.errors)
        persisted: list[TransactionOut] = []
        skipped = 0
        for candidate in analysis.candidates:
            if candidate.row in excluded:
                skipped += 1
                continue
            try:
                txn = self.transaction_service.create(
                    TransactionIn(
                        amount=candidate.amount,
                        description=candidate.description,
                        category=candidate.category,
                        type=candidate.type,
                        date=candidate.date,
                    )
                )
            except DomainError as exc:
                logger.warning(
                    f"import_row_failed: owner={self.owner_id} row={candidate.row} "
                    f"code={exc.code}"
                )
                errors.append(
                    ImportRowError(
                        row=candidate.row,
                        field=getattr(exc, "field", None),
                        message=exc.message,
                    )
                )
                continue
            persisted.append(TransactionOut.from_model(txn))

        flag_set = False
        if persisted:
            with self._unit_of_work():
                owner = self._owner()
                flag_set = owner.mark_initial_data_loaded()
                self.users.save(owner)

        errors.sort(key=lambda err: err.row)
        result = ImportResult(
            owner_id=self.owner_id,
            filename=analysis.sheet.filename,
            stage=ImportStage.persisted.value,
            total_rows=len(analysis.sheet.rows),
            successes=len(persisted),
            failures=len(errors),
            skipped=skipped,
            duplicates=analysis.duplicates,
            errors=errors,
            transactions=persisted,
            initial_data_loaded=flag_set,
        )
        self._notify(lambda r=result: self.notifier.import_completed(r))
        self._dispatch()
        logger.info(
            f"import_finished: owner={self.owner_id} file={result.filename!r} "
            f"total={result.total_rows} successes={result.successes} "
            f"failures={result.failures} skipped={skipped} "
            f"duplicates={len(result.duplicates)}"
        )
        return result

    def _analyse(self, data: ImportIn) -> _Analysis:
        self._owner()
        logger.info(
            f"import_stage: owner={self.owner_id} file={data.filename!r} "
            f"stage={ImportStage.received.value}"
        )
        sheet = self.parser.parse(data.content, data.filename, data.content_type)
        analysis = _Analysis(sheet=sheet, stage=ImportStage.parsed)

        columns = locate_columns(sheet.header)
        missing = [name for name in REQUIRED_COLUMNS if name not in columns]
        if missing:
            raise ValidationError(
                f"Missing required column(s): {', '.join(missing)}", field="header"
            )
        for number, cells in sheet.rows:
            candidate = self._validate_row(number, cells, columns, analysis.errors)
            if candidate is not None:
                analysis.candidates.append(candidate)
        analysis.stage = ImportStage.validated
        logger.debug(
            f"import_stage: stage={analysis.stage.value} valid={len(analysis.candidates)} "
            f"invalid={len(analysis.errors)}"
        )

        analysis.duplicates = self._flag_duplicates(analysis.candidates)
        analysis.stage = ImportStage.deduplicated
        logger.debug(
            f"import_stage: stage={analysis.stage.value} flagged={len(analysis.duplicates)}"
        )
        return analysis

    def _validate_row(
        self,
        number: int,
        cells: list[str],
        columns: dict[str, int],
        errors: list[ImportRowError],
    ) -> Optional[CandidateRow]:
        def cell(name: str) -> str:
            idx = columns.get(name)
            if idx is None or idx >= len(cells):
                return ""
            return (cells[idx] or "").strip()

        problems: list[tuple[str, str]] = []
        raw_date = cell("date")
        day: Optional[date] = None
        if not raw_date:
            problems.append(("date", "date is required"))
        else:
            try:
                day = parse_date(raw_date)
            except ValueError as exc:
                problems.append(("date", str(exc)))
            else:
                if day > date.today():
                    problems.append(("date", "date cannot be in the future"))

        raw_amount = cell("amount")
        amount = None
        if not raw_amount:
            problems.append(("amount", "amount is required"))
        else:
            try:
                amount = Money(parse_amount(raw_amount)).amount
            except (ValueError, DomainError) as exc:
                problems.append(("amount", getattr(exc, "message", None) or str(exc)))

        description = cell("description")
        if not description:
            problems.append(("description", "description is required"))

        category_name = cell("category")
        txn_type: Optional[TransactionType] = None
        category: Optional[Category] = None
        if not category_name:
            problems.append(("category", "category is required"))
        else:
            try:
                raw_type = cell("type")
                txn_type = (
                    TransactionType.parse(raw_type)
                    if raw_type
                    else Category.infer_type(category_name)
                )
                category = Category.resolve(category_name, txn_type)
            except DomainError as exc:
                problems.append((getattr(exc, "field", None) or "category", exc.message))

        if problems:
            errors.append(
                ImportRowError(
                    row=number,
                    field=problems[0][0],
                    message="; ".join(message for _, message in problems),
                )
            )
            return None
        return CandidateRow(
            row=number,
            date=day,
            amount=amount,
            description=description,
            category=category.name,
            type=txn_type,
        )

    def _flag_duplicates(self, candidates: list[CandidateRow]) -> list[DuplicateFlag]:
        if not candidates:
            return []
        window = timedelta(days=self.detector.window_days)
        start = min(c.date for c in candidates) - window
        end = max(c.date for c in candidates) + window
        existing = [
            Record(
                date=txn.date,
                amount_cents=txn.amount_cents,
                description=txn.description,
                category=txn.category_name,
                transaction_id=txn.id,
            )
            for txn in self.transactions.find_near(self.owner_id, start, end)
        ]
        seen: list[Record] = []
        flags: list[DuplicateFlag] = []
        for candidate in candidates:
            record = Record(
                date=candidate.date,
                amount_cents=Money(candidate.amount).cents,
                description=candidate.description,
                category=candidate.category,
                row=candidate.row,
            )
            match = self.detector.best_match(record, existing + seen)
            if match is not None:
                flags.append(
                    DuplicateFlag(
                        row=candidate.row,
                        score=match.score,
                        reason=match.reason,
                        existing_transaction_id=match.reference.transaction_id,
                        duplicate_of_row=match.reference.row,
                    )
                )
            seen.append(record)
        return flags
