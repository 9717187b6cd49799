from __future__ import annotations

import hashlib
import hmac
import re
import secrets
import unicodedata
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from functools import total_ordering
from typing import Optional, Union

from errors import (
    CurrencyMismatchError,
    InvalidAmountError,
    InvalidCategoryError,
    ValidationError,
)

CENT = Decimal("0.01")
RATIO_PRECISION = Decimal("0.0001")
MAX_AMOUNT = Decimal("999999999999.99")


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"

    @classmethod
    def parse(cls, value: Union[str, "TransactionType"]) -> "TransactionType":
        if isinstance(value, cls):
            return value
        key = strip_accents(str(value or "")).strip().lower()
        aliases = {
            "income": cls.income,
            "receita": cls.income,
            "entrada": cls.income,
            "credit": cls.income,
            "expense": cls.expense,
            "despesa": cls.expense,
            "saida": cls.expense,
            "debit": cls.expense,
        }
        try:
            return aliases[key]
        except KeyError:
            raise ValidationError(f"Unknown transaction type '{value}'", field="type") from None


class CurrencyCode(str, Enum):
    brl = "BRL"
    usd = "USD"
    eur = "EUR"


def strip_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def to_decimal(value: Union[Decimal, int, str, float]) -> Decimal:
    if isinstance(value, bool):
        raise InvalidAmountError("Amount must be a number")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise InvalidAmountError(f"Invalid amount '{value}'") from exc
    if not amount.is_finite():
        raise InvalidAmountError("Amount must be finite")
    return amount


def ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator at 4 decimal places, rounded HALF_UP."""
    if denominator == 0:
        return Decimal("0.0000")
    return (numerator / denominator).quantize(RATIO_PRECISION, rounding=ROUND_HALF_UP)


def as_percentage(fraction: Decimal) -> Decimal:
    return (fraction * 100).quantize(CENT, rounding=ROUND_HALF_UP)


@total_ordering
@dataclass(frozen=True)
class Money:
    amount: Decimal
    currency: CurrencyCode = CurrencyCode.brl

    def __post_init__(self) -> None:
        amount = to_decimal(self.amount)
        if amount < 0:
            raise InvalidAmountError("Amount cannot be negative")
        if amount > MAX_AMOUNT:
            raise InvalidAmountError(f"Amount cannot exceed {MAX_AMOUNT}")
        if amount.as_tuple().exponent < -2 and amount != amount.quantize(CENT):
            raise InvalidAmountError("Amount cannot have more than 2 decimal places")
        object.__setattr__(self, "amount", amount.quantize(CENT))
        object.__setattr__(self, "currency", CurrencyCode(self.currency))

    @classmethod
    def zero(cls, currency: CurrencyCode = CurrencyCode.brl) -> "Money":
        return cls(Decimal("0"), currency)

    @classmethod
    def from_cents(cls, cents: int, currency: CurrencyCode = CurrencyCode.brl) -> "Money":
        return cls(Decimal(int(cents)) / 100, currency)

    @property
    def cents(self) -> int:
        return int(self.amount * 100)

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def _check(self, other: "Money") -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(
                f"Cannot combine {self.currency.value} with {other.currency.value}"
            )

    def __add__(self, other: "Money") -> "Money":
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check(other)
        if other.amount > self.amount:
            raise InvalidAmountError("Resulting amount cannot be negative")
        return Money(self.amount - other.amount, self.currency)

    def minus_clamped(self, other: "Money") -> "Money":
        self._check(other)
        return Money(max(Decimal("0"), self.amount - other.amount), self.currency)

    def __lt__(self, other: "Money") -> bool:
        self._check(other)
        return self.amount < other.amount

    def ratio_to(self, other: "Money") -> Decimal:
        self._check(other)
        return ratio(self.amount, other.amount)

    def __str__(self) -> str:
        return f"{self.currency.value} {self.amount:.2f}"


CATEGORY_PATTERN = re.compile(r"^[A-Z0-9_]+$")
CATEGORY_MAX_LENGTH = 50

PREDEFINED_EXPENSE_CATEGORIES = (
    "ALIMENTACAO",
    "TRANSPORTE",
    "MORADIA",
    "LAZER",
    "SAUDE",
    "EDUCACAO",
    "VESTUARIO",
    "SERVICOS",
    "IMPOSTOS",
    "OUTROS_GASTOS",
)
PREDEFINED_INCOME_CATEGORIES = (
    "SALARIO",
    "FREELANCE",
    "INVESTIMENTOS",
    "VENDAS",
    "OUTROS_GANHOS",
)


def normalize_category_name(name: str) -> str:
    clean = strip_accents(name or "").strip().upper()
    return re.sub(r"[\s\-]+", "_", clean)


@dataclass(frozen=True)
class Category:
    name: str
    kind: TransactionType

    def __post_init__(self) -> None:
        name = normalize_category_name(self.name)
        if not name:
            raise InvalidCategoryError("Category name is required")
        if len(name) > CATEGORY_MAX_LENGTH:
            raise InvalidCategoryError(
                f"Category name cannot exceed {CATEGORY_MAX_LENGTH} characters"
            )
        if not CATEGORY_PATTERN.match(name):
            raise InvalidCategoryError(
                "Category name may only contain letters, digits and underscores"
            )
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "kind", TransactionType(self.kind))

    @property
    def is_predefined(self) -> bool:
        return predefined_kind(self.name) is not None

    @classmethod
    def resolve(cls, name: str, type: TransactionType) -> "Category":
        """Return the predefined category for ``name`` or a custom one of ``type``."""
        normalized = normalize_category_name(name)
        kind = predefined_kind(normalized)
        if kind is not None and kind != type:
            raise InvalidCategoryError(
                f"Category {normalized} is a {kind.value} category, not {type.value}"
            )
        return cls(normalized, type)

    @classmethod
    def infer_type(cls, name: str) -> TransactionType:
        return predefined_kind(normalize_category_name(name)) or TransactionType.expense


def predefined_kind(name: str) -> Optional[TransactionType]:
    if name in PREDEFINED_EXPENSE_CATEGORIES:
        return TransactionType.expense
    if name in PREDEFINED_INCOME_CATEGORIES:
        return TransactionType.income
    return None


def predefined_categories() -> list[Category]:
    return [
        Category(name, TransactionType.expense) for name in PREDEFINED_EXPENSE_CATEGORIES
    ] + [Category(name, TransactionType.income) for name in PREDEFINED_INCOME_CATEGORIES]


EMAIL_PATTERN = re.compile(
    r"^[a-z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
    r"(?:\.[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?)+$"
)


@dataclass(frozen=True)
class Email:
    value: str

    def __post_init__(self) -> None:
        value = (self.value or "").strip().lower()
        if not value:
            raise ValidationError("Email is required", field="email")
        if len(value) > 255:
            raise ValidationError("Email cannot exceed 255 characters", field="email")
        if not EMAIL_PATTERN.match(value):
            raise ValidationError("Invalid email format", field="email")
        object.__setattr__(self, "value", value)

    @property
    def domain(self) -> str:
        return self.value.split("@", 1)[1]

    def __str__(self) -> str:
        return self.value


NAME_PATTERN = re.compile(r"^[^\W\d_]+(?:[ '\-][^\W\d_]+)*$")


@dataclass(frozen=True)
class PersonName:
    value: str

    def __post_init__(self) -> None:
        value = (self.value or "").strip()
        if len(value) < 2:
            raise ValidationError("Name must have at least 2 characters", field="name")
        if len(value) > 100:
            raise ValidationError("Name cannot exceed 100 characters", field="name")
        if not NAME_PATTERN.match(value):
            raise ValidationError(
                "Name may only contain letters, spaces, hyphens and apostrophes",
                field="name",
            )
        object.__setattr__(self, "value", value)

    @property
    def first_name(self) -> str:
        return self.value.split(" ", 1)[0]

    def __str__(self) -> str:
        return self.value


PASSWORD_ITERATIONS = 100_000
PASSWORD_PATTERN = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[^A-Za-z0-9]).{8,128}$"
)


@dataclass(frozen=True)
class PasswordHash:
    hash: str
    salt: str

    def __post_init__(self) -> None:
        if not self.hash or not self.salt:
            raise ValidationError("Password hash and salt are required", field="password")

    @classmethod
    def create(cls, plaintext: str) -> "PasswordHash":
        if not plaintext or not PASSWORD_PATTERN.match(plaintext):
            raise ValidationError(
                "Password must have 8-128 characters with upper and lower case "
                "letters, a digit and a special character",
                field="password",
            )
        salt = secrets.token_hex(16)
        return cls(_derive(plaintext, salt), salt)

    def verify(self, plaintext: str) -> bool:
        if not plaintext:
            return False
        return hmac.compare_digest(self.hash, _derive(plaintext, self.salt))


def _derive(plaintext: str, salt: str) -> str:
    digest = hashlib.pbkdf2_hmac(
        "sha256", plaintext.encode("utf-8"), salt.encode("utf-8"), PASSWORD_ITERATIONS
    )
    return digest.hex()
