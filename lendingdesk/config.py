"""Lending and fine policy settings.

Defaults match the library's published rules: 14 days of grace after the due
date, then 2.0 per day capped at 100.0, payable within 30 days. Each value can
be overridden through a ``LENDINGDESK_*`` environment variable.
"""

from __future__ import annotations
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from .domain import Currency

ENV_PREFIX = "LENDINGDESK_"


def _env(environ: Mapping[str, str], name: str) -> Optional[str]:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = _env(environ, name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = _env(environ, name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class FinePolicy:
    grace_period_days: int = 14
    daily_rate: float = 2.0
    max_amount: float = 100.0
    currency: Currency = Currency.TRY
    payment_due_days: int = 30

    def __post_init__(self) -> None:
        if self.grace_period_days < 0:
            raise ValueError("grace_period_days cannot be negative")
        if self.daily_rate < 0 or self.max_amount < 0:
            raise ValueError("fine rates cannot be negative")
        if self.payment_due_days < 1:
            raise ValueError("payment_due_days must be at least 1")

    def fine_days(self, days_overdue: int) -> int:
        return max(0, days_overdue - self.grace_period_days)

    def amount_for(self, days_overdue: int) -> float:
        """Fine owed for ``days_overdue``; zero while inside the grace window."""
        return min(self.fine_days(days_overdue) * self.daily_rate, self.max_amount)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["currency"] = self.currency.value
        return data

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FinePolicy":
        environ = os.environ if environ is None else environ
        currency = _env(environ, "CURRENCY")
        try:
            parsed_currency = Currency(currency.upper()) if currency else Currency.TRY
        except ValueError:
            raise ValueError(f"{ENV_PREFIX}CURRENCY is not supported: {currency!r}") from None
        return cls(
            grace_period_days=_env_int(environ, "GRACE_PERIOD_DAYS", 14),
            daily_rate=_env_float(environ, "DAILY_FINE_RATE", 2.0),
            max_amount=_env_float(environ, "MAX_FINE_AMOUNT", 100.0),
            currency=parsed_currency,
            payment_due_days=_env_int(environ, "PAYMENT_DUE_DAYS", 30),
        )


@dataclass(frozen=True)
class LoanPolicy:
    default_loan_days: int = 14
    default_max_books: int = 5

    def __post_init__(self) -> None:
        if self.default_loan_days < 1:
            raise ValueError("default_loan_days must be at least 1")
        if not 1 <= self.default_max_books <= 20:
            raise ValueError("default_max_books must be between 1 and 20")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LoanPolicy":
        environ = os.environ if environ is None else environ
        return cls(
            default_loan_days=_env_int(environ, "DEFAULT_LOAN_DAYS", 14),
            default_max_books=_env_int(environ, "DEFAULT_MAX_BOOKS", 5),
        )
