from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Currency(Enum):
    TRY = "TRY"
    USD = "USD"
    EUR = "EUR"


class FineReason(Enum):
    OVERDUE = "overdue"
    DAMAGE = "damage"
    LOST = "lost"
    LATE_RETURN = "late_return"
    VIOLATION = "violation"
    OTHER = "other"


class FineStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    WAIVED = "waived"

    @property
    def is_active(self) -> bool:
        # only these count against the one-fine-per-loan rule
        return self in (FineStatus.PENDING, FineStatus.PAID)


class PaymentMethod(Enum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    ONLINE = "online"
    CHECK = "check"


@dataclass
class RatingSummary:
    average: float = 0.0
    count: int = 0


@dataclass
class Book:
    book_id: str
    title: str
    author: str
    library_id: str
    total_copies: int = 1
    available_copies: int = 1
    borrowed_by: List[str] = field(default_factory=list)
    isbn: str = ""
    category: str = ""
    rating: RatingSummary = field(default_factory=RatingSummary)
    active: bool = True


@dataclass
class User:
    user_id: str
    username: str
    email: str
    first_name: str = ""
    last_name: str = ""
    max_books: int = 5
    borrowed_books: List[str] = field(default_factory=list)
    active: bool = True

    @property
    def display_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or self.username

    def at_limit(self) -> bool:
        return len(self.borrowed_books) >= self.max_books


@dataclass
class BorrowRecord:
    record_id: str
    user_id: str
    book_id: str
    library_id: str
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    is_returned: bool = False
    fine: float = 0.0
    notes: Optional[str] = None

    def overdue_days(self, now: Optional[datetime] = None) -> int:
        """Whole days past the due date; zero or negative when not late."""
        now = now or utcnow()
        # timedelta.days floors, which matches floor(delta / 1 day) for negatives too
        return (now - self.due_date).days

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return not self.is_returned and self.due_date < now

    def close(
        self, when: datetime, fine: float, notes: Optional[str] = None
    ) -> None:
        if self.is_returned:
            raise ValueError(f"borrow record {self.record_id} is already closed")
        self.return_date = when
        self.is_returned = True
        self.fine = fine
        if notes:
            self.notes = notes


@dataclass
class Fine:
    fine_id: str
    user_id: str
    borrow_record_id: str
    book_id: str
    library_id: str
    amount: float
    days_overdue: int
    calculation_date: datetime
    due_date: datetime
    currency: Currency = Currency.TRY
    reason: FineReason = FineReason.OVERDUE
    description: str = ""
    status: FineStatus = FineStatus.PENDING
    is_paid: bool = False
    payment_date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    def pay(
        self,
        method: PaymentMethod,
        reference: Optional[str] = None,
        when: Optional[datetime] = None,
    ) -> None:
        self.status = FineStatus.PAID
        self.is_paid = True
        self.payment_date = when or utcnow()
        self.payment_method = method
        self.payment_reference = reference

    def annotate(self, text: str) -> None:
        self.description = f"{self.description} | {text}" if self.description else text


def payment_due(calculated_at: datetime, window_days: int) -> datetime:
    return calculated_at + timedelta(days=window_days)
