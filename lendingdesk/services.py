from __future__ import annotations
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Union
import uuid

from .config import FinePolicy, LoanPolicy
from .domain import (
    Book,
    BorrowRecord,
    Fine,
    FineReason,
    FineStatus,
    PaymentMethod,
    User,
    payment_due,
    utcnow,
)
from .errors import (
    AlreadyBorrowedError,
    IneligibleError,
    InternalError,
    LimitExceededError,
    NotFoundError,
    ValidationError,
)
from .locks import KeyedLocks
from .repositories import BookRepo, FineRepo, LoanRepo, UserRepo

logger = logging.getLogger(__name__)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def _as_utc(value: datetime) -> datetime:
    # naive datetimes are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

_OPEN_STATUSES = (FineStatus.PENDING, FineStatus.PAID)


def _fine_filter(
    status: Optional[FineStatus] = None,
    library_id: Optional[str] = None,
    user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    start = _as_utc(start) if start else None
    end = _as_utc(end) if end else None

    def matches(f: Fine) -> bool:
        if not f.active:
            return False
        if status is not None and f.status is not status:
            return False
        if library_id is not None and f.library_id != library_id:
            return False
        if user_id is not None and f.user_id != user_id:
            return False
        if start is not None and f.calculation_date < start:
            return False
        if end is not None and f.calculation_date > end:
            return False
        return True

    return matches


@dataclass
class FineInfo:
    days_overdue: int
    computed_fine: float
    final_fine: float
    message: str
    fine: Optional[Fine] = None


@dataclass
class ReturnReceipt:
    record: BorrowRecord
    fine_info: FineInfo


@dataclass
class SweepDetail:
    borrow_record_id: str
    user_id: str
    user_name: str
    book_title: str
    days_overdue: int
    fine_amount: float
    status: str  # "created" or "updated"


@dataclass
class SweepReport:
    processed: int = 0
    new_fines: int = 0
    updated_fines: int = 0
    details: List[SweepDetail] = field(default_factory=list)


@dataclass
class FineSummary:
    unpaid_amount: float
    unpaid_count: int
    currency: str


class CatalogService:
    def __init__(self, books: BookRepo) -> None:
        self.books = books

    def add_book(
        self,
        title: str,
        author: str,
        library_id: str,
        copies: int = 1,
        isbn: str = "",
        category: str = "",
    ) -> Book:
        if copies < 1:
            raise ValidationError("a book needs at least one copy")
        b = Book(
            book_id=_new_id("bk"),
            title=title,
            author=author,
            library_id=library_id,
            total_copies=copies,
            available_copies=copies,
            isbn=isbn,
            category=category,
        )
        self.books.add(b)
        logger.info("Book added | book_id=%s copies=%s", b.book_id, copies)
        return b

    def get_book(self, book_id: str) -> Book:
        book = self.books.get_active(book_id)
        if book is None:
            raise NotFoundError(f"Book not found: book_id={book_id}")
        return book

    def deactivate_book(self, book_id: str) -> Book:
        book = self.get_book(book_id)
        if book.borrowed_by:
            raise IneligibleError(f"Book {book_id} is on loan and cannot be removed")
        self.books.update(book_id, active=False)
        logger.info("Book deactivated | book_id=%s", book_id)
        return book


class MembershipService:
    def __init__(self, users: UserRepo, policy: Optional[LoanPolicy] = None) -> None:
        self.users = users
        self.policy = policy or LoanPolicy()

    def register_user(
        self,
        username: str,
        email: str,
        first_name: str = "",
        last_name: str = "",
        max_books: Optional[int] = None,
    ) -> User:
        limit = self.policy.default_max_books if max_books is None else max_books
        if not 1 <= limit <= 20:
            raise ValidationError("max_books must be between 1 and 20")
        u = User(
            user_id=_new_id("usr"),
            username=username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            max_books=limit,
        )
        self.users.add(u)
        logger.info("User registered | user_id=%s max_books=%s", u.user_id, limit)
        return u

    def get_user(self, user_id: str) -> User:
        user = self.users.get_active(user_id)
        if user is None:
            raise NotFoundError(f"User not found: user_id={user_id}")
        return user

    def deactivate_user(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if user.borrowed_books:
            raise IneligibleError(
                f"User {user_id} still holds {len(user.borrowed_books)} book(s)"
            )
        self.users.update(user_id, active=False)
        logger.info("User deactivated | user_id=%s", user_id)
        return user


class FineService:
    """Overdue fine policy: assessment, the batch sweep, payment and cancellation."""

    def __init__(
        self,
        fines: FineRepo,
        loans: LoanRepo,
        users: UserRepo,
        books: BookRepo,
        policy: Optional[FinePolicy] = None,
    ) -> None:
        self.fines = fines
        self.loans = loans
        self.users = users
        self.books = books
        self.policy = policy or FinePolicy()

    def settings(self) -> Dict[str, Any]:
        return self.policy.as_dict()

    def open_overdue_fine(
        self, record: BorrowRecord, days_overdue: int, amount: float, now: datetime
    ) -> Tuple[Fine, bool]:
        """Create the overdue fine for ``record`` unless one is already active.

        Returns the fine holding the slot and whether it was created by this call.
        """
        fine_days = self.policy.fine_days(days_overdue)
        candidate = Fine(
            fine_id=_new_id("fine"),
            user_id=record.user_id,
            borrow_record_id=record.record_id,
            book_id=record.book_id,
            library_id=record.library_id,
            amount=amount,
            days_overdue=days_overdue,
            calculation_date=now,
            due_date=payment_due(now, self.policy.payment_due_days),
            currency=self.policy.currency,
            reason=FineReason.OVERDUE,
            description=f"{fine_days} day(s) overdue fine",
            created_at=now,
        )
        fine = self.fines.add_if_no_active(candidate)
        created = fine is candidate
        if created:
            logger.info(
                "Fine created | fine_id=%s record_id=%s amount=%.2f",
                fine.fine_id, record.record_id, amount,
            )
        return fine, created

    def sweep_overdue_fines(self, now: Optional[datetime] = None) -> SweepReport:
        """Create or refresh overdue fines for every open loan past its due date.

        Amounts are derived from the loan each time, so running the sweep twice
        on the same day leaves the same amounts behind.
        """
        now = _as_utc(now or utcnow())
        logger.info("sweep_overdue_fines called | now=%s", now.isoformat())
        report = SweepReport()

        for record in self.loans.list_overdue(now):
            current = self.loans.get(record.record_id)
            if current is None or current.is_returned:
                # returned after the overdue list was taken
                continue
            days_overdue = record.overdue_days(now)
            if days_overdue <= self.policy.grace_period_days:
                continue
            amount = self.policy.amount_for(days_overdue)

            fine, created = self.open_overdue_fine(record, days_overdue, amount, now)
            if created:
                if not self.loans.stamp_fine_if_open(record.record_id, amount):
                    logger.warning(
                        "Loan closed before its fine was stamped | record_id=%s fine_id=%s",
                        record.record_id, fine.fine_id,
                    )
                report.new_fines += 1
                status = "created"
            else:
                # fines keep growing while the loan stays out

                def refresh(f: Fine) -> None:
                    f.amount = amount
                    f.days_overdue = days_overdue
                    f.calculation_date = now

                if self.fines.transition(fine.fine_id, _OPEN_STATUSES, refresh) is None:
                    continue
                report.updated_fines += 1
                status = "updated"

            user = self.users.get(record.user_id)
            book = self.books.get(record.book_id)
            report.details.append(
                SweepDetail(
                    borrow_record_id=record.record_id,
                    user_id=record.user_id,
                    user_name=user.display_name if user else "",
                    book_title=book.title if book else "",
                    days_overdue=days_overdue,
                    fine_amount=amount,
                    status=status,
                )
            )
            report.processed += 1

        logger.info(
            "Sweep finished | processed=%s new=%s updated=%s",
            report.processed, report.new_fines, report.updated_fines,
        )
        return report

    def pay_fine(
        self,
        fine_id: str,
        payer_id: str,
        method: Union[PaymentMethod, str],
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Fine:
        logger.info("pay_fine called | fine_id=%s payer_id=%s", fine_id, payer_id)
        method = self._payment_method(method)
        when = _as_utc(now or utcnow())

        def settle(f: Fine) -> None:
            f.pay(method, reference, when)
            if notes:
                f.annotate(f"Payment note: {notes}")

        fine = self.fines.transition(
            fine_id, (FineStatus.PENDING,), settle, owner=payer_id
        )
        if fine is None:
            raise NotFoundError(f"Fine not found or already paid: fine_id={fine_id}")
        logger.info("Fine paid | fine_id=%s method=%s", fine_id, method.value)
        return fine

    def cancel_fine(self, fine_id: str, reason: Optional[str] = None) -> Fine:
        logger.info("cancel_fine called | fine_id=%s", fine_id)

        def cancel(f: Fine) -> None:
            f.status = FineStatus.CANCELLED
            f.annotate(f"Cancellation reason: {reason or 'cancelled by administrator'}")

        fine = self.fines.transition(fine_id, _OPEN_STATUSES, cancel)
        if fine is None:
            raise NotFoundError(f"Fine not found: fine_id={fine_id}")
        logger.info("Fine cancelled | fine_id=%s", fine_id)
        return fine

    def waive_fine(self, fine_id: str, reason: Optional[str] = None) -> Fine:
        logger.info("waive_fine called | fine_id=%s", fine_id)

        def waive(f: Fine) -> None:
            f.status = FineStatus.WAIVED
            f.annotate(f"Waiver reason: {reason or 'waived by administrator'}")

        fine = self.fines.transition(fine_id, (FineStatus.PENDING,), waive)
        if fine is None:
            raise NotFoundError(f"Fine not found or not pending: fine_id={fine_id}")
        logger.info("Fine waived | fine_id=%s", fine_id)
        return fine

    def list_user_fines(
        self, user_id: str, status: Optional[FineStatus] = None
    ) -> Tuple[List[Fine], FineSummary]:
        fines = self.fines.list_by_user(user_id, status)
        unpaid = self.fines.list_unpaid_by_user(user_id)
        summary = FineSummary(
            unpaid_amount=self.fines.total_unpaid(user_id),
            unpaid_count=len(unpaid),
            currency=self.policy.currency.value,
        )
        return fines, summary

    def list_fines(
        self,
        status: Optional[FineStatus] = None,
        library_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Tuple[List[Fine], Dict[str, Dict[str, Any]]]:
        """Administrative listing across all members, newest first.

        The second value totals the matching fines per status, keyed by the
        status value.
        """
        logger.info(
            "list_fines called | status=%s library_id=%s user_id=%s",
            status.value if status else None, library_id, user_id,
        )
        fines = self.fines.find(
            _fine_filter(status, library_id, user_id, start, end)
        )
        fines.sort(key=lambda f: f.created_at, reverse=True)
        totals: Dict[str, Dict[str, Any]] = {}
        for f in fines:
            bucket = totals.setdefault(f.status.value, {"count": 0, "amount": 0.0})
            bucket["count"] += 1
            bucket["amount"] += f.amount
        return fines, totals

    def statistics(
        self,
        library_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        fines = self.fines.find(_fine_filter(library_id=library_id, start=start, end=end))
        paid = [f for f in fines if f.status is FineStatus.PAID]
        pending = [f for f in fines if f.status is FineStatus.PENDING]
        general = {
            "total_fines": len(fines),
            "total_amount": sum(f.amount for f in fines),
            "paid_fines": len(paid),
            "paid_amount": sum(f.amount for f in paid),
            "pending_fines": len(pending),
            "pending_amount": sum(f.amount for f in pending),
        }

        months: Dict[tuple, List[Fine]] = defaultdict(list)
        for f in fines:
            months[(f.calculation_date.year, f.calculation_date.month)].append(f)
        trend = [
            {
                "year": year,
                "month": month,
                "total_fines": len(items),
                "total_amount": sum(f.amount for f in items),
            }
            for (year, month), items in sorted(months.items(), reverse=True)[:12]
        ]
        return {"general": general, "monthly_trend": trend, "settings": self.settings()}

    @staticmethod
    def _payment_method(method: Union[PaymentMethod, str]) -> PaymentMethod:
        if isinstance(method, PaymentMethod):
            return method
        try:
            return PaymentMethod(str(method).lower())
        except ValueError:
            raise ValidationError(f"Unsupported payment method: {method!r}") from None


class CirculationService:
    """Borrow and return: keeps book counters, member lists and loans in step."""

    def __init__(
        self,
        users: UserRepo,
        books: BookRepo,
        loans: LoanRepo,
        fines: FineService,
        policy: Optional[LoanPolicy] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        self.users = users
        self.books = books
        self.loans = loans
        self.fines = fines
        self.policy = policy or LoanPolicy()
        self.locks = locks or KeyedLocks()

    def borrow(
        self,
        book_id: str,
        user_id: str,
        due_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> BorrowRecord:
        logger.info("borrow called | book_id=%s user_id=%s", book_id, user_id)
        now = _as_utc(now or utcnow())
        if due_date is None:
            due_date = now + timedelta(days=self.policy.default_loan_days)
        due_date = _as_utc(due_date)
        if due_date < now:
            raise ValidationError("due_date must not be in the past")

        with self.locks.holding(f"user:{user_id}", f"book:{book_id}"):
            book = self.books.get_active(book_id)
            if book is None:
                raise NotFoundError(f"Book not found: book_id={book_id}")
            if book.available_copies <= 0:
                raise IneligibleError(f"Book {book_id} is not available")
            user = self.users.get_active(user_id)
            if user is None:
                raise NotFoundError(f"User not found: user_id={user_id}")
            if user.at_limit():
                raise LimitExceededError(
                    f"User {user_id} reached the limit of {user.max_books} book(s)"
                )
            if book_id in user.borrowed_books:
                raise AlreadyBorrowedError(f"User {user_id} already borrowed book {book_id}")

            # conditional decrement also covers callers that bypass the locks
            if not self.books.checkout_copy(book_id, user_id):
                raise IneligibleError(f"Book {book_id} is not available")

            record = BorrowRecord(
                record_id=_new_id("loan"),
                user_id=user_id,
                book_id=book_id,
                library_id=book.library_id,
                borrow_date=now,
                due_date=due_date,
            )
            written = False
            try:
                self.loans.add(record)
                written = True
                self.users.add_borrowed(user_id, book_id)
            except Exception as exc:
                logger.error(
                    "Borrow failed after copy was taken | book_id=%s user_id=%s record_id=%s record_written=%s",
                    book_id, user_id, record.record_id, written,
                )
                if not written:
                    self.books.release_copy(book_id, user_id)
                raise InternalError(f"Borrow of {book_id} by {user_id} failed: {exc}") from exc

        logger.info(
            "Borrow successful | record_id=%s due=%s", record.record_id, due_date.date()
        )
        return record

    def return_book(
        self,
        book_id: str,
        user_id: str,
        notes: Optional[str] = None,
        manual_fine: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> ReturnReceipt:
        logger.info("return_book called | book_id=%s user_id=%s", book_id, user_id)
        now = _as_utc(now or utcnow())
        if manual_fine is not None and manual_fine < 0:
            raise ValidationError("manual_fine cannot be negative")

        with self.locks.holding(f"user:{user_id}", f"book:{book_id}"):
            record = self.loans.find_open(user_id, book_id)
            if record is None:
                raise NotFoundError(
                    f"No open loan for user_id={user_id} book_id={book_id}"
                )

            policy = self.fines.policy
            days_overdue = record.overdue_days(now)
            computed = 0.0
            fine: Optional[Fine] = None
            if days_overdue > policy.grace_period_days:
                computed = policy.amount_for(days_overdue)
                message = (
                    f"{policy.fine_days(days_overdue)} day(s) overdue past the grace period, "
                    f"fine of {computed:.2f} {policy.currency.value}"
                )
                if computed > 0:
                    fine, _ = self.fines.open_overdue_fine(
                        record, days_overdue, computed, now
                    )
            elif days_overdue > 0:
                message = (
                    f"{days_overdue} day(s) overdue, within the "
                    f"{policy.grace_period_days}-day grace period, no fine"
                )
            else:
                message = "Returned on time, no fine"

            final = computed if manual_fine is None else float(manual_fine)
            if manual_fine is not None:
                logger.warning(
                    "Manual fine override | record_id=%s computed=%.2f final=%.2f",
                    record.record_id, computed, final,
                )

            steps: List[str] = []
            try:
                self.loans.close(record.record_id, now, final, notes)
                steps.append("record closed")
                released = self.books.release_copy(book_id, user_id)
                steps.append("copy released" if released else "copy not released")
                self.users.remove_borrowed(user_id, book_id)
                steps.append("member updated")
            except Exception as exc:
                logger.error(
                    "Return left partial state | record_id=%s done=%s",
                    record.record_id, steps,
                )
                raise InternalError(f"Return of {book_id} by {user_id} failed: {exc}") from exc
            if not released:
                logger.error(
                    "Return needs reconciliation | record_id=%s done=%s",
                    record.record_id, steps,
                )
                raise InternalError(f"Book {book_id} counters could not be restored")

        logger.info(
            "Return successful | record_id=%s days_overdue=%s fine=%.2f",
            record.record_id, days_overdue, final,
        )
        return ReturnReceipt(
            record=record,
            fine_info=FineInfo(
                days_overdue=days_overdue,
                computed_fine=computed,
                final_fine=final,
                message=message,
                fine=fine,
            ),
        )

    def list_user_loans(self, user_id: str, open_only: bool = False) -> List[BorrowRecord]:
        loans = self.loans.list_by_user(user_id)
        if open_only:
            return [r for r in loans if not r.is_returned]
        return loans

    def list_overdue_loans(self, now: Optional[datetime] = None) -> List[BorrowRecord]:
        return self.loans.list_overdue(_as_utc(now) if now else None)
