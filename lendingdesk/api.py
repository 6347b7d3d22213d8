from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from .config import FinePolicy, LoanPolicy
from .domain import Book, BorrowRecord, Fine, FineStatus, PaymentMethod, User
from .errors import ErrorKind, LendingError, Outcome
from .locks import KeyedLocks
from .repositories import BookRepo, FineRepo, LoanRepo, UserRepo
from .services import (
    CatalogService,
    CirculationService,
    FineService,
    FineSummary,
    MembershipService,
    ReturnReceipt,
    SweepReport,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LibrarySystem:
    """
    A facade that wires repos + services and offers a compact API.

    Every call returns an ``Outcome``: either the value or an error kind with
    a message. Nothing raises out of this class.
    """

    def __init__(
        self,
        fine_policy: Optional[FinePolicy] = None,
        loan_policy: Optional[LoanPolicy] = None,
    ) -> None:
        self.fine_policy = fine_policy or FinePolicy()
        self.loan_policy = loan_policy or LoanPolicy()

        # repos
        self.users = UserRepo()
        self.books = BookRepo()
        self.loans = LoanRepo()
        self.fines = FineRepo()

        # services
        self.membership = MembershipService(self.users, self.loan_policy)
        self.catalog = CatalogService(self.books)
        self.fine_service = FineService(
            self.fines, self.loans, self.users, self.books, self.fine_policy
        )
        self.circulation = CirculationService(
            self.users,
            self.books,
            self.loans,
            self.fine_service,
            self.loan_policy,
            KeyedLocks(),
        )

    @classmethod
    def from_env(cls) -> "LibrarySystem":
        return cls(FinePolicy.from_env(), LoanPolicy.from_env())

    @staticmethod
    def _run(op: str, call: Callable[[], T]) -> Outcome[T]:
        try:
            return Outcome.success(call())
        except LendingError as exc:
            logger.info("%s rejected | kind=%s reason=%s", op, exc.kind.value, exc.message)
            return Outcome.failure(exc.kind, exc.message)
        except Exception as exc:
            logger.exception("%s failed unexpectedly", op)
            return Outcome.failure(ErrorKind.INTERNAL, f"{op} failed: {exc}")

    # ---- membership
    def create_user(
        self,
        username: str,
        email: str,
        first_name: str = "",
        last_name: str = "",
        max_books: Optional[int] = None,
    ) -> Outcome[User]:
        return self._run(
            "create_user",
            lambda: self.membership.register_user(
                username, email, first_name, last_name, max_books
            ),
        )

    def deactivate_user(self, user_id: str) -> Outcome[User]:
        return self._run("deactivate_user", lambda: self.membership.deactivate_user(user_id))

    # ---- catalog
    def add_book(
        self,
        title: str,
        author: str,
        library_id: str,
        copies: int = 1,
        isbn: str = "",
        category: str = "",
    ) -> Outcome[Book]:
        return self._run(
            "add_book",
            lambda: self.catalog.add_book(title, author, library_id, copies, isbn, category),
        )

    def deactivate_book(self, book_id: str) -> Outcome[Book]:
        return self._run("deactivate_book", lambda: self.catalog.deactivate_book(book_id))

    # ---- circulation
    def borrow(
        self,
        book_id: str,
        user_id: str,
        due_date: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[BorrowRecord]:
        return self._run(
            "borrow", lambda: self.circulation.borrow(book_id, user_id, due_date, now)
        )

    def return_book(
        self,
        book_id: str,
        user_id: str,
        notes: Optional[str] = None,
        manual_fine: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Outcome[ReturnReceipt]:
        return self._run(
            "return_book",
            lambda: self.circulation.return_book(book_id, user_id, notes, manual_fine, now),
        )

    def user_loans(self, user_id: str, open_only: bool = False) -> List[BorrowRecord]:
        return self.circulation.list_user_loans(user_id, open_only)

    # ---- fines
    def sweep_overdue_fines(self, now: Optional[datetime] = None) -> Outcome[SweepReport]:
        return self._run("sweep_overdue_fines", lambda: self.fine_service.sweep_overdue_fines(now))

    def pay_fine(
        self,
        fine_id: str,
        payer_id: str,
        method: Union[PaymentMethod, str],
        reference: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Outcome[Fine]:
        return self._run(
            "pay_fine",
            lambda: self.fine_service.pay_fine(fine_id, payer_id, method, reference, notes),
        )

    def cancel_fine(self, fine_id: str, reason: Optional[str] = None) -> Outcome[Fine]:
        return self._run("cancel_fine", lambda: self.fine_service.cancel_fine(fine_id, reason))

    def waive_fine(self, fine_id: str, reason: Optional[str] = None) -> Outcome[Fine]:
        return self._run("waive_fine", lambda: self.fine_service.waive_fine(fine_id, reason))

    def user_fines(
        self, user_id: str, status: Optional[FineStatus] = None
    ) -> Tuple[List[Fine], FineSummary]:
        return self.fine_service.list_user_fines(user_id, status)

    def list_fines(
        self,
        status: Optional[FineStatus] = None,
        library_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Tuple[List[Fine], Dict[str, Dict[str, Any]]]:
        return self.fine_service.list_fines(status, library_id, user_id, start, end)

    def fine_statistics(
        self,
        library_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        return self.fine_service.statistics(library_id, start, end)

    def fine_settings(self) -> Dict[str, Any]:
        return self.fine_service.settings()

    # ---- reporting
    def report_overdue(self, now: Optional[datetime] = None) -> List[BorrowRecord]:
        return self.circulation.list_overdue_loans(now)

    def report_inventory(self) -> List[Tuple[Book, int, int]]:
        """
        Returns tuples of (Book, total_copies, available_copies)
        """
        return [
            (book, book.total_copies, book.available_copies)
            for book in self.books.list_books()
        ]
