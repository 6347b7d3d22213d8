from __future__ import annotations
import logging
from datetime import datetime
from threading import Lock
from typing import Callable, Collection, Dict, Generic, List, Optional, TypeVar

from .domain import Book, BorrowRecord, Fine, FineStatus, User, utcnow
from .errors import InternalError

logger = logging.getLogger(__name__)

D = TypeVar("D")


class _DocumentRepo(Generic[D]):
    """Dict-backed document store: find by filter, update by id, no transactions."""

    kind = "document"

    def __init__(self) -> None:
        self._docs: Dict[str, D] = {}
        self._lock = Lock()

    def _key(self, doc: D) -> str:
        raise NotImplementedError

    def add(self, doc: D) -> D:
        with self._lock:
            self._docs[self._key(doc)] = doc
        return doc

    def get(self, doc_id: str) -> Optional[D]:
        return self._docs.get(doc_id)

    def find(self, predicate: Callable[[D], bool]) -> List[D]:
        with self._lock:
            docs = list(self._docs.values())
        return [d for d in docs if predicate(d)]

    def find_one(self, predicate: Callable[[D], bool]) -> Optional[D]:
        found = self.find(predicate)
        return found[0] if found else None

    def list_all(self) -> List[D]:
        return self.find(lambda _: True)

    def update(self, doc_id: str, **changes) -> D:
        with self._lock:
            doc = self._docs.get(doc_id)
            if doc is None:
                raise InternalError(f"{self.kind} {doc_id} vanished during update")
            for name, value in changes.items():
                if not hasattr(doc, name):
                    raise InternalError(f"{self.kind} has no field {name!r}")
                setattr(doc, name, value)
            return doc


class BookRepo(_DocumentRepo[Book]):
    kind = "book"

    def _key(self, doc: Book) -> str:
        return doc.book_id

    def get_active(self, book_id: str) -> Optional[Book]:
        book = self.get(book_id)
        return book if book is not None and book.active else None

    def list_books(self) -> List[Book]:
        return self.find(lambda b: b.active)

    def checkout_copy(self, book_id: str, user_id: str) -> bool:
        """Take one copy for ``user_id`` if any is left; False when none are."""
        with self._lock:
            book = self._docs.get(book_id)
            if book is None or not book.active or book.available_copies <= 0:
                return False
            book.available_copies -= 1
            book.borrowed_by.append(user_id)
            return True

    def release_copy(self, book_id: str, user_id: str) -> bool:
        """Put one copy back; False if the counters are already full."""
        with self._lock:
            book = self._docs.get(book_id)
            if book is None:
                return False
            if user_id in book.borrowed_by:
                book.borrowed_by.remove(user_id)
            if book.available_copies >= book.total_copies:
                logger.error(
                    "release_copy would exceed total | book_id=%s available=%s total=%s",
                    book_id, book.available_copies, book.total_copies,
                )
                return False
            book.available_copies += 1
            return True


class UserRepo(_DocumentRepo[User]):
    kind = "user"

    def _key(self, doc: User) -> str:
        return doc.user_id

    def get_active(self, user_id: str) -> Optional[User]:
        user = self.get(user_id)
        return user if user is not None and user.active else None

    def add_borrowed(self, user_id: str, book_id: str) -> None:
        with self._lock:
            user = self._docs.get(user_id)
            if user is None:
                raise InternalError(f"user {user_id} vanished during borrow")
            if book_id not in user.borrowed_books:
                user.borrowed_books.append(book_id)

    def remove_borrowed(self, user_id: str, book_id: str) -> None:
        with self._lock:
            user = self._docs.get(user_id)
            if user is None:
                raise InternalError(f"user {user_id} vanished during return")
            if book_id in user.borrowed_books:
                user.borrowed_books.remove(book_id)


class LoanRepo(_DocumentRepo[BorrowRecord]):
    kind = "borrow record"

    def _key(self, doc: BorrowRecord) -> str:
        return doc.record_id

    def find_open(self, user_id: str, book_id: str) -> Optional[BorrowRecord]:
        return self.find_one(
            lambda r: r.user_id == user_id and r.book_id == book_id and not r.is_returned
        )

    def close(
        self, record_id: str, when: datetime, fine: float, notes: Optional[str] = None
    ) -> BorrowRecord:
        with self._lock:
            record = self._docs.get(record_id)
            if record is None:
                raise InternalError(f"borrow record {record_id} vanished during return")
            record.close(when, fine, notes)
            return record

    def stamp_fine_if_open(self, record_id: str, amount: float) -> bool:
        """Record a running fine on a loan; False once the loan has been returned."""
        with self._lock:
            record = self._docs.get(record_id)
            if record is None or record.is_returned:
                return False
            record.fine = amount
            return True

    def list_by_user(self, user_id: str) -> List[BorrowRecord]:
        items = self.find(lambda r: r.user_id == user_id)
        return sorted(items, key=lambda r: r.borrow_date)

    def list_overdue(self, now: Optional[datetime] = None) -> List[BorrowRecord]:
        now = now or utcnow()
        items = self.find(lambda r: r.is_overdue(now))
        return sorted(items, key=lambda r: r.due_date)


class FineRepo(_DocumentRepo[Fine]):
    kind = "fine"

    def _key(self, doc: Fine) -> str:
        return doc.fine_id

    def add_if_no_active(self, fine: Fine) -> Fine:
        """Insert ``fine`` unless its loan already has a pending or paid fine.

        Returns the fine that now holds the slot: the new one, or the one that
        was already there.
        """
        with self._lock:
            for existing in self._docs.values():
                if (
                    existing.active
                    and existing.borrow_record_id == fine.borrow_record_id
                    and existing.status.is_active
                ):
                    return existing
            self._docs[fine.fine_id] = fine
            return fine

    def list_by_user(
        self, user_id: str, status: Optional[FineStatus] = None
    ) -> List[Fine]:
        items = self.find(
            lambda f: f.active
            and f.user_id == user_id
            and (status is None or f.status == status)
        )
        # newest first
        return sorted(items, key=lambda f: f.created_at, reverse=True)

    def list_unpaid_by_user(self, user_id: str) -> List[Fine]:
        return self.list_by_user(user_id, FineStatus.PENDING)

    def total_unpaid(self, user_id: str) -> float:
        return sum(f.amount for f in self.list_unpaid_by_user(user_id))

    def transition(
        self,
        fine_id: str,
        allowed: Collection[FineStatus],
        apply: Callable[[Fine], None],
        owner: Optional[str] = None,
    ) -> Optional[Fine]:
        """Apply ``apply`` to the fine only if it is active, in ``allowed`` and owned by ``owner``.

        Returns None when the guard fails; nothing is changed in that case.
        """
        with self._lock:
            fine = self._docs.get(fine_id)
            if (
                fine is None
                or not fine.active
                or fine.status not in allowed
                or (owner is not None and fine.user_id != owner)
            ):
                return None
            apply(fine)
            return fine
