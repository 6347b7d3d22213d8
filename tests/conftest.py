from datetime import datetime, timedelta, timezone

import pytest

from lendingdesk import LibrarySystem


NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def lib():
    """Fresh system with one single-copy book, one three-copy book and two members."""
    s = LibrarySystem()
    s.add_book("Clean Code", "Robert C. Martin", "central", copies=1).unwrap()
    s.add_book("Refactoring", "Martin Fowler", "central", copies=3).unwrap()
    s.create_user("apurv", "apurv@example.com", "Apurv", "Reader").unwrap()
    s.create_user("alex", "alex@example.com", "Alex", "Reader").unwrap()
    return s


@pytest.fixture
def single_copy(lib):
    return next(b for b in lib.books.list_books() if b.title == "Clean Code")


@pytest.fixture
def three_copies(lib):
    return next(b for b in lib.books.list_books() if b.title == "Refactoring")


@pytest.fixture
def member(lib):
    return next(u for u in lib.users.list_all() if u.username == "apurv")


@pytest.fixture
def other_member(lib):
    return next(u for u in lib.users.list_all() if u.username == "alex")


def borrow_overdue(lib, book, user, days_overdue, now=NOW):
    """Open a loan whose due date is ``days_overdue`` days before ``now``."""
    due = now - timedelta(days=days_overdue)
    return lib.borrow(
        book.book_id, user.user_id, due_date=due, now=due - timedelta(days=14)
    ).unwrap()
