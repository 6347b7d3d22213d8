from datetime import timedelta

import pytest

from lendingdesk import (
    Book,
    BookRepo,
    BorrowRecord,
    Fine,
    FineRepo,
    FineStatus,
    LoanRepo,
    User,
    UserRepo,
)
from lendingdesk.errors import InternalError

from conftest import NOW


def _fine(fine_id, record_id="loan_1", status=FineStatus.PENDING):
    return Fine(
        fine_id=fine_id,
        user_id="usr_1",
        borrow_record_id=record_id,
        book_id="bk_1",
        library_id="central",
        amount=4.0,
        days_overdue=16,
        calculation_date=NOW,
        due_date=NOW + timedelta(days=30),
        status=status,
    )


def test_get_active_hides_soft_deleted():
    books = BookRepo()
    books.add(Book("bk_1", "Dune", "Frank Herbert", "central", active=False))
    users = UserRepo()
    users.add(User("usr_1", "alice", "alice@example.com", active=False))

    assert books.get("bk_1") is not None
    assert books.get_active("bk_1") is None
    assert books.list_books() == []
    assert users.get_active("usr_1") is None


def test_checkout_copy_only_while_copies_remain():
    books = BookRepo()
    book = books.add(Book("bk_1", "Dune", "Frank Herbert", "central", total_copies=1, available_copies=1))

    assert books.checkout_copy("bk_1", "usr_1") is True
    assert books.checkout_copy("bk_1", "usr_2") is False
    assert book.available_copies == 0
    assert book.borrowed_by == ["usr_1"]


def test_release_copy_never_exceeds_total():
    books = BookRepo()
    book = books.add(Book("bk_1", "Dune", "Frank Herbert", "central", total_copies=2, available_copies=2))

    assert books.release_copy("bk_1", "usr_1") is False
    assert book.available_copies == 2
    assert books.release_copy("bk_missing", "usr_1") is False


def test_update_unknown_id_is_internal_error():
    with pytest.raises(InternalError):
        UserRepo().update("usr_missing", max_books=3)


def test_update_unknown_field_is_internal_error():
    users = UserRepo()
    users.add(User("usr_1", "alice", "alice@example.com"))
    with pytest.raises(InternalError):
        users.update("usr_1", nickname="al")


def test_add_if_no_active_keeps_one_fine_per_record():
    fines = FineRepo()
    first = fines.add_if_no_active(_fine("fine_1"))
    second = fines.add_if_no_active(_fine("fine_2"))

    assert second is first
    assert [f.fine_id for f in fines.list_all()] == ["fine_1"]
    assert fines.list_unpaid_by_user("usr_1") == [first]


def test_add_if_no_active_ignores_cancelled_and_waived():
    fines = FineRepo()
    fines.add(_fine("fine_1", status=FineStatus.CANCELLED))
    fines.add(_fine("fine_2", status=FineStatus.WAIVED))

    fresh = fines.add_if_no_active(_fine("fine_3"))

    assert fresh.fine_id == "fine_3"
    assert fines.total_unpaid("usr_1") == 4.0


def test_stamp_fine_only_on_open_loan():
    loans = LoanRepo()
    record = loans.add(
        BorrowRecord(
            record_id="loan_1",
            user_id="usr_1",
            book_id="bk_1",
            library_id="central",
            borrow_date=NOW - timedelta(days=40),
            due_date=NOW - timedelta(days=20),
        )
    )

    assert loans.stamp_fine_if_open("loan_1", 12.0) is True
    assert record.fine == 12.0

    loans.close("loan_1", NOW, 0.0)
    assert loans.stamp_fine_if_open("loan_1", 14.0) is False
    assert record.fine == 0.0
    assert loans.stamp_fine_if_open("loan_missing", 1.0) is False


def test_transition_applies_only_when_guard_holds():
    fines = FineRepo()
    fines.add(_fine("fine_1"))
    calls = []

    assert fines.transition("fine_1", (FineStatus.PAID,), calls.append) is None
    assert fines.transition("fine_1", (FineStatus.PENDING,), calls.append, owner="usr_2") is None
    assert fines.transition("fine_missing", (FineStatus.PENDING,), calls.append) is None
    assert calls == []

    moved = fines.transition(
        "fine_1",
        (FineStatus.PENDING,),
        lambda f: setattr(f, "status", FineStatus.WAIVED),
        owner="usr_1",
    )
    assert moved.status is FineStatus.WAIVED
    assert fines.transition("fine_1", (FineStatus.PENDING,), calls.append) is None
