import logging
from datetime import timedelta

import pytest

import lendingdesk
from lendingdesk import ErrorKind, LibrarySystem, Outcome, seed_demo_data
from lendingdesk.errors import InternalError, LimitExceededError, NotFoundError

from conftest import NOW


def test_unexpected_store_failure_becomes_internal(lib, three_copies, member, monkeypatch):
    def broken_add(record):
        raise OSError("disk full")

    monkeypatch.setattr(lib.loans, "add", broken_add)

    outcome = lib.borrow(three_copies.book_id, member.user_id, now=NOW)

    assert outcome.kind is ErrorKind.INTERNAL
    assert "disk full" in outcome.message
    # the claimed copy is handed back
    assert three_copies.available_copies == 3
    assert three_copies.borrowed_by == []
    assert member.borrowed_books == []


def test_failure_while_closing_record_is_internal(lib, three_copies, member, monkeypatch):
    lib.borrow(three_copies.book_id, member.user_id, now=NOW).unwrap()

    def broken_remove(user_id, book_id):
        raise OSError("connection reset")

    monkeypatch.setattr(lib.users, "remove_borrowed", broken_remove)

    outcome = lib.return_book(three_copies.book_id, member.user_id, now=NOW)

    assert outcome.kind is ErrorKind.INTERNAL
    assert 0 <= three_copies.available_copies <= three_copies.total_copies


def test_outcome_unwrap_raises_matching_error():
    with pytest.raises(NotFoundError):
        Outcome.failure(ErrorKind.NOT_FOUND, "gone").unwrap()
    with pytest.raises(LimitExceededError):
        Outcome.failure(ErrorKind.LIMIT_EXCEEDED, "full").unwrap()
    with pytest.raises(InternalError):
        Outcome.failure(ErrorKind.INTERNAL, "boom").unwrap()
    assert Outcome.success(3).unwrap() == 3


def test_create_user_rejects_out_of_range_limit():
    s = LibrarySystem()
    assert s.create_user("x", "x@example.com", max_books=0).kind is ErrorKind.VALIDATION
    assert s.add_book("t", "a", "central", copies=0).kind is ErrorKind.VALIDATION


def test_inventory_report(lib, three_copies, member):
    lib.borrow(three_copies.book_id, member.user_id, now=NOW).unwrap()

    report = {book.title: (total, available) for book, total, available in lib.report_inventory()}

    assert report == {"Clean Code": (1, 1), "Refactoring": (3, 2)}


def test_seed_demo_data_flow():
    s = LibrarySystem()
    seed_demo_data(s, now=NOW)

    alice = next(u for u in s.users.list_all() if u.username == "alice")
    bob = next(u for u in s.users.list_all() if u.username == "bob")
    assert len(alice.borrowed_books) == 2
    assert s.borrow(alice.borrowed_books[0], bob.user_id, now=NOW).kind in (
        ErrorKind.LIMIT_EXCEEDED,
        ErrorKind.INELIGIBLE,
    )
    assert len(s.report_overdue(NOW)) == 2

    report = s.sweep_overdue_fines(now=NOW).unwrap()
    assert report.new_fines == 1
    assert report.details[0].fine_amount == 12.0


def test_report_overdue_moves_with_time(lib, three_copies, member):
    lib.borrow(three_copies.book_id, member.user_id, now=NOW).unwrap()
    assert lib.report_overdue(NOW) == []
    assert len(lib.report_overdue(NOW + timedelta(days=15))) == 1


def test_configure_logging_adds_single_handler():
    logger = logging.getLogger("lendingdesk")
    saved_handlers, saved_level = list(logger.handlers), logger.level
    try:
        lendingdesk.configure_logging(logging.DEBUG)
        lendingdesk.configure_logging(logging.DEBUG)
        streams = [h for h in logger.handlers if isinstance(h, logging.StreamHandler)]
        assert len(streams) == 1
        assert streams[0].formatter._fmt == lendingdesk.LOG_FORMAT
        assert logger.level == logging.DEBUG
    finally:
        logger.handlers = saved_handlers
        logger.setLevel(saved_level)


def test_rejections_are_logged(lib, member, caplog):
    with caplog.at_level(logging.INFO, logger="lendingdesk"):
        lib.borrow("bk_missing", member.user_id, now=NOW)
    assert any("borrow rejected" in r.getMessage() for r in caplog.records)
