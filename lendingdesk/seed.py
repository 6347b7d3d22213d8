from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Optional

from .api import LibrarySystem
from .domain import utcnow

logger = logging.getLogger(__name__)


def seed_demo_data(sys: LibrarySystem, now: Optional[datetime] = None) -> None:
    now = now or utcnow()

    # users
    alice = sys.create_user("alice", "alice@example.com", "Alice", "Reader").unwrap()
    bob = sys.create_user("bob", "bob@example.com", "Bob", "Borrower", max_books=1).unwrap()
    sys.create_user("ava", "ava@example.com", "Ava", "Admin")

    # books
    dune = sys.add_book(
        "Dune", "Frank Herbert", "central", copies=2, isbn="9780441172719", category="sci-fi"
    ).unwrap()
    hp1 = sys.add_book(
        "Harry Potter and the Sorcerer's Stone",
        "J.K. Rowling",
        "central",
        copies=1,
        isbn="9780590353427",
        category="fantasy",
    ).unwrap()
    clean_code = sys.add_book(
        "Clean Code", "Robert C. Martin", "east-branch", copies=3, isbn="9780132350884"
    ).unwrap()

    # loans; Dune was taken out long ago and is now 20 days past due
    sys.borrow(dune.book_id, alice.user_id, now=now - timedelta(days=34)).unwrap()
    sys.borrow(clean_code.book_id, alice.user_id, now=now).unwrap()
    sys.borrow(hp1.book_id, bob.user_id, now=now - timedelta(days=20)).unwrap()

    logger.info(
        "Demo data loaded | users=%s books=%s loans=%s",
        len(sys.users.list_all()), len(sys.books.list_books()), len(sys.loans.list_all()),
    )
