from __future__ import annotations

from lendingdesk import LibrarySystem, configure_logging, seed_demo_data
from lendingdesk.domain import PaymentMethod


def demo_flow() -> None:
    configure_logging()
    sys = LibrarySystem.from_env()
    seed_demo_data(sys)

    alice = next(u for u in sys.users.list_all() if u.username == "alice")
    bob = next(u for u in sys.users.list_all() if u.username == "bob")
    dune = next(b for b in sys.books.list_books() if b.title == "Dune")
    hp1 = next(b for b in sys.books.list_books() if b.title.startswith("Harry Potter"))

    # Report inventory
    print("\n[demo] inventory:")
    for book, total, available in sys.report_inventory():
        print(f"  - {book.title}: total={total}, available={available}")

    # Bob is at his limit of one book
    attempt = sys.borrow(dune.book_id, bob.user_id)
    print("\n[demo] Bob tries a second book:", attempt.kind.value if attempt.kind else "OK")

    # Sweep overdue loans
    report = sys.sweep_overdue_fines().unwrap()
    print(
        f"\n[demo] sweep: processed={report.processed} "
        f"new={report.new_fines} updated={report.updated_fines}"
    )
    for d in report.details:
        print(f"  - {d.user_name}: {d.book_title} {d.days_overdue}d -> {d.fine_amount:.2f} ({d.status})")

    # Return the overdue book; the sweep already opened its fine
    receipt = sys.return_book(dune.book_id, alice.user_id, notes="cover worn").unwrap()
    print(f"\n[demo] Alice returns Dune: {receipt.fine_info.message}")

    # Bob returns inside the grace period
    receipt = sys.return_book(hp1.book_id, bob.user_id).unwrap()
    print(f"[demo] Bob returns HP1: {receipt.fine_info.message}")

    # Pay fines
    fines, summary = sys.user_fines(alice.user_id)
    print(f"\n[demo] Alice owes {summary.unpaid_amount:.2f} {summary.currency}")
    for fine in fines:
        paid = sys.pay_fine(fine.fine_id, alice.user_id, PaymentMethod.CARD, "demo-001")
        print(f"  - paid {fine.fine_id}: {paid.ok}")
        again = sys.pay_fine(fine.fine_id, alice.user_id, PaymentMethod.CARD)
        print(f"  - paying twice: {again.kind.value if again.kind else 'OK'}")

    # Show overdue report (should be empty if all returned)
    print("\n[demo] overdue loans:", [l.record_id for l in sys.report_overdue()])
    print("[demo] fine stats:", sys.fine_statistics()["general"])


if __name__ == "__main__":
    demo_flow()
