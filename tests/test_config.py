import pytest

from lendingdesk import Currency, FinePolicy, LibrarySystem, LoanPolicy


def test_fine_policy_defaults():
    p = FinePolicy()
    assert p.grace_period_days == 14
    assert p.daily_rate == 2.0
    assert p.max_amount == 100.0
    assert p.currency is Currency.TRY
    assert p.payment_due_days == 30


@pytest.mark.parametrize(
    "days_overdue, expected",
    [(-3, 0.0), (0, 0.0), (14, 0.0), (15, 2.0), (20, 12.0), (64, 100.0), (200, 100.0)],
)
def test_amount_for(days_overdue, expected):
    assert FinePolicy().amount_for(days_overdue) == expected


def test_from_env_reads_overrides():
    env = {
        "LENDINGDESK_GRACE_PERIOD_DAYS": "7",
        "LENDINGDESK_DAILY_FINE_RATE": "1.5",
        "LENDINGDESK_MAX_FINE_AMOUNT": "50",
        "LENDINGDESK_CURRENCY": "eur",
        "LENDINGDESK_PAYMENT_DUE_DAYS": "10",
    }
    p = FinePolicy.from_env(env)
    assert p == FinePolicy(7, 1.5, 50.0, Currency.EUR, 10)
    assert p.amount_for(10) == 4.5


def test_from_env_blank_values_fall_back():
    assert FinePolicy.from_env({"LENDINGDESK_DAILY_FINE_RATE": "  "}) == FinePolicy()
    assert LoanPolicy.from_env({}) == LoanPolicy()


@pytest.mark.parametrize(
    "env",
    [
        {"LENDINGDESK_GRACE_PERIOD_DAYS": "two weeks"},
        {"LENDINGDESK_DAILY_FINE_RATE": "cheap"},
        {"LENDINGDESK_CURRENCY": "GBP"},
        {"LENDINGDESK_PAYMENT_DUE_DAYS": "0"},
    ],
)
def test_from_env_rejects_bad_values(env):
    with pytest.raises(ValueError):
        FinePolicy.from_env(env)


def test_loan_policy_bounds():
    with pytest.raises(ValueError):
        LoanPolicy(default_max_books=21)
    with pytest.raises(ValueError):
        LoanPolicy.from_env({"LENDINGDESK_DEFAULT_LOAN_DAYS": "0"})


def test_system_from_env(monkeypatch):
    monkeypatch.setenv("LENDINGDESK_GRACE_PERIOD_DAYS", "3")
    monkeypatch.setenv("LENDINGDESK_DEFAULT_MAX_BOOKS", "2")

    s = LibrarySystem.from_env()

    assert s.fine_settings()["grace_period_days"] == 3
    assert s.create_user("kim", "kim@example.com").unwrap().max_books == 2
