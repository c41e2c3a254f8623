from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from perkcycle.database import session_scope
from perkcycle.errors import DatabaseError, TransactionTimeoutError, UserDataError
from perkcycle.models import BenefitStatus, CardProductBenefit
from perkcycle.schemas.plan import BenefitDefinition, CardUpdate
from perkcycle.store import SqlAlchemyStore, StatusKey


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


MONTHLY = {"description": "Dining credit", "frequency": "MONTHLY"}


def _count_statuses(session_factory):
    with session_scope(session_factory) as db:
        return db.execute(select(func.count(BenefitStatus.id))).scalar_one()


def test_upsert_creates_once_then_refreshes_end(store, seed_account, read_benefits):
    account_id = seed_account("alice@example.com", benefits=[MONTHLY])
    account = store.list_accounts()[0]
    key = StatusKey(
        benefit_id=account.benefits[0].id,
        user_id=account.user_id,
        cycle_start_date=utc(2025, 7, 1),
        occurrence_index=0,
    )

    with store.account_transaction(account_id) as tx:
        first = tx.upsert_status(key, utc(2025, 7, 31))
    with store.account_transaction(account_id) as tx:
        second = tx.upsert_status(key, utc(2025, 7, 31, 23, 59, 59, 999000))

    assert first.created
    assert not second.created
    assert second.status_id == first.status_id
    assert read_benefits(account_id)["Dining credit"] == [
        {
            "cycle_start_date": "2025-07-01T00:00:00.000Z",
            "cycle_end_date": "2025-07-31T23:59:59.999Z",
            "occurrence_index": 0,
            "is_completed": 0,
            "is_not_usable": 0,
            "used_amount": 0.0,
        }
    ]


def test_refresh_keeps_account_holder_fields(store, seed_account, read_benefits):
    account_id = seed_account("bob@example.com", benefits=[{
        **MONTHLY,
        "statuses": [{
            "cycle_start_date": "2025-07-01T00:00:00.000Z",
            "cycle_end_date": "2025-07-30T00:00:00.000Z",
            "is_completed": 1,
            "used_amount": 12.5,
        }],
    }])
    account = store.list_accounts()[0]
    key = StatusKey(account.benefits[0].id, account.user_id, utc(2025, 7, 1), 0)

    with store.account_transaction(account_id) as tx:
        result = tx.upsert_status(key, utc(2025, 7, 31, 23, 59, 59, 999000))

    status = read_benefits(account_id)["Dining credit"][0]
    assert not result.created
    assert status["cycle_end_date"] == "2025-07-31T23:59:59.999Z"
    assert status["is_completed"] == 1
    assert status["used_amount"] == 12.5


def test_snapshots_expose_protection(store, seed_account):
    seed_account("carol@example.com", opened_date="2022-11-20", benefits=[
        {"description": "Used credit", "frequency": "MONTHLY", "statuses": [{
            "cycle_start_date": "2025-06-01T00:00:00.000Z",
            "cycle_end_date": "2025-06-30T23:59:59.999Z",
            "is_not_usable": 1,
        }]},
        {"description": "Fresh credit", "frequency": "MONTHLY"},
    ])

    account = store.list_accounts()[0]

    assert account.opened_date.isoformat() == "2022-11-20"
    assert [b.description for b in account.protected_benefits] == ["Used credit"]
    assert [b.description for b in account.unprotected_benefits] == ["Fresh credit"]
    assert account.benefits[0].statuses[0].cycle_start_date == utc(2025, 6, 1)


def test_missing_account_raises(store):
    with pytest.raises(DatabaseError):
        with store.account_transaction("no-such-account"):
            pass


def test_failed_transaction_rolls_back(store, session_factory, seed_account):
    account_id = seed_account("dave@example.com", benefits=[MONTHLY])
    account = store.list_accounts()[0]

    with pytest.raises(RuntimeError):
        with store.account_transaction(account_id) as tx:
            tx.upsert_status(StatusKey(account.benefits[0].id, account.user_id, utc(2025, 7, 1), 0), utc(2025, 7, 31))
            raise RuntimeError("boom")

    assert _count_statuses(session_factory) == 0


def test_overrunning_transaction_is_rolled_back(session_factory, seed_account):
    account_id = seed_account("erin@example.com", benefits=[MONTHLY])
    store = SqlAlchemyStore(session_factory, transaction_timeout=0.0)
    account = store.list_accounts()[0]

    with pytest.raises(TransactionTimeoutError):
        with store.account_transaction(account_id) as tx:
            tx.upsert_status(StatusKey(account.benefits[0].id, account.user_id, utc(2025, 7, 1), 0), utc(2025, 7, 31))

    assert _count_statuses(session_factory) == 0


def test_product_template_create_then_replace(store, session_factory):
    first = CardUpdate(
        card_name="Test Card",
        issuer="Test Bank",
        new_annual_fee=95,
        benefits=[BenefitDefinition(category="Dining", description="Old credit", frequency="MONTHLY")],
    )
    second = CardUpdate(
        card_name="Test Card",
        issuer="Test Bank",
        benefits=[
            BenefitDefinition(category="Dining", description="New credit", frequency="MONTHLY"),
            BenefitDefinition(category="Travel", description="Travel credit", frequency="YEARLY"),
        ],
    )

    assert store.upsert_product_template(first) is True
    assert store.upsert_product_template(second) is False

    template = store.get_product_template("Test Card")
    assert template.annual_fee == 95
    assert template.benefit_descriptions == ["New credit", "Travel credit"]
    assert store.get_product_template("Unknown Card") is None
    with session_scope(session_factory) as db:
        assert db.execute(select(func.count(CardProductBenefit.id))).scalar_one() == 2


def test_accounts_by_product(store, seed_account):
    seed_account("f@example.com", card_name="Card A")
    seed_account("g@example.com", card_name="Card A")
    seed_account("h@example.com", card_name="Card B")

    assert store.count_accounts_by_product("Card A") == 2
    assert [a.user_email for a in store.find_accounts_by_product("Card A")] == ["f@example.com", "g@example.com"]
    assert store.find_accounts_by_product("Card C") == []


@pytest.mark.parametrize(
    "row",
    [
        {"settings": "{not json"},
        {"settings": "[]"},
        {"opened_date": "11/20/2022"},
    ],
)
def test_unreadable_account_raises_or_is_handed_off(store, seed_account, row):
    broken = seed_account("i@example.com", card_name="Card A", **row)
    seed_account("j@example.com", card_name="Card A")

    with pytest.raises(UserDataError) as exc:
        store.list_accounts()
    assert exc.value.account_id == broken
    assert exc.value.user_email == "i@example.com"

    unreadable = []
    accounts = store.find_accounts_by_product("Card A", on_error=unreadable.append)

    assert [a.user_email for a in accounts] == ["j@example.com"]
    assert [error.account_id for error in unreadable] == [broken]
