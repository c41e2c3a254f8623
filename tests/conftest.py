import itertools
import json

import pytest
from sqlalchemy import select

from perkcycle.database import create_db_engine, create_session_factory, init_db, session_scope
from perkcycle.models import AccountCard, Benefit, BenefitStatus, User
from perkcycle.store import SqlAlchemyStore


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'perkcycle.db'}"


@pytest.fixture
def engine(database_url):
    engine = create_db_engine(database_url, busy_timeout=10.0)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return SqlAlchemyStore(session_factory)


@pytest.fixture
def seed_account(session_factory):
    """Insert a user holding one card, with optional benefits and status rows.

    Each benefit is a dict of Benefit columns; an optional ``statuses`` key
    holds dicts of BenefitStatus columns. ``settings`` stores raw user
    settings text in place of the notifications flag. Returns the account
    card id.
    """
    counter = itertools.count(1)

    def _seed(email, card_name="Test Card", opened_date=None, benefits=(), notifications=True, settings=None):
        n = next(counter)
        with session_scope(session_factory) as db:
            if settings is None:
                settings = json.dumps({"email_notifications": notifications})
            user = User(email=email, settings=settings)
            db.add(user)
            db.flush()

            account = AccountCard(
                user_id=user.id,
                name=card_name,
                opened_date=opened_date,
                created_at=f"2024-01-{n:02d}T00:00:00.000Z",
            )
            db.add(account)
            db.flush()

            for position, spec in enumerate(benefits):
                spec = dict(spec)
                statuses = spec.pop("statuses", [])
                spec.setdefault("category", "Travel")
                spec.setdefault("percentage", 0.0)
                benefit = Benefit(account_card_id=account.id, position=position, **spec)
                db.add(benefit)
                db.flush()
                for status in statuses:
                    status = dict(status)
                    status.setdefault("occurrence_index", 0)
                    db.add(BenefitStatus(benefit_id=benefit.id, user_id=user.id, **status))
            return account.id

    return _seed


@pytest.fixture
def read_benefits(session_factory):
    """Return ``{description: [status dict, ...]}`` for one account card."""

    def _read(account_id):
        with session_scope(session_factory) as db:
            benefits = db.execute(
                select(Benefit).where(Benefit.account_card_id == account_id).order_by(Benefit.position)
            ).scalars().all()
            return {
                benefit.description: [
                    {
                        "cycle_start_date": status.cycle_start_date,
                        "cycle_end_date": status.cycle_end_date,
                        "occurrence_index": status.occurrence_index,
                        "is_completed": status.is_completed,
                        "is_not_usable": status.is_not_usable,
                        "used_amount": status.used_amount,
                    }
                    for status in sorted(
                        benefit.statuses, key=lambda s: (s.cycle_start_date, s.occurrence_index)
                    )
                ]
                for benefit in benefits
            }

    return _read
