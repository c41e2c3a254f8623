"""Persistence boundary for card templates, bound benefits and status rows.

Engines only talk to the ``BenefitStore`` protocol. ``SqlAlchemyStore`` is
the relational implementation; every read hands back detached snapshots and
every account mutation happens inside ``account_transaction``.
"""
import json
import logging
import time
import uuid
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import ContextManager, Protocol

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from perkcycle.database import session_scope
from perkcycle.errors import DatabaseError, TransactionTimeoutError, UserDataError
from perkcycle.models.benefit import Benefit, BenefitStatus
from perkcycle.models.card import AccountCard, CardProduct, CardProductBenefit, utcnow_iso
from perkcycle.schemas.account import AccountSnapshot, BenefitSnapshot, ProductTemplateSnapshot
from perkcycle.schemas.plan import BenefitDefinition, CardUpdate
from perkcycle.services.benefit_cycles import format_cycle_instant, parse_cycle_instant

logger = logging.getLogger(__name__)

# Receives accounts whose rows could not be read; the read then continues
UnreadableAccountHandler = Callable[[UserDataError], None]


@dataclass(frozen=True)
class StatusKey:
    """Unique identity of one claimable occurrence."""

    benefit_id: str
    user_id: str
    cycle_start_date: datetime
    occurrence_index: int


@dataclass(frozen=True)
class StatusUpsert:
    status_id: str
    created: bool
    cycle_start_date: datetime
    cycle_end_date: datetime


class AccountTransaction(Protocol):
    account_id: str

    def create_benefit(self, definition: BenefitDefinition, position: int, start_date: datetime) -> str: ...

    def delete_statuses(self, benefit_ids: Iterable[str]) -> int: ...

    def delete_benefits(self, benefit_ids: Iterable[str]) -> int: ...

    def upsert_status(self, key: StatusKey, cycle_end_date: datetime) -> StatusUpsert: ...

    def touch_account(self) -> None: ...


class BenefitStore(Protocol):
    def count_accounts_by_product(self, product_name: str) -> int: ...

    def find_accounts_by_product(
        self,
        product_name: str,
        on_error: UnreadableAccountHandler | None = None,
    ) -> list[AccountSnapshot]: ...

    def list_accounts(self, on_error: UnreadableAccountHandler | None = None) -> list[AccountSnapshot]: ...

    def get_product_template(self, product_name: str) -> ProductTemplateSnapshot | None: ...

    def upsert_product_template(self, card_update: CardUpdate) -> bool: ...

    def account_transaction(self, account_id: str) -> ContextManager[AccountTransaction]: ...


def benefit_terms(definition: BenefitDefinition) -> dict:
    """Column values shared by template and bound benefits."""
    return {
        "category": definition.category,
        "description": definition.description,
        "percentage": definition.percentage,
        "max_amount": definition.max_amount,
        "frequency": definition.frequency.value,
        "cycle_alignment": definition.cycle_alignment.value if definition.cycle_alignment else None,
        "fixed_cycle_start_month": definition.fixed_cycle_start_month,
        "fixed_cycle_duration_months": definition.fixed_cycle_duration_months,
        "occurrences_in_cycle": definition.occurrences_in_cycle,
    }


def _account_snapshot(account: AccountCard) -> AccountSnapshot:
    """Detach ``account``; rows that do not parse raise UserDataError."""
    user = account.user
    try:
        user_settings = json.loads(user.settings or "{}")
        if not isinstance(user_settings, dict):
            raise ValueError(f"user settings must be a JSON object, got {type(user_settings).__name__}")
        return AccountSnapshot(
            id=account.id,
            user_id=account.user_id,
            user_email=user.email,
            card_name=account.name,
            opened_date=account.opened_date or None,
            notifications_enabled=user_settings.get("email_notifications", True),
            benefits=[BenefitSnapshot.model_validate(benefit) for benefit in account.benefits],
        )
    except ValueError as exc:
        # pydantic's ValidationError and JSONDecodeError are both ValueErrors
        raise UserDataError(
            f"Account card {account.id} has unreadable data: {exc}",
            account_id=account.id,
            user_id=account.user_id,
            user_email=user.email,
        ) from exc


def _account_snapshots(
    accounts: Iterable[AccountCard],
    on_error: UnreadableAccountHandler | None,
) -> list[AccountSnapshot]:
    snapshots = []
    for account in accounts:
        try:
            snapshots.append(_account_snapshot(account))
        except UserDataError as exc:
            if on_error is None:
                raise
            logger.warning(f"Skipping account {account.id}: {exc}")
            on_error(exc)
    return snapshots


class SqlAlchemyAccountTransaction:
    """Writes for one account, all committed or rolled back together."""

    def __init__(self, session: Session, account: AccountCard):
        self.session = session
        self.account = account
        self.account_id = account.id

    def create_benefit(self, definition: BenefitDefinition, position: int, start_date: datetime) -> str:
        benefit = Benefit(
            id=str(uuid.uuid4()),
            account_card_id=self.account_id,
            position=position,
            start_date=format_cycle_instant(start_date),
            **benefit_terms(definition),
        )
        self.session.add(benefit)
        self.session.flush()
        return benefit.id

    def delete_statuses(self, benefit_ids: Iterable[str]) -> int:
        benefit_ids = list(benefit_ids)
        if not benefit_ids:
            return 0
        result = self.session.execute(
            delete(BenefitStatus).where(BenefitStatus.benefit_id.in_(benefit_ids))
        )
        return result.rowcount or 0

    def delete_benefits(self, benefit_ids: Iterable[str]) -> int:
        benefit_ids = list(benefit_ids)
        if not benefit_ids:
            return 0
        result = self.session.execute(
            delete(Benefit).where(
                Benefit.id.in_(benefit_ids),
                Benefit.account_card_id == self.account_id,
            )
        )
        return result.rowcount or 0

    def upsert_status(self, key: StatusKey, cycle_end_date: datetime) -> StatusUpsert:
        """Create the status row for ``key`` or refresh its cycle end.

        Account-holder fields (completion, usability, used amount) are never
        touched on an existing row. Each upsert runs in a savepoint so a
        failing row leaves the rest of the transaction usable.
        """
        start = format_cycle_instant(key.cycle_start_date)
        end = format_cycle_instant(cycle_end_date)
        try:
            with self.session.begin_nested():
                existing = self.session.execute(
                    select(BenefitStatus).where(
                        BenefitStatus.benefit_id == key.benefit_id,
                        BenefitStatus.user_id == key.user_id,
                        BenefitStatus.cycle_start_date == start,
                        BenefitStatus.occurrence_index == key.occurrence_index,
                    )
                ).scalar_one_or_none()

                if existing:
                    if existing.cycle_end_date != end:
                        existing.cycle_end_date = end
                    status_id = existing.id
                    created = False
                else:
                    status_id = str(uuid.uuid4())
                    self.session.add(BenefitStatus(
                        id=status_id,
                        benefit_id=key.benefit_id,
                        user_id=key.user_id,
                        cycle_start_date=start,
                        cycle_end_date=end,
                        occurrence_index=key.occurrence_index,
                        is_completed=0,
                        is_not_usable=0,
                        used_amount=0.0,
                    ))
                    created = True
        except SQLAlchemyError as exc:
            raise DatabaseError(f"Upsert of status {key} failed: {exc}") from exc

        return StatusUpsert(
            status_id=status_id,
            created=created,
            cycle_start_date=parse_cycle_instant(start),
            cycle_end_date=parse_cycle_instant(end),
        )

    def touch_account(self) -> None:
        self.account.updated_at = utcnow_iso()


class SqlAlchemyStore:
    """BenefitStore backed by a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker, transaction_timeout: float = 30.0):
        self.session_factory = session_factory
        self.transaction_timeout = transaction_timeout

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with session_scope(self.session_factory) as db:
                yield db
        except SQLAlchemyError as exc:
            raise DatabaseError(f"Database operation failed: {exc}") from exc

    def _accounts_query(self):
        return select(AccountCard).options(
            selectinload(AccountCard.user),
            selectinload(AccountCard.benefits).selectinload(Benefit.statuses),
        ).order_by(AccountCard.created_at, AccountCard.id)

    def count_accounts_by_product(self, product_name: str) -> int:
        with self._session() as db:
            return db.execute(
                select(func.count(AccountCard.id)).where(AccountCard.name == product_name)
            ).scalar_one()

    def find_accounts_by_product(
        self,
        product_name: str,
        on_error: UnreadableAccountHandler | None = None,
    ) -> list[AccountSnapshot]:
        """Snapshots of every account holding ``product_name``.

        Without ``on_error`` an unreadable account raises UserDataError;
        with it, the account is handed to ``on_error`` and skipped.
        """
        with self._session() as db:
            accounts = db.execute(
                self._accounts_query().where(AccountCard.name == product_name)
            ).scalars().all()
            return _account_snapshots(accounts, on_error)

    def list_accounts(self, on_error: UnreadableAccountHandler | None = None) -> list[AccountSnapshot]:
        with self._session() as db:
            accounts = db.execute(self._accounts_query()).scalars().all()
            return _account_snapshots(accounts, on_error)

    def get_product_template(self, product_name: str) -> ProductTemplateSnapshot | None:
        with self._session() as db:
            product = db.execute(
                select(CardProduct).where(CardProduct.name == product_name)
            ).scalar_one_or_none()
            if product is None:
                return None
            return ProductTemplateSnapshot(
                id=product.id,
                name=product.name,
                issuer=product.issuer,
                annual_fee=product.annual_fee or 0,
                benefit_descriptions=[benefit.description for benefit in product.benefits],
            )

    def upsert_product_template(self, card_update: CardUpdate) -> bool:
        """Create the product template or replace its benefit list.

        Returns True when the product did not exist yet.
        """
        with self._session() as db:
            product = db.execute(
                select(CardProduct).where(CardProduct.name == card_update.card_name)
            ).scalar_one_or_none()
            created = product is None

            if created:
                product = CardProduct(
                    name=card_update.card_name,
                    issuer=card_update.issuer,
                    annual_fee=card_update.new_annual_fee or 0,
                )
                db.add(product)
            else:
                product.issuer = card_update.issuer
                if card_update.new_annual_fee is not None:
                    product.annual_fee = card_update.new_annual_fee
                product.benefits.clear()
                db.flush()

            product.benefits.extend(
                CardProductBenefit(position=position, **benefit_terms(definition))
                for position, definition in enumerate(card_update.benefits)
            )
            logger.debug(f"{'Created' if created else 'Updated'} product template: {card_update.card_name}")
            return created

    def _apply_statement_timeout(self, db: Session) -> None:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL statement_timeout = {int(self.transaction_timeout * 1000)}"))

    @contextmanager
    def account_transaction(self, account_id: str) -> Iterator[SqlAlchemyAccountTransaction]:
        """Open one all-or-nothing transaction scoped to an account.

        SQLite waits at most ``transaction_timeout`` for the write lock
        (engine busy timeout), PostgreSQL gets a matching statement timeout,
        and any transaction that overruns is rolled back instead of committed.
        """
        started = time.monotonic()
        try:
            with session_scope(self.session_factory) as db:
                self._apply_statement_timeout(db)
                account = db.get(AccountCard, account_id)
                if account is None:
                    raise DatabaseError(f"Account card {account_id} not found")

                yield SqlAlchemyAccountTransaction(db, account)

                elapsed = time.monotonic() - started
                if elapsed > self.transaction_timeout:
                    raise TransactionTimeoutError(
                        f"Transaction for account {account_id} took {elapsed:.1f}s "
                        f"(limit {self.transaction_timeout:.1f}s)"
                    )
        except SQLAlchemyError as exc:
            raise DatabaseError(f"Transaction for account {account_id} failed: {exc}") from exc
