"""Materialize the current cycle's status rows for every account benefit.

Run on a timer. For each recurring benefit the active cycle is calculated
and one BenefitStatus per occurrence is upserted; rerunning at the same
instant changes nothing. Digests of new and soon-expiring statuses are
handed to a Notifier once all accounts have settled.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from perkcycle.errors import (
    CycleCalculationError,
    DatabaseError,
    ErrorType,
    Issue,
    PerkcycleError,
    UserDataError,
)
from perkcycle.schemas.account import AccountSnapshot, BenefitSnapshot
from perkcycle.services.batching import run_in_batches
from perkcycle.services.benefit_cycles import (
    BenefitCycle,
    BenefitFrequency,
    OneTime,
    as_utc,
    calculate_cycle,
    is_cycle_expiring_soon,
    normalize_cycle_date,
    requires_opened_date,
)
from perkcycle.services.notifications import BenefitDigest, DigestItem, Notifier
from perkcycle.store import AccountTransaction, BenefitStore, StatusKey

logger = logging.getLogger(__name__)


@dataclass
class MaterializeResult:
    accounts_processed: int = 0
    accounts_ok: int = 0
    accounts_failed: int = 0
    statuses_attempted: int = 0
    statuses_ok: int = 0
    statuses_failed: int = 0
    benefits_skipped: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    errors: list[Issue] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "accounts_processed": self.accounts_processed,
            "accounts_ok": self.accounts_ok,
            "accounts_failed": self.accounts_failed,
            "statuses_attempted": self.statuses_attempted,
            "statuses_ok": self.statuses_ok,
            "statuses_failed": self.statuses_failed,
            "benefits_skipped": self.benefits_skipped,
            "notifications_sent": self.notifications_sent,
            "notifications_failed": self.notifications_failed,
            "errors": [issue.to_dict() for issue in self.errors],
        }


@dataclass
class AccountMaterialization:
    digest: BenefitDigest
    statuses_attempted: int = 0
    statuses_ok: int = 0
    statuses_failed: int = 0
    benefits_skipped: int = 0
    errors: list[Issue] = field(default_factory=list)


class CycleMaterializer:
    def __init__(
        self,
        store: BenefitStore,
        batch_size: int = 10,
        notifier: Notifier | None = None,
        expiring_threshold_days: int = 7,
    ):
        self.store = store
        self.batch_size = batch_size
        self.notifier = notifier
        self.expiring_threshold_days = expiring_threshold_days

    def materialize(self, now: datetime | None = None) -> MaterializeResult:
        """Upsert status rows for the cycles active at ``now`` across all accounts."""
        now = as_utc(now or datetime.now(timezone.utc))
        result = MaterializeResult()

        unreadable: list[UserDataError] = []
        try:
            accounts = self.store.list_accounts(on_error=unreadable.append)
        except PerkcycleError as exc:
            logger.error(f"Could not load accounts: {exc}")
            result.errors.append(Issue(type=exc.error_type, message=f"Could not load accounts: {exc}"))
            return result

        for exc in unreadable:
            result.accounts_processed += 1
            result.accounts_failed += 1
            result.errors.append(Issue(
                type=exc.error_type,
                message=f"Failed to materialize cycles for {exc.user_email}",
                account_id=exc.account_id,
                user_id=exc.user_id,
                user_email=exc.user_email,
                details={"error": str(exc)},
            ))

        logger.info(f"Materializing cycles for {len(accounts)} accounts at {now.isoformat()}")
        outcomes = run_in_batches(
            accounts,
            lambda account: self._materialize_account(account, now),
            self.batch_size,
        )

        digests = []
        for outcome in outcomes:
            account = outcome.item
            result.accounts_processed += 1
            if not outcome.ok:
                result.accounts_failed += 1
                result.errors.append(Issue(
                    type=getattr(outcome.error, "error_type", ErrorType.DATABASE),
                    message=f"Failed to materialize cycles for {account.user_email}",
                    account_id=account.id,
                    user_id=account.user_id,
                    user_email=account.user_email,
                    details={"error": str(outcome.error)},
                ))
                logger.error(f"Failed to materialize account {account.id} ({account.user_email}): {outcome.error}")
                continue

            done: AccountMaterialization = outcome.value
            result.accounts_ok += 1
            result.statuses_attempted += done.statuses_attempted
            result.statuses_ok += done.statuses_ok
            result.statuses_failed += done.statuses_failed
            result.benefits_skipped += done.benefits_skipped
            result.errors.extend(done.errors)
            if account.notifications_enabled and not done.digest.is_empty:
                digests.append(done.digest)

        self._notify(digests, result)

        logger.info(
            f"Materialized {result.statuses_ok}/{result.statuses_attempted} statuses "
            f"across {result.accounts_ok}/{result.accounts_processed} accounts"
        )
        return result

    def _notify(self, digests: list[BenefitDigest], result: MaterializeResult) -> None:
        if self.notifier is None:
            return
        for digest in digests:
            try:
                self.notifier.send(digest)
                result.notifications_sent += 1
            except Exception as e:
                result.notifications_failed += 1
                logger.error(f"Failed to send digest to {digest.user_email}: {e}")

    def _cycle_for(self, account: AccountSnapshot, benefit: BenefitSnapshot, now: datetime) -> BenefitCycle | None:
        schedule = benefit.schedule
        if isinstance(schedule, OneTime):
            return None
        if requires_opened_date(schedule) and account.opened_date is None:
            logger.info(
                f'Skipping anniversary benefit "{benefit.description}" on account {account.id}: no opened date'
            )
            return None
        raw = calculate_cycle(schedule, now, account.opened_date)
        return BenefitCycle(start=normalize_cycle_date(raw.start), end=raw.end)

    def _materialize_benefit(
        self,
        tx: AccountTransaction,
        account: AccountSnapshot,
        benefit: BenefitSnapshot,
        cycle: BenefitCycle,
        now: datetime,
        done: AccountMaterialization,
    ) -> None:
        previous = {(status.cycle_start_date, status.occurrence_index): status for status in benefit.statuses}

        for occurrence_index in range(benefit.occurrences_in_cycle):
            done.statuses_attempted += 1
            key = StatusKey(
                benefit_id=benefit.id,
                user_id=account.user_id,
                cycle_start_date=cycle.start,
                occurrence_index=occurrence_index,
            )
            try:
                upsert = tx.upsert_status(key, cycle.end)
            except DatabaseError as exc:
                done.statuses_failed += 1
                done.errors.append(Issue(
                    type=ErrorType.DATABASE,
                    message=f"Status upsert failed for benefit {benefit.id}",
                    account_id=account.id,
                    user_id=account.user_id,
                    user_email=account.user_email,
                    benefit_id=benefit.id,
                    details={"error": str(exc), "occurrence_index": occurrence_index},
                ))
                logger.error(f"Status upsert failed for benefit {benefit.id} on account {account.id}: {exc}")
                continue
            done.statuses_ok += 1

            item = DigestItem(
                benefit_id=benefit.id,
                description=benefit.description,
                cycle_start=upsert.cycle_start_date,
                cycle_end=upsert.cycle_end_date,
                occurrence_index=occurrence_index,
                max_amount=benefit.max_amount,
            )
            if upsert.created:
                done.digest.new_cycles.append(item)
                continue

            prior = previous.get((upsert.cycle_start_date, occurrence_index))
            if prior is not None and prior.is_protected:
                continue
            if is_cycle_expiring_soon(upsert.cycle_end_date, self.expiring_threshold_days, now):
                done.digest.expiring.append(item)

    def _materialize_account(self, account: AccountSnapshot, now: datetime) -> AccountMaterialization:
        done = AccountMaterialization(digest=BenefitDigest(
            account_id=account.id,
            user_id=account.user_id,
            user_email=account.user_email,
            card_name=account.card_name,
            generated_at=now,
        ))

        with self.store.account_transaction(account.id) as tx:
            for benefit in account.benefits:
                try:
                    cycle = self._cycle_for(account, benefit, now)
                except CycleCalculationError as exc:
                    done.benefits_skipped += 1
                    done.errors.append(Issue(
                        type=ErrorType.CYCLE_CALCULATION,
                        message=f'Cycle calculation failed for "{benefit.description}"',
                        account_id=account.id,
                        user_id=account.user_id,
                        user_email=account.user_email,
                        benefit_id=benefit.id,
                        details={"error": str(exc)},
                    ))
                    logger.warning(f"Skipping benefit {benefit.id} on account {account.id}: {exc}")
                    continue

                if cycle is None:
                    if benefit.frequency != BenefitFrequency.ONE_TIME.value:
                        done.benefits_skipped += 1
                    continue
                self._materialize_benefit(tx, account, benefit, cycle, now, done)

        return done
