"""Scheduled-job endpoints, called by an external scheduler."""
import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from perkcycle.api.deps import get_app_settings, get_notifier, get_store, verify_cron_secret
from perkcycle.config import Settings
from perkcycle.services.cycle_materializer import CycleMaterializer
from perkcycle.services.integrity import check_benefit_integrity
from perkcycle.services.notifications import Notifier
from perkcycle.store import SqlAlchemyStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


class MaterializeResponse(BaseModel):
    accounts_processed: int
    accounts_ok: int
    accounts_failed: int
    statuses_attempted: int
    statuses_ok: int
    statuses_failed: int
    benefits_skipped: int
    notifications_sent: int
    notifications_failed: int
    errors: list[dict]


class IntegrityResponse(BaseModel):
    status: str
    issue_count: int
    issues: list[dict]


@router.post("/materialize", response_model=MaterializeResponse)
def materialize_cycles(
    at: datetime | None = None,
    notify: bool = True,
    store: SqlAlchemyStore = Depends(get_store),
    notifier: Notifier | None = Depends(get_notifier),
    settings: Settings = Depends(get_app_settings),
):
    """Upsert the current cycle's status rows for every account."""
    materializer = CycleMaterializer(
        store,
        batch_size=settings.materialize_batch_size,
        notifier=notifier if notify else None,
        expiring_threshold_days=settings.expiring_threshold_days,
    )
    result = materializer.materialize(at)
    return MaterializeResponse(**result.to_dict())


@router.get("/benefit-integrity", response_model=IntegrityResponse)
def benefit_integrity(store: SqlAlchemyStore = Depends(get_store)):
    """Report stored cycles that contradict their benefit's quarter or month label."""
    issues = check_benefit_integrity(store)
    return IntegrityResponse(
        status="issues_found" if issues else "healthy",
        issue_count=len(issues),
        issues=[issue.to_dict() for issue in issues[:5]],
    )
