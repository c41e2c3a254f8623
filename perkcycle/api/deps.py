"""API dependencies."""
import secrets

from fastapi import Depends, Header, HTTPException, Request, status

from perkcycle.config import Settings
from perkcycle.services.notifications import Notifier
from perkcycle.store import SqlAlchemyStore


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> SqlAlchemyStore:
    return request.app.state.store


def get_notifier(request: Request) -> Notifier | None:
    return request.app.state.notifier


def verify_cron_secret(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Require ``Authorization: Bearer <CRON_SECRET>`` when a secret is configured."""
    if not settings.cron_secret:
        return
    expected = f"Bearer {settings.cron_secret}"
    if authorization is None or not secrets.compare_digest(authorization, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
