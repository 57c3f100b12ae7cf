import logging
import secrets

from fastapi import Header, HTTPException

from app.core.config import settings


log = logging.getLogger(__name__)


async def require_cron_secret(
    authorization: str | None = Header(default=None),
    x_cron_secret: str | None = Header(default=None),
) -> None:
    """Accepts `Authorization: Bearer <secret>` or the `X-Cron-Secret` header."""
    if settings.cron_secret is None or not settings.cron_secret.get_secret_value():
        log.error("cron_secret is not configured")
        raise HTTPException(status_code=500, detail="Cron secret not configured")

    expected = settings.cron_secret.get_secret_value()
    if authorization and secrets.compare_digest(authorization, f"Bearer {expected}"):
        return
    if x_cron_secret and secrets.compare_digest(x_cron_secret, expected):
        return
    raise HTTPException(status_code=401, detail="Unauthorized")
