import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from worker.celery_app import celery
from app.core.config import settings
import app.models  # noqa: F401  # ensures Models are registered
from app.services.listing_store import SqlListingStore
from app.services.reservation_expiry import ReservationExpirySweeper


log = logging.getLogger(__name__)


async def _expire_reservations() -> dict:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)

    try:
        sweeper = ReservationExpirySweeper(SqlListingStore(Session))
        result = await sweeper.run()
    finally:
        await engine.dispose()

    out = result.as_dict()
    out["success"] = not result.has_errors
    return out


@celery.task(name="worker.tasks.expire_reservations")
def expire_reservations() -> dict:
    # a failed candidate query raises here so the task shows up as failed
    result = asyncio.run(_expire_reservations())
    if not result["success"]:
        log.warning("expire_reservations: %d row errors", len(result["errors"]))
    return result


async def main():
    # one-off sweep outside celery beat, e.g. from an external cron
    logging.basicConfig(level=logging.INFO)
    result = await _expire_reservations()
    log.info("sweep: expired=%d errors=%d", result["expired_count"], len(result["errors"]))


if __name__ == "__main__":
    asyncio.run(main())
