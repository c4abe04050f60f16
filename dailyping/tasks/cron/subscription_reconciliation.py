import asyncio

from dailyping.celery import celery
from dailyping.db.session import get_sync_session
from dailyping.services.engine import build_engine
from dailyping.utils.context import request_id_scope
from dailyping.utils.datetime_utils import utc_now
from dailyping.utils.logging import get_logger


@celery.task(bind=True, max_retries=0)
def subscription_reconciliation_task(self, request_id: str):
    """
    Sync local subscription state with the billing provider.

    Runs on its own beat schedule (``RECONCILIATION_INTERVAL_MINUTES``),
    independent of the trigger tick.
    """
    with request_id_scope(request_id):
        return asyncio.run(_async_subscription_reconciliation(request_id))


async def _async_subscription_reconciliation(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    for db_session in get_sync_session():
        try:
            now = utc_now()
            engine = build_engine(db_session, request_id=request_id)
            summary = await engine.on_reconciliation_tick(now)

            return {
                "success": True,
                "reconciled_at": now.isoformat(),
                **summary.to_dict(),
                "request_id": request_id,
            }
        except Exception as e:
            logger.error(f"Subscription reconciliation task exception: {e}", exc_info=True)
            return {
                "success": False,
                "error": str(e),
                "request_id": request_id,
            }
