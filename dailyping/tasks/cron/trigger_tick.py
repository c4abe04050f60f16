import asyncio
from datetime import datetime

from dailyping.celery import celery
from dailyping.db.session import get_sync_session
from dailyping.services.engine import build_engine
from dailyping.utils.context import request_id_scope
from dailyping.utils.datetime_utils import to_utc, utc_now
from dailyping.utils.logging import get_logger


@celery.task(bind=True, max_retries=0)
def trigger_tick_task(self, request_id: str, **kwargs):
    """
    Evaluate every user's daily ping and reminder triggers for the current minute.

    Scheduled by Celery beat every ``TICK_INTERVAL_SECONDS``. Overlapping runs
    are safe: each notification is claimed in the ledger before it is sent.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
        current_datetime: Optional ISO timestamp overriding "now" (manual re-runs)
    """
    with request_id_scope(request_id):
        return asyncio.run(_async_trigger_tick(request_id, **kwargs))


async def _async_trigger_tick(request_id: str, **kwargs):
    logger = get_logger().bind(request_id=request_id)

    for db_session in get_sync_session():
        try:
            current = kwargs.get("current_datetime")
            now = to_utc(datetime.fromisoformat(current)) if current else utc_now()

            engine = build_engine(db_session, request_id=request_id)
            summary = await engine.on_tick(now)

            return {
                "success": True,
                "tick_at": now.isoformat(),
                **summary.to_dict(),
                "request_id": request_id,
            }
        except Exception as e:
            logger.error(f"Trigger tick task exception: {e}", exc_info=True)
            return {
                "success": False,
                "error": str(e),
                "request_id": request_id,
            }
