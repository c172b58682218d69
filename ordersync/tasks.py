"""
Celery Tasks
Background incremental order sync, run on the beat schedule or on demand.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from ordersync.celery_worker import celery_app
from ordersync.core.config import Settings, get_settings
from ordersync.services.kv import create_kv_store
from ordersync.services.orders import CollectResult, IncrementalCollector, OrderCache
from ordersync.services.toast import UpstreamError, create_toast_api

logger = logging.getLogger(__name__)


async def run_incremental_sync(limit: int, settings: Optional[Settings] = None) -> CollectResult:
    """
    Cursor-anchored collection with services owned by this call.

    Each task run gets its own event loop, so the Redis and HTTP clients
    are created here and closed before the loop ends.
    """
    settings = settings or get_settings()
    kv = create_kv_store(settings)
    api = create_toast_api(kv, settings)
    try:
        cache = OrderCache(
            kv,
            recent_limit=settings.recent_index_limit,
            ttl_seconds=settings.order_cache_ttl_seconds,
        )
        collector = IncrementalCollector(api, cache, settings)
        return await collector.collect(limit, use_cursor=True)
    finally:
        await api.close()
        await kv.close()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(UpstreamError,),
    retry_backoff=True
)
def sync_recent_orders(self, limit: Optional[int] = None) -> dict:
    """
    Pull orders newer than the sync cursor into the order cache.

    Args:
        limit: Orders to collect (defaults to SYNC_LIMIT)

    Returns:
        dict: Summary of the sync run
    """
    task_id = self.request.id
    settings = get_settings()
    limit = limit or settings.sync_limit

    logger.info(f"🔄 Task {task_id}: syncing up to {limit} orders")
    start_time = time.time()

    try:
        result = asyncio.run(run_incremental_sync(limit, settings))
    except UpstreamError as e:
        elapsed = round(time.time() - start_time, 3)
        logger.error(f"❌ Task {task_id}: upstream error after {elapsed}s - {e}")

        # Celery will auto-retry based on configuration
        raise

    elapsed = round(time.time() - start_time, 3)
    logger.info(
        f"✅ Task {task_id}: {len(result.orders)} orders synced in {elapsed}s "
        f"(cursor advanced: {result.cursor_advanced})"
    )
    return {
        'success': True,
        'collected': len(result.orders),
        'fromCache': result.from_cache,
        'pagesFetched': result.pages_fetched,
        'cursor': result.cursor.to_dict() if result.cursor else None,
        'elapsed': elapsed,
    }


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
