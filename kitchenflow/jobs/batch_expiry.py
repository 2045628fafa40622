"""
Batch Expiry Job

Availability already ignores batches past their expiry date; this job also
flips them to inactive so stock screens and reports agree, and publishes the
change so waiter clients recompute availability.
"""

import logging
from typing import Any, Dict, Optional
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import async_sessionmaker

from kitchenflow.database import get_db_session
from kitchenflow.schemas.changes import ResourceKind
from kitchenflow.services.change_feed import ChangeCollector, ChangeFeedBackend
from kitchenflow.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)


async def expire_batches(
    change_feed: Optional[ChangeFeedBackend] = None,
    session_factory: Optional[async_sessionmaker] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Deactivate every active batch whose expiry date has passed."""
    start_time = datetime.now(timezone.utc)
    now = now or start_time
    changes = ChangeCollector(change_feed)

    session_context = session_factory() if session_factory is not None else get_db_session()
    async with session_context as session:
        expired = await StockLedger(session).deactivate_expired(now)
        for batch in expired:
            changes.add_later(ResourceKind.BATCHES, batch)
        await session.commit()
        published = await changes.flush()

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    if expired:
        logger.info(f"Batch expiry: {len(expired)} batch(es) deactivated in {duration:.2f}s")
    else:
        logger.debug("Batch expiry: nothing to deactivate")

    return {
        "expired": len(expired),
        "batch_ids": [batch.id for batch in expired],
        "published": published,
        "duration_seconds": duration,
    }
