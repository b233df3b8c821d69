# orderview/domain/orders/service.py
from dataclasses import dataclass
from typing import Optional

from orderview.core.logging import get_logger

from .cache import OrderCache
from .errors import OrderDecodeError, StoreError, WarmLoadError
from .ports import RecordStore
from .schemas import Order, decode_order

logger = get_logger(__name__)


@dataclass
class WarmLoadReport:
    loaded: int = 0
    skipped: int = 0


def get_order_by_id(cache: OrderCache, order_uid: str) -> Optional[Order]:
    return cache.get(order_uid)


async def warm_load_cache(store: RecordStore, cache: OrderCache) -> WarmLoadReport:
    """Rebuild the read cache from every stored record.

    Rows that no longer decode are skipped and counted; a broken stream
    aborts the load with WarmLoadError.
    """
    report = WarmLoadReport()

    def visit(order_uid: str, raw: bytes) -> None:
        try:
            order = decode_order(raw)
        except OrderDecodeError as e:
            report.skipped += 1
            logger.warning("warm_load_row_skipped", order_uid=order_uid, error=str(e))
            return
        cache.set(order_uid, order)
        report.loaded += 1

    try:
        await store.load_all(visit)
    except StoreError as e:
        logger.error("warm_load_failed", loaded=report.loaded, skipped=report.skipped, error=str(e))
        raise WarmLoadError(str(e)) from e

    logger.info("warm_load_complete", loaded=report.loaded, skipped=report.skipped)
    return report
