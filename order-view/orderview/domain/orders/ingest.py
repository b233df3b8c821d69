"""
Order ingestion pipeline.

Every delivery goes Decode -> Validate -> Persist -> Cache-Update -> Acknowledge.
Only a delivery that clears all five steps is acknowledged; anything else is
left for the broker to redeliver. The cache is written strictly after the
store, so readers never see an order the store does not hold.

Outcomes:
    ACKNOWLEDGED       processed and acknowledged
    REDELIVER_PENDING  not acknowledged, the broker will redeliver
    DEAD_LETTERED      malformed past the delivery limit, parked and terminated

Redelivery is always safe: the upsert is idempotent and the cache write is a
full replace, so replaying an applied message converges to the same state.
"""

import asyncio
import enum
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import AsyncIterator, Dict, Optional, Tuple

from orderview.core.logging import get_logger
from orderview.messaging.base import DeadLetterSink, Delivery

from .cache import OrderCache
from .errors import OrderDecodeError, OrderValidationError, StoreError
from .ports import RecordStore
from .schemas import Order, decode_order, validate_order

logger = get_logger(__name__)


class IngestOutcome(str, enum.Enum):
    ACKNOWLEDGED = "ACKNOWLEDGED"
    REDELIVER_PENDING = "REDELIVER_PENDING"
    DEAD_LETTERED = "DEAD_LETTERED"


@dataclass
class IngestStats:
    acknowledged: int = 0
    redeliver_pending: int = 0
    dead_lettered: int = 0

    def record(self, outcome: IngestOutcome) -> None:
        if outcome is IngestOutcome.ACKNOWLEDGED:
            self.acknowledged += 1
        elif outcome is IngestOutcome.DEAD_LETTERED:
            self.dead_lettered += 1
        else:
            self.redeliver_pending += 1

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)


class OrderIngestor:
    def __init__(
        self,
        store: RecordStore,
        cache: OrderCache,
        persist_timeout: float = 3.0,
        ack_timeout: float = 2.0,
        dead_letters: Optional[DeadLetterSink] = None,
        poison_max_deliver: int = 5,
    ):
        self.store = store
        self.cache = cache
        self.persist_timeout = persist_timeout
        self.ack_timeout = ack_timeout
        self.dead_letters = dead_letters
        self.poison_max_deliver = poison_max_deliver
        self.stats = IngestStats()
        self._order_locks = KeyedLocks()

    async def process(self, raw: bytes) -> Order:
        """Decode, validate, persist and cache one payload.

        Raises:
            OrderDecodeError: payload does not decode
            OrderValidationError: order_uid is empty
            StoreError: the upsert failed or exceeded persist_timeout
        """
        order = validate_order(decode_order(raw))

        # the store and cache writes for one order_uid happen in the same order
        async with self._order_locks.hold(order.order_uid):
            try:
                await asyncio.wait_for(self.store.upsert(order.order_uid, raw), timeout=self.persist_timeout)
            except asyncio.TimeoutError as e:
                raise StoreError(f"upsert of order {order.order_uid} exceeded {self.persist_timeout}s") from e

            self.cache.set(order.order_uid, order)
        return order

    async def handle(self, delivery: Delivery) -> IngestOutcome:
        try:
            outcome = await self._handle(delivery)
        except asyncio.CancelledError:
            # handler timeout or shutdown; nothing was acked
            self.stats.record(IngestOutcome.REDELIVER_PENDING)
            raise
        self.stats.record(outcome)
        return outcome

    async def _handle(self, delivery: Delivery) -> IngestOutcome:
        log = logger.bind(num_delivered=delivery.num_delivered)

        try:
            order = await self.process(delivery.data)
        except (OrderDecodeError, OrderValidationError) as e:
            log.warning("order_rejected", error=str(e))
            return await self._reject(delivery, str(e))
        except StoreError as e:
            log.error("order_persist_failed", error=str(e))
            return IngestOutcome.REDELIVER_PENDING

        log = log.bind(order_uid=order.order_uid)
        try:
            await delivery.ack(timeout=self.ack_timeout)
        except Exception as e:
            # already applied; a redelivery replays to the same state
            log.warning("order_ack_failed", error=str(e))
            return IngestOutcome.REDELIVER_PENDING

        log.info("order_processed")
        return IngestOutcome.ACKNOWLEDGED

    async def _reject(self, delivery: Delivery, reason: str) -> IngestOutcome:
        if (
            self.dead_letters is None
            or self.poison_max_deliver <= 0
            or delivery.num_delivered < self.poison_max_deliver
        ):
            return IngestOutcome.REDELIVER_PENDING

        try:
            await self.dead_letters.send(delivery.data, reason)
            await delivery.term()
        except Exception as e:
            logger.error("dead_letter_failed", num_delivered=delivery.num_delivered, error=str(e))
            return IngestOutcome.REDELIVER_PENDING

        logger.warning("order_dead_lettered", num_delivered=delivery.num_delivered, reason=reason)
        return IngestOutcome.DEAD_LETTERED
