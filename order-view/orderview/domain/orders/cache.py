# orderview/domain/orders/cache.py
import threading
from typing import Dict, Optional

from .schemas import Order


class OrderCache:
    """In-memory projection of the record store, keyed by order_uid.

    Writers are serialised by a lock. Readers take no lock: entries are
    frozen models and a dict store publishes the new entry in a single
    reference swap, so a reader sees either the old order or the new one.
    Nothing is ever evicted.
    """

    def __init__(self) -> None:
        self._orders: Dict[str, Order] = {}
        self._write_lock = threading.Lock()

    def get(self, order_uid: str) -> Optional[Order]:
        return self._orders.get(order_uid)

    def set(self, order_uid: str, order: Order) -> None:
        with self._write_lock:
            self._orders[order_uid] = order

    def __len__(self) -> int:
        return len(self._orders)

    def __contains__(self, order_uid: object) -> bool:
        return order_uid in self._orders
