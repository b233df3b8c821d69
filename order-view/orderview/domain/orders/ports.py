# orderview/domain/orders/ports.py
from typing import Callable, Protocol


class RecordStore(Protocol):
    """Durable persistence for raw order payloads, keyed by order_uid.

    Implementations raise StoreError on any persistence failure and never
    retry on their own.
    """

    async def upsert(self, order_uid: str, raw: bytes) -> None:
        """Insert the payload for order_uid, or fully replace the stored one."""
        ...

    async def load_all(self, visit: Callable[[str, bytes], None]) -> None:
        """Stream every stored (order_uid, raw) pair to visit, in no particular order."""
        ...
