
from typing import AsyncIterator, Callable, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import select

from orderview.db.models.orders import OrderRecord
from orderview.domain.orders.errors import StoreError

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


async def upsert_order(
    db: AsyncSession,
    order_uid: str,
    raw: bytes,
) -> None:
    dialect = db.get_bind().dialect.name
    insert = _INSERTS.get(dialect)
    if insert is None:
        raise StoreError(f"upsert not supported on dialect {dialect!r}")

    stmt = insert(OrderRecord).values(order_uid=order_uid, payload=raw)
    stmt = stmt.on_conflict_do_update(
        index_elements=[OrderRecord.order_uid],
        set_={"payload": stmt.excluded.payload, "updated_at": func.now()},
    )
    await db.execute(stmt)
    await db.commit()


async def get_order_payload(
    db: AsyncSession,
    order_uid: str,
) -> Optional[bytes]:
    result = await db.execute(
        select(OrderRecord.payload).where(OrderRecord.order_uid == order_uid)
    )
    payload = result.scalar_one_or_none()
    return bytes(payload) if payload is not None else None


async def count_orders(db: AsyncSession) -> int:
    result = await db.execute(select(func.count()).select_from(OrderRecord))
    return result.scalar_one()


async def stream_order_payloads(
    db: AsyncSession,
    batch_size: int,
) -> AsyncIterator[Tuple[str, bytes]]:
    result = await db.stream(
        select(OrderRecord.order_uid, OrderRecord.payload).execution_options(yield_per=batch_size)
    )
    async for order_uid, payload in result:
        yield order_uid, bytes(payload)


class OrderRepository:
    """RecordStore backed by the orders table.

    Each call runs in its own session. Database and connectivity failures
    surface as StoreError; retrying is left to the caller.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], batch_size: int = 500):
        self._session_factory = session_factory
        self._batch_size = batch_size

    async def upsert(self, order_uid: str, raw: bytes) -> None:
        async with self._session_factory() as db:
            try:
                await upsert_order(db, order_uid, raw)
            except (SQLAlchemyError, OSError) as e:
                raise StoreError(f"upsert of order {order_uid} failed: {e}") from e

    async def load_all(self, visit: Callable[[str, bytes], None]) -> None:
        async with self._session_factory() as db:
            try:
                async for order_uid, raw in stream_order_payloads(db, self._batch_size):
                    visit(order_uid, raw)
            except (SQLAlchemyError, OSError) as e:
                raise StoreError(f"streaming orders failed: {e}") from e

    async def get(self, order_uid: str) -> Optional[bytes]:
        async with self._session_factory() as db:
            try:
                return await get_order_payload(db, order_uid)
            except (SQLAlchemyError, OSError) as e:
                raise StoreError(f"read of order {order_uid} failed: {e}") from e

    async def count(self) -> int:
        async with self._session_factory() as db:
            try:
                return await count_orders(db)
            except (SQLAlchemyError, OSError) as e:
                raise StoreError(f"count of orders failed: {e}") from e
