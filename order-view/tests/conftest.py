"""Pytest configuration and fixtures."""

import asyncio
import json
import os
from typing import Callable, Dict, List, Optional

import pytest

if "LOG_LEVEL" not in os.environ:
    os.environ["LOG_LEVEL"] = "WARNING"
if "LOG_FORMAT" not in os.environ:
    os.environ["LOG_FORMAT"] = "console"

from orderview.core.config import Settings
from orderview.db.base import build_engine, build_sessionmaker, ensure_schema
from orderview.db.repositories.orders import OrderRepository
from orderview.domain.orders.cache import OrderCache
from orderview.domain.orders.errors import StoreError
from orderview.domain.orders.ingest import OrderIngestor
from orderview.messaging.base import MessageSource


def order_payload(order_uid: str = "o1", track_number: str = "T1", **fields) -> bytes:
    doc = {
        "order_uid": order_uid,
        "track_number": track_number,
        "entry": "WBIL",
        "delivery": {
            "name": "Test Testov",
            "phone": "+9720000000",
            "city": "Kiryat Mozkin",
            "address": "Ploshad Mira 15",
        },
        "payment": {"transaction": order_uid, "currency": "USD", "amount": 1817, "bank": "alpha"},
        "items": [{"chrt_id": 9934930, "track_number": track_number, "price": 453, "name": "Mascaras"}],
        "locale": "en",
        "internal_signature": "",
        "customer_id": "test",
        "delivery_service": "meest",
        "shardkey": "9",
        "sm_id": 99,
        "date_created": "2021-11-26T06:22:19Z",
        "oof_shard": "1",
    }
    doc.update(fields)
    return json.dumps(doc).encode("utf-8")


class FakeDelivery:
    def __init__(self, data: bytes, num_delivered: int = 1, ack_error: Optional[Exception] = None):
        self.data = data
        self.num_delivered = num_delivered
        self.acked = False
        self.terminated = False
        self._ack_error = ack_error

    async def ack(self, timeout: Optional[float] = None) -> None:
        if self._ack_error is not None:
            raise self._ack_error
        self.acked = True

    async def term(self) -> None:
        self.terminated = True


class FakeSource(MessageSource):
    """In-memory subscription; tests push deliveries and redeliveries by hand."""

    def __init__(self, fail_open: bool = False, **kwargs):
        super().__init__(**kwargs)
        self.fail_open = fail_open
        self.opened = False
        self.closed = False
        self.deliveries: List[FakeDelivery] = []

    @property
    def source_type(self) -> str:
        return "fake"

    async def _open(self) -> None:
        if self.fail_open:
            raise ConnectionError("broker unreachable")
        self.opened = True

    async def _close(self) -> None:
        self.closed = True

    async def deliver(self, data: bytes, num_delivered: int = 1, ack_error: Optional[Exception] = None) -> FakeDelivery:
        delivery = FakeDelivery(data, num_delivered=num_delivered, ack_error=ack_error)
        self.deliveries.append(delivery)
        await self._dispatch(delivery)
        return delivery

    async def redeliver(self, delivery: FakeDelivery) -> FakeDelivery:
        return await self.deliver(delivery.data, num_delivered=delivery.num_delivered + 1)


class FakeStore:
    """RecordStore in a dict, with failure and latency injection."""

    def __init__(self):
        self.rows: Dict[str, bytes] = {}
        self.fail = False
        self.delay: Callable[[], float] = lambda: 0.0
        self.upserts = 0

    async def upsert(self, order_uid: str, raw: bytes) -> None:
        delay = self.delay()
        if delay:
            await asyncio.sleep(delay)
        if self.fail:
            raise StoreError("store unreachable")
        self.rows[order_uid] = raw
        self.upserts += 1

    async def load_all(self, visit) -> None:
        if self.fail:
            raise StoreError("store unreachable")
        for order_uid, raw in list(self.rows.items()):
            visit(order_uid, raw)


class FakeDeadLetters:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, raw: bytes, reason: str) -> None:
        if self.fail:
            raise ConnectionError("dead letter subject unavailable")
        self.sent.append((raw, reason))


@pytest.fixture
def make_payload():
    return order_payload


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}"


@pytest.fixture
def settings(db_url):
    return Settings(
        DB_URL=db_url,
        LOG_LEVEL="WARNING",
        LOG_FORMAT="console",
        PERSIST_TIMEOUT=1.0,
        HANDLER_TIMEOUT=2.0,
        SHUTDOWN_GRACE=1.0,
    )


@pytest.fixture
async def engine(db_url):
    engine = build_engine(db_url)
    await ensure_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def repository(engine):
    return OrderRepository(build_sessionmaker(engine), batch_size=2)


@pytest.fixture
def cache():
    return OrderCache()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def dead_letters():
    return FakeDeadLetters()


@pytest.fixture
def source():
    return FakeSource(max_in_flight=8, handler_timeout=2.0)


@pytest.fixture
def ingestor(store, cache, dead_letters):
    return OrderIngestor(
        store,
        cache,
        persist_timeout=0.5,
        ack_timeout=0.5,
        dead_letters=dead_letters,
        poison_max_deliver=3,
    )
