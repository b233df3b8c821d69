"""
Message source base: at-least-once delivery with manual acknowledgement.

A source hands every delivery to a single async handler. Each delivery runs
as its own task, bounded by max_in_flight and handler_timeout. Whatever the
handler does not acknowledge is left for the broker to redeliver.

Lifecycle States:
    - CLOSED: not subscribed
    - READY: subscribed, deliveries are dispatched
    - DRAINING: stop requested, new deliveries are ignored, in-flight ones finish
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

from orderview.core.logging import get_logger


class Delivery(Protocol):
    """One delivery attempt of a message."""

    data: bytes
    num_delivered: int

    async def ack(self, timeout: Optional[float] = None) -> None:
        ...

    async def term(self) -> None:
        ...


class DeadLetterSink(Protocol):
    async def send(self, raw: bytes, reason: str) -> None:
        ...


Handler = Callable[[Delivery], Awaitable[Any]]


class MessageSource(ABC):
    """Abstract base for durable subscriptions feeding the ingestion pipeline."""

    def __init__(self, max_in_flight: int = 64, handler_timeout: float = 8.0):
        self._logger = get_logger(type(self).__module__)
        self._state = "CLOSED"
        self._handler: Optional[Handler] = None
        self._max_in_flight = max_in_flight
        self._handler_timeout = handler_timeout
        self._slots: Optional[asyncio.Semaphore] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._handled = 0
        self._timed_out = 0
        self._dropped = 0

    # ===== Adapter hooks =====
    @abstractmethod
    async def _open(self) -> None:
        """Connect and subscribe; deliveries go to self._dispatch."""

    @abstractmethod
    async def _close(self) -> None:
        """Release the connection."""

    @property
    @abstractmethod
    def source_type(self) -> str:
        pass

    # ===== Lifecycle =====
    @property
    def state(self) -> str:
        return self._state

    async def start(self, handler: Handler) -> None:
        if self._state != "CLOSED":
            raise RuntimeError(f"{type(self).__name__} already started")
        if not callable(handler):
            raise ValueError(f"Handler must be callable, got {type(handler)}")

        self._handler = handler
        self._slots = asyncio.Semaphore(self._max_in_flight)
        self._state = "READY"
        try:
            await self._open()
        except Exception:
            self._state = "CLOSED"
            await self._close()
            raise
        self._logger.info("message_source_started", source=self.source_type)

    async def stop(self, grace: float = 5.0) -> None:
        """Stop intake, give in-flight handling `grace` seconds, then abandon it."""
        if self._state != "READY":
            return
        self._state = "DRAINING"

        abandoned = 0
        if self._in_flight:
            _, pending = await asyncio.wait(set(self._in_flight), timeout=grace)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            abandoned = len(pending)

        await self._close()
        self._state = "CLOSED"
        self._logger.info("message_source_stopped", source=self.source_type, abandoned=abandoned)

    async def wait_idle(self) -> None:
        """Wait until every dispatched delivery has finished."""
        while self._in_flight:
            await asyncio.gather(*set(self._in_flight), return_exceptions=True)

    def status(self) -> Dict[str, Any]:
        return {
            "source": self.source_type,
            "state": self._state,
            "in_flight": len(self._in_flight),
            "handled": self._handled,
            "timed_out": self._timed_out,
            "dropped": self._dropped,
        }

    # ===== Dispatch =====
    async def _dispatch(self, delivery: Delivery) -> None:
        if self._state != "READY":
            # left un-acked, the broker redelivers it
            self._dropped += 1
            return

        await self._slots.acquire()
        if self._state != "READY":
            self._slots.release()
            self._dropped += 1
            return
        task = asyncio.create_task(self._run(delivery))
        self._in_flight.add(task)
        task.add_done_callback(self._finished)

    async def _run(self, delivery: Delivery) -> None:
        try:
            await asyncio.wait_for(self._handler(delivery), timeout=self._handler_timeout)
        except asyncio.TimeoutError:
            self._timed_out += 1
            self._logger.warning("handler_timed_out", source=self.source_type,
                                 num_delivered=delivery.num_delivered, timeout=self._handler_timeout)
        except asyncio.CancelledError:
            self._logger.warning("handler_abandoned", source=self.source_type,
                                 num_delivered=delivery.num_delivered)
            raise
        except Exception as e:
            self._logger.exception("handler_failed", source=self.source_type, error=str(e))
        else:
            self._handled += 1

    def _finished(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        self._slots.release()

    # ===== Context Manager Support =====
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()
