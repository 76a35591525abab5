"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Deque, Dict, List, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from ..config import RetryConfig, TopologyConfig
from ..utils.retry import record_death
from .base import BaseTransport, ModelT, Route, encode


@dataclass
class InMemoryDelivery:
    """A message sitting in (or taken from) an in-memory queue."""

    queue: str
    body: bytes
    headers: Dict[str, Any] = field(default_factory=dict)
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))


class InMemoryTransport(BaseTransport[InMemoryDelivery]):
    """Simple in-process queues mirroring the broker topology.

    Rejected execution messages wait in the dead-letter queue until
    :meth:`release_dead_letters` is called, which stands in for the TTL
    expiry that republishes them on a real broker.
    """

    def __init__(
        self,
        topology: Optional[TopologyConfig] = None,
        retry: Optional[RetryConfig] = None,
    ) -> None:
        super().__init__(topology, retry)
        self._queues: Dict[str, Deque[InMemoryDelivery]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self.acked: List[InMemoryDelivery] = []

    def queue(self, route: Route | str) -> Deque[InMemoryDelivery]:
        """Direct access to the queue bound for ``route``."""
        return self._queues[self.topology.binding(Route(route).value).queue]

    def messages(self, route: Route | str, model: Type[ModelT]) -> List[ModelT]:
        """Parse every message currently waiting on ``route`` without consuming it."""
        return [model.model_validate_json(d.body) for d in self.queue(route)]

    async def publish(
        self,
        route: Route | str,
        message: BaseModel,
        headers: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Publish message to in-memory queue."""
        await self.publish_raw(route, encode(message), headers)

    async def publish_raw(
        self,
        route: Route | str,
        body: bytes,
        headers: Optional[Mapping[str, Any]] = None,
    ) -> None:
        binding = self.topology.binding(Route(route).value)
        async with self._lock:
            self._queues[binding.queue].append(
                InMemoryDelivery(queue=binding.queue, body=body, headers=dict(headers or {}))
            )

    async def subscribe(
        self,
        route: Route | str,
        model: Type[ModelT],
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[Tuple[InMemoryDelivery, ModelT]]:
        """Subscribe to messages from the queue bound for ``route``.

        Args:
            route: The route to consume
            model: Model the payload is parsed into
            lifespan: Maximum time in seconds to keep consuming. If None, runs indefinitely.
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time() if lifespan else None
        queue = self.queue(route)

        while True:
            if lifespan and start_time is not None:
                if loop.time() - start_time >= lifespan:
                    break

            delivery: Optional[InMemoryDelivery] = None
            async with self._lock:
                if queue:
                    delivery = queue.popleft()

            if delivery is None:
                await asyncio.sleep(0.01)
                continue

            try:
                message = model.model_validate_json(delivery.body)
            except ValidationError:
                await self.reject_invalid(route, delivery)
                continue
            yield delivery, message

    async def ack(self, raw_message: InMemoryDelivery) -> None:
        self.acked.append(raw_message)

    async def nack(self, raw_message: InMemoryDelivery, requeue: bool = True) -> None:
        async with self._lock:
            if requeue:
                self._queues[raw_message.queue].appendleft(raw_message)
                return
            if raw_message.queue != self.topology.execution.queue:
                return
            raw_message.headers = record_death(raw_message.headers, raw_message.queue)
            raw_message.queue = self.topology.dead_letter.queue
            self._queues[raw_message.queue].append(raw_message)

    def headers(self, raw_message: InMemoryDelivery) -> Mapping[str, Any]:
        return raw_message.headers

    async def park(self, raw_message: InMemoryDelivery) -> None:
        await self.publish_raw(Route.FAILED, raw_message.body, raw_message.headers)
        await self.ack(raw_message)

    async def release_dead_letters(self) -> int:
        """Move every held dead letter back onto the execution queue."""
        async with self._lock:
            held = self._queues[self.topology.dead_letter.queue]
            released = 0
            while held:
                delivery = held.popleft()
                delivery.queue = self.topology.execution.queue
                self._queues[delivery.queue].append(delivery)
                released += 1
        return released
