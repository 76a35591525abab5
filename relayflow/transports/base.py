"""Base transport interface for relayflow messaging."""

from __future__ import annotations

import abc
import logging
from enum import Enum
from typing import Any, AsyncIterator, Generic, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel

from ..config import RetryConfig, TopologyConfig
from ..utils.retry import death_count, retries_exhausted

logger = logging.getLogger(__name__)

RawMessageT = TypeVar("RawMessageT")
ModelT = TypeVar("ModelT", bound=BaseModel)


class Route(str, Enum):
    """Logical destinations; each maps to a binding in the topology."""

    EXECUTION = "execution"
    DEAD_LETTER = "dead_letter"
    INVOKER = "invoker"
    COMPLETION = "completion"
    FAILED = "failed"


def encode(message: BaseModel) -> bytes:
    to_json = getattr(message, "to_json", None)
    text = to_json() if callable(to_json) else message.model_dump_json()
    return text.encode("utf-8")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Abstract base transport for message brokers."""

    def __init__(
        self,
        topology: Optional[TopologyConfig] = None,
        retry: Optional[RetryConfig] = None,
    ) -> None:
        self.topology = topology or TopologyConfig()
        self.retry = retry or RetryConfig()

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(
        self,
        route: Route | str,
        message: BaseModel,
        headers: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Send a message to the exchange bound for ``route``."""
        raise NotImplementedError

    @abc.abstractmethod
    def subscribe(
        self,
        route: Route | str,
        model: Type[ModelT],
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[Tuple[RawMessageT, ModelT]]:
        """Yield raw transport message and parsed model pairs.

        Payloads that do not parse into ``model`` are handed to
        :meth:`reject_invalid` and never yielded.

        Args:
            route: The route whose queue is consumed
            model: Pydantic model the payload is parsed into
            lifespan: Maximum time in seconds to keep consuming. If None, runs indefinitely.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Acknowledge successful processing."""
        raise NotImplementedError

    @abc.abstractmethod
    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Negatively acknowledge. Without requeue the broker dead-letters it."""
        raise NotImplementedError

    @abc.abstractmethod
    def headers(self, raw_message: RawMessageT) -> Mapping[str, Any]:
        """Return the transport headers of ``raw_message``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def park(self, raw_message: RawMessageT) -> None:
        """Move ``raw_message`` to the permanent failure queue and ack it."""
        raise NotImplementedError

    def death_count(self, raw_message: RawMessageT) -> int:
        """Number of times the message was already rejected from the execution queue."""
        return death_count(self.headers(raw_message), self.topology.execution.queue)

    async def dead_letter(self, raw_message: RawMessageT) -> bool:
        """Reject ``raw_message`` for a delayed retry, or park it.

        Returns ``True`` when retries are exhausted and the message went to
        the permanent failure queue.
        """
        count = self.death_count(raw_message)
        if retries_exhausted(count, self.retry.max_retries):
            logger.error(
                f"Message exhausted {count} retries; moving to {self.topology.failed.queue}"
            )
            await self.park(raw_message)
            return True
        logger.warning(
            f"Rejecting message to {self.topology.dead_letter.exchange} "
            f"(retry {count + 1}/{self.retry.max_retries})"
        )
        await self.nack(raw_message, requeue=False)
        return False

    async def reject_invalid(self, route: Route | str, raw_message: RawMessageT) -> None:
        """Handle a payload that could not be parsed."""
        if Route(route) is Route.EXECUTION:
            await self.dead_letter(raw_message)
        else:
            await self.park(raw_message)
