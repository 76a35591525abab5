"""Transport factory and initialization."""

from __future__ import annotations

import os
from typing import Callable, Dict, Optional

from ..config import RelayflowConfig, load_config
from .base import BaseTransport, Route
from .inmemory import InMemoryDelivery, InMemoryTransport


def _inmemory(config: RelayflowConfig) -> BaseTransport:
    return InMemoryTransport(topology=config.topology, retry=config.retry)


def _rabbitmq(config: RelayflowConfig) -> BaseTransport:
    from .rabbitmq import RabbitMQTransport

    rabbit_conf = config.transport.rabbitmq
    return RabbitMQTransport(
        url=rabbit_conf.url,
        topology=config.topology,
        retry=config.retry,
        prefetch_count=rabbit_conf.prefetch_count,
    )


_BACKENDS: Dict[str, Callable[[RelayflowConfig], BaseTransport]] = {
    "inmemory": _inmemory,
    "rabbitmq": _rabbitmq,
}


def get_transport(
    backend: Optional[str] = None, config: Optional[RelayflowConfig] = None
) -> BaseTransport:
    """Build the transport named by ``backend``, ``RELAYFLOW_TRANSPORT`` or the config.

    Every backend is wired with the configured queue topology and retry
    policy, so workers and invokers built from the same config agree on
    queue names.
    """
    config = config or load_config()
    name = (backend or os.getenv("RELAYFLOW_TRANSPORT") or config.transport.backend).lower()
    build = _BACKENDS.get(name)
    if build is None:
        raise ValueError(
            f"Unsupported transport backend: {name} (expected one of {', '.join(_BACKENDS)})"
        )
    return build(config)


__all__ = [
    "BaseTransport",
    "InMemoryDelivery",
    "InMemoryTransport",
    "Route",
    "get_transport",
]
