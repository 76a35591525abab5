"""Registry mapping step types to action handlers."""

from __future__ import annotations

import importlib
import inspect
import logging
from typing import Any, Callable, Dict, Iterator, Mapping, Optional

from ..actions import ActionHandler, TerminatorHandler, TriggerHandler
from ..contracts import NodeType
from ..errors import UnknownActionType

logger = logging.getLogger(__name__)


class ActionRegistry:
    """Step type to handler mapping, populated once at process start."""

    def __init__(self, handlers: Optional[Mapping[str, Any]] = None) -> None:
        self._handlers: Dict[str, Any] = {}
        for step_type, handler in (handlers or {}).items():
            self.register(step_type, handler)

    def register(self, step_type: NodeType | str, handler: Any) -> Any:
        """Register ``handler`` for ``step_type``.

        ``handler`` may be an instance exposing ``execute``, an
        :class:`ActionHandler` subclass (instantiated without arguments) or a
        plain callable taking the config.
        """
        key = NodeType(step_type).value if isinstance(step_type, NodeType) else step_type
        if inspect.isclass(handler):
            handler = handler()
        if not callable(getattr(handler, "execute", None)) and not callable(handler):
            raise TypeError(f"Handler for {key} must be callable or define execute()")
        if key in self._handlers:
            logger.warning(f"Replacing handler for step type {key}")
        self._handlers[key] = handler
        return handler

    def handler(self, step_type: NodeType | str) -> Callable[[Any], Any]:
        """Decorator form of :meth:`register`."""

        def decorator(obj: Any) -> Any:
            self.register(step_type, obj)
            return obj

        return decorator

    def get(self, step_type: str) -> Any:
        try:
            return self._handlers[step_type]
        except KeyError:
            raise UnknownActionType(step_type) from None

    def load_handlers(self, specs: Mapping[str, str]) -> None:
        """Register handlers given as ``{"step_type": "module:attribute"}``."""
        for step_type, target in specs.items():
            module_name, _, attr = target.partition(":")
            if not attr:
                raise ValueError(f"Handler path must look like 'module:attr', got {target!r}")
            module = importlib.import_module(module_name)
            self.register(step_type, getattr(module, attr))
            logger.info(f"Loaded handler {target} for step type {step_type}")

    def __contains__(self, step_type: object) -> bool:
        return step_type in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)


def default_registry(specs: Optional[Mapping[str, str]] = None) -> ActionRegistry:
    """Registry with the built-in handlers plus any configured ones."""
    registry = ActionRegistry(
        {
            NodeType.TRIGGER.value: TriggerHandler,
            NodeType.TERMINATOR.value: TerminatorHandler,
        }
    )
    if specs:
        registry.load_handlers(specs)
    return registry


__all__ = ["ActionHandler", "ActionRegistry", "default_registry"]
