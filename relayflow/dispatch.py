"""Action dispatcher: resolves a step type to its handler and runs it."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .actions import ActionResult
from .constants import DEFAULT_ACTION_TIMEOUT
from .errors import HandlerTimeout
from .registry import ActionRegistry

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Service responsible for invoking the handler registered for a step type."""

    def __init__(
        self,
        registry: ActionRegistry,
        default_timeout: float = DEFAULT_ACTION_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._default_timeout = default_timeout

    @property
    def registry(self) -> ActionRegistry:
        return self._registry

    def _timeout_for(self, handler: Any, timeout: Optional[float]) -> float:
        if timeout is not None:
            return timeout
        handler_timeout = getattr(handler, "timeout", None)
        if handler_timeout is not None:
            return handler_timeout
        return self._default_timeout

    async def dispatch(
        self,
        step_type: str,
        actions: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> ActionResult:
        """Run the handler for ``step_type`` with ``actions``.

        Raises:
            UnknownActionType: no handler is registered for ``step_type``.

        Handler exceptions and timeouts are reported as failed results.
        """
        handler = self._registry.get(step_type)
        limit = self._timeout_for(handler, timeout)
        call = handler.execute if hasattr(handler, "execute") else handler

        try:
            if inspect.iscoroutinefunction(call):
                raw = await asyncio.wait_for(call(actions), timeout=limit)
            else:
                raw = await asyncio.wait_for(asyncio.to_thread(call, actions), timeout=limit)
                if inspect.isawaitable(raw):
                    raw = await asyncio.wait_for(raw, timeout=limit)
        except asyncio.TimeoutError:
            error = HandlerTimeout(step_type, limit)
            logger.warning(str(error))
            return ActionResult.failed(str(error))
        except Exception as exc:
            logger.exception(f"Handler for {step_type} raised")
            return ActionResult.failed(str(exc) or exc.__class__.__name__)

        return self._coerce(step_type, raw)

    @staticmethod
    def _coerce(step_type: str, raw: Any) -> ActionResult:
        if isinstance(raw, ActionResult):
            return raw
        try:
            return ActionResult.model_validate(raw)
        except ValidationError:
            logger.error(f"Handler for {step_type} returned an invalid result: {raw!r}")
            return ActionResult.failed(f"Invalid result from {step_type} handler")
