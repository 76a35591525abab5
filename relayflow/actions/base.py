"""Action handler contract."""

from __future__ import annotations

import abc
from typing import Any, Awaitable, ClassVar, Dict, Optional, Union

from pydantic import BaseModel, Field


class ActionResult(BaseModel):
    """Outcome reported by an action handler."""

    success: bool
    results: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, **results: Any) -> "ActionResult":
        return cls(success=True, results=results)

    @classmethod
    def failed(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)


class ActionHandler(abc.ABC):
    """Executes one step type.

    ``execute`` may be a coroutine or a plain function and may return an
    :class:`ActionResult` or a dict of the same shape. Handlers that talk to
    slow services can set ``timeout`` (seconds) to override the engine
    default.
    """

    timeout: ClassVar[Optional[float]] = None

    @abc.abstractmethod
    def execute(
        self, config: Dict[str, Any]
    ) -> Union[ActionResult, Dict[str, Any], Awaitable[Union[ActionResult, Dict[str, Any]]]]:
        raise NotImplementedError
