"""Action handlers and the handler contract."""

from .base import ActionHandler, ActionResult
from .builtin import TerminatorHandler, TriggerHandler
from .templating import render, resolve_actions

__all__ = [
    "ActionHandler",
    "ActionResult",
    "TerminatorHandler",
    "TriggerHandler",
    "render",
    "resolve_actions",
]
