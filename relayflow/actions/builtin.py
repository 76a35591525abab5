"""Handlers that ship with the engine."""

from __future__ import annotations

import logging
from typing import Any, Dict

from .base import ActionHandler, ActionResult

logger = logging.getLogger(__name__)


class TriggerHandler(ActionHandler):
    """Entry step; exposes its ``trigger`` action config as results."""

    async def execute(self, config: Dict[str, Any]) -> ActionResult:
        trigger = config.get("trigger")
        return ActionResult.ok(**(trigger if isinstance(trigger, dict) else {}))


class TerminatorHandler(ActionHandler):
    async def execute(self, config: Dict[str, Any]) -> ActionResult:
        logger.info("Workflow terminated successfully")
        return ActionResult.ok(message="Workflow terminated successfully")
