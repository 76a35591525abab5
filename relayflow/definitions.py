"""Read-only access to workflow definitions."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

import yaml

from .conditions import validate_condition
from .config import RelayflowConfig
from .contracts import WorkflowDefinition

logger = logging.getLogger(__name__)

DEFINITION_SUFFIXES = (".yaml", ".yml", ".json")


class DefinitionStore(Protocol):
    """Source of workflow definitions, shared read-only by every consumer."""

    async def get(self, workflow_id: str) -> WorkflowDefinition | None:
        """Return the definition for ``workflow_id`` if known."""


def load_definition(path: str | Path) -> WorkflowDefinition:
    """Parse one YAML or JSON definition file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return WorkflowDefinition.model_validate(data)


def validate_definition(definition: WorkflowDefinition) -> List[str]:
    """Graph problems plus next-step condition problems."""
    problems = definition.validate_graph()
    for node in definition.nodes:
        for ref in node.next_steps:
            problems.extend(
                f"Node '{node.id}' -> '{ref.id}': {error}" for error in validate_condition(ref)
            )
    return problems


class InMemoryDefinitionStore:
    def __init__(self, definitions: Iterable[WorkflowDefinition] = ()) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {d.id: d for d in definitions}

    def add(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.id] = definition

    async def get(self, workflow_id: str) -> WorkflowDefinition | None:
        return self._definitions.get(workflow_id)

    def __len__(self) -> int:
        return len(self._definitions)


class FileDefinitionStore(InMemoryDefinitionStore):
    """Definitions loaded once from every YAML/JSON file in a directory."""

    def __init__(self, directory: str | Path) -> None:
        super().__init__()
        self.directory = Path(directory)
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Definition directory not found: {self.directory}")
        for path in sorted(self.directory.iterdir()):
            if path.suffix.lower() not in DEFINITION_SUFFIXES:
                continue
            definition = load_definition(path)
            self.add(definition)
            logger.debug(f"Loaded workflow {definition.id} from {path}")
        logger.info(f"Loaded {len(self)} workflow definitions from {self.directory}")


def get_definition_store(
    path: Optional[str] = None, config: Optional[RelayflowConfig] = None
) -> DefinitionStore:
    """Build the definition store from ``path`` or configuration."""
    path = path or (config.definitions_path if config else None)
    if not path:
        return InMemoryDefinitionStore()
    target = Path(path)
    if target.is_file():
        return InMemoryDefinitionStore([load_definition(target)])
    return FileDefinitionStore(target)
