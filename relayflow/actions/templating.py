"""Resolution of node action configs against the run payload."""

from __future__ import annotations

import copy
import re
from typing import Any, Dict, Mapping

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}|\{([A-Za-z_][\w.]*)\}")


def _lookup(data: Mapping[str, Any], path: str) -> Any:
    value: Any = data
    for part in path.strip().split("."):
        if not isinstance(value, Mapping) or part not in value:
            return None
        value = value[part]
    return value


def render(value: Any, data: Mapping[str, Any]) -> Any:
    """Substitute ``${key}`` and ``{key}`` placeholders inside ``value``.

    A string that is exactly one placeholder is replaced by the raw value so
    lists and dicts survive; unknown keys are left untouched.
    """
    if isinstance(value, str):
        whole = _PLACEHOLDER.fullmatch(value)
        if whole:
            found = _lookup(data, whole.group(1) or whole.group(2))
            return value if found is None else found

        def _sub(match: re.Match) -> str:
            found = _lookup(data, match.group(1) or match.group(2))
            return match.group(0) if found is None else str(found)

        return _PLACEHOLDER.sub(_sub, value)
    if isinstance(value, dict):
        return {key: render(item, data) for key, item in value.items()}
    if isinstance(value, list):
        return [render(item, data) for item in value]
    return value


def resolve_actions(actions: Mapping[str, Any], data: Mapping[str, Any]) -> Dict[str, Any]:
    """Build the configuration handed to a handler.

    Each action config is deep-copied, unwrapped from a ``{"config": ...}``
    envelope, merged with the payload (config keys win) and rendered.
    """
    resolved: Dict[str, Any] = {}
    for key, entry in actions.items():
        config = copy.deepcopy(entry)
        if isinstance(config, dict) and set(config) == {"config"}:
            config = config["config"]
        if isinstance(config, dict):
            config = {**copy.deepcopy(dict(data)), **config}
        resolved[key] = render(config, data)
    return resolved
