"""Helpers that turn CLI arguments into runtime objects."""

from __future__ import annotations

import importlib
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from ..registry import ExecutorRegistry


def _load_registry(target: str) -> ExecutorRegistry:
    """Import ``module:attribute`` and return it as an executor registry.

    The attribute may be an :class:`ExecutorRegistry`, a mapping of node type
    to executor, or a zero-argument callable returning either.
    """
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Expected 'module:attribute', got {target!r}")

    cwd = str(Path.cwd())
    if cwd not in sys.path:
        sys.path.insert(0, cwd)
    module = importlib.import_module(module_name)
    try:
        obj: Any = getattr(module, attr)
    except AttributeError as exc:
        raise ValueError(f"Module {module_name} has no attribute {attr}") from exc

    if callable(obj) and not isinstance(obj, ExecutorRegistry):
        obj = obj()
    if isinstance(obj, ExecutorRegistry):
        return obj
    if isinstance(obj, dict):
        return ExecutorRegistry(obj)
    raise ValueError(f"{target} is not an ExecutorRegistry or a mapping of executors")


def _parse_json_object(raw: Optional[str], option: str) -> Dict[str, Any]:
    """Parse a JSON object passed on the command line."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{option} is not valid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{option} must be a JSON object")
    return data
