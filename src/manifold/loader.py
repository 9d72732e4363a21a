"""Locate and import the Project object a configuration points at."""

from __future__ import annotations

import importlib
import importlib.util
import sys
from pathlib import Path

from manifold.engine import Project
from manifold.errors import ConfigurationError


def _load_module(module_name: str, project_dir: Path):
    """Import a module by dotted name, or by file path relative to the project."""
    candidate = project_dir / module_name
    if candidate.suffix == ".py" and candidate.exists():
        spec = importlib.util.spec_from_file_location(candidate.stem, candidate)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load module from {candidate}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    root = str(project_dir.resolve())
    if root not in sys.path:
        sys.path.insert(0, root)
    return importlib.import_module(module_name)


def load_project_object(entrypoint: str, project_dir: Path) -> Project:
    """Resolve a ``module:attribute`` entrypoint to a Project.

    The attribute may be a Project or a zero-argument callable returning one.
    ``module`` is either a dotted module name importable from ``project_dir``
    or a path to a ``.py`` file inside it.
    """
    module_name, sep, attr = entrypoint.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Invalid models entrypoint {entrypoint!r}, expected 'module:attribute'")

    try:
        module = _load_module(module_name, project_dir)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import {module_name!r}: {e}") from e

    try:
        obj = getattr(module, attr)
    except AttributeError:
        raise ConfigurationError(f"Module {module_name!r} has no attribute {attr!r}") from None

    if callable(obj) and not isinstance(obj, Project):
        obj = obj()
    if not isinstance(obj, Project):
        raise ConfigurationError(f"{entrypoint!r} is a {type(obj).__name__}, expected a manifold Project")
    return obj
