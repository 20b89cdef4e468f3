"""Dependency tracking between definitions."""

from compartsim.dependency.graph import DependencyGraph
from compartsim.dependency.references import (
    referenced_names,
    rename_tokens,
    strip_builtins,
    validate_definition,
)

__all__ = [
    "DependencyGraph",
    "referenced_names",
    "rename_tokens",
    "strip_builtins",
    "validate_definition",
]
