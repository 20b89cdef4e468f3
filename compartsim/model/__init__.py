"""Epidemic model entities, structure generation and the model context."""

from compartsim.model.entities import (
    Category,
    Compartment,
    Division,
    EntityKind,
    Parameter,
    Population,
    Process,
    Shortcut,
    TimeSegment,
)
from compartsim.model.compartments import (
    combine_categories,
    distribute_population,
    generate_compartments,
    generate_shortcuts,
)
from compartsim.model.registry import NameRegistry
from compartsim.model.epidemic import EpidemicModel

__all__ = [
    "Category",
    "Compartment",
    "Division",
    "EntityKind",
    "Parameter",
    "Population",
    "Process",
    "Shortcut",
    "TimeSegment",
    "combine_categories",
    "distribute_population",
    "generate_compartments",
    "generate_shortcuts",
    "NameRegistry",
    "EpidemicModel",
]
