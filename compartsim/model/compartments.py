"""
Compartment Generator

Derives compartments and shortcuts from the division/category structure of
a population. Generation is deterministic: the same divisions and categories
in the same order always give the same names in the same order, since
definitions refer to compartments by name.

Naming:
    compartment = one category per division, joined with '_' in division
    order, last division varying fastest. A single division yields the
    category names unchanged.
    shortcut = one category from each of a strict, non-empty subset of the
    divisions, joined the same way.
"""

from itertools import combinations, product
from typing import Dict, List, Mapping, Optional, Sequence

from compartsim.model.entities import Compartment, Division, Shortcut
from compartsim.utils.constants import NAME_SEPARATOR
from compartsim.utils.exceptions import ValidationError


def combine_categories(
    divisions: Sequence[Division],
    fixed: Optional[Mapping[str, str]] = None
) -> List[str]:
    """
    Build the Cartesian product of category names.

    Args:
        divisions: Ordered divisions
        fixed: Optional partial assignment (division name -> category name);
            fixed divisions contribute only that category

    Returns:
        Ordered list of compartment names

    Raises:
        ValidationError: If a fixed division or category does not exist
    """
    fixed = dict(fixed or {})
    axes = []
    for division in divisions:
        names = division.category_names
        if division.name in fixed:
            chosen = fixed.pop(division.name)
            if chosen not in names:
                raise ValidationError(chosen, f"not a category of division '{division.name}'")
            names = [chosen]
        axes.append(names)

    if fixed:
        raise ValidationError(', '.join(sorted(fixed)), "not a division of the population")

    return [NAME_SEPARATOR.join(parts) for parts in product(*axes)]


def distribute_population(habitants: int, count: int) -> List[float]:
    """
    Split habitants evenly over ``count`` compartments in whole people.

    The remainder goes one each to the first compartments, so the values
    always add up to ``habitants``.
    """
    if count <= 0:
        return []
    base, remainder = divmod(int(habitants), count)
    return [float(base + 1 if i < remainder else base) for i in range(count)]


def generate_compartments(divisions: Sequence[Division], habitants: int) -> List[Compartment]:
    """Create fresh compartments, without definitions, sharing out the habitants."""
    names = combine_categories(divisions)
    values = distribute_population(habitants, len(names))
    return [Compartment(name=name, value=value) for name, value in zip(names, values)]


def generate_shortcuts(
    divisions: Sequence[Division],
    compartments: Sequence[Compartment]
) -> List[Shortcut]:
    """
    Create the shortcuts of a population structure.

    Args:
        divisions: Ordered divisions
        compartments: Compartments generated from the same divisions

    Returns:
        Shortcuts whose members are the uids of matching compartments; empty
        for a single-division population
    """
    n_divisions = len(divisions)
    if n_divisions < 2:
        return []

    parts_by_uid: Dict[str, List[str]] = {
        c.uid: c.name.split(NAME_SEPARATOR) for c in compartments
    }

    shortcuts = []
    for size in range(1, n_divisions):
        for indices in combinations(range(n_divisions), size):
            axes = [divisions[i].category_names for i in indices]
            for assignment in product(*axes):
                members = tuple(
                    uid for uid, parts in parts_by_uid.items()
                    if all(parts[i] == cat for i, cat in zip(indices, assignment))
                )
                shortcuts.append(Shortcut(NAME_SEPARATOR.join(assignment), members))
    return shortcuts
