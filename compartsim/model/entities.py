"""
Entity Model

Plain data holders for the pieces of an epidemic model. Cross references
between entities live in the dependency graph, keyed by the ``uid`` every
entity receives at creation; names may change, uids never do.
"""

import uuid
from bisect import bisect_right
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


def new_uid() -> str:
    """Return a fresh stable entity identifier."""
    return uuid.uuid4().hex


class EntityKind(Enum):
    """Kinds of named entity sharing the model namespace."""
    DIVISION = "division"
    CATEGORY = "category"
    COMPARTMENT = "compartment"
    SHORTCUT = "shortcut"
    PARAMETER = "parameter"
    PROCESS = "process"


@dataclass
class Category:
    """One value along a division (e.g. 'child' for an age division)."""
    name: str
    description: str = ""
    uid: str = field(default_factory=new_uid)


@dataclass
class Division:
    """An independent axis of population stratification."""
    name: str
    categories: List[Category] = field(default_factory=list)
    uid: str = field(default_factory=new_uid)

    @property
    def category_names(self) -> List[str]:
        return [c.name for c in self.categories]


@dataclass
class Population:
    """Total habitants and the divisions partitioning them."""
    name: str
    habitants: int
    divisions: List[Division] = field(default_factory=list)

    @classmethod
    def from_categories(
        cls,
        name: str,
        habitants: int,
        divisions: List[Tuple[str, List[str]]]
    ) -> 'Population':
        """
        Build a population from (division name, category names) pairs.

        Example:
            >>> Population.from_categories('People', 1000, [('Health', ['Healthy', 'Sick'])])
        """
        return cls(
            name=name,
            habitants=habitants,
            divisions=[
                Division(div_name, [Category(c) for c in categories])
                for div_name, categories in divisions
            ],
        )

    @property
    def category_names(self) -> List[str]:
        return [c.name for d in self.divisions for c in d.categories]


@dataclass
class Compartment:
    """One cell of the category cross-product; its value is an ODE state variable."""
    name: str
    value: float = 0.0
    definition: str = ""
    uid: str = field(default_factory=new_uid)


@dataclass
class Parameter:
    """A global named quantity evaluated once per derivative pass, in list order."""
    name: str
    definition: str = ""
    description: str = ""
    uid: str = field(default_factory=new_uid)


@dataclass
class TimeSegment:
    """Definition of a process valid from ``start`` onward."""
    start: float
    definition: str = ""


@dataclass
class Process:
    """A time-varying quantity defined piecewise by time segments."""
    name: str
    segments: List[TimeSegment] = field(default_factory=list)
    description: str = ""
    uid: str = field(default_factory=new_uid)

    @property
    def definitions(self) -> List[str]:
        return [s.definition for s in self.segments]

    def segment_at(self, t: float) -> Optional[TimeSegment]:
        """
        Select the segment in force at time t.

        The segment with the greatest start <= t applies; before the first
        start the first segment applies.
        """
        if not self.segments:
            return None
        starts = [s.start for s in self.segments]
        index = bisect_right(starts, t) - 1
        return self.segments[max(index, 0)]


@dataclass
class Shortcut:
    """Generated alias summing every compartment that shares a partial category assignment."""
    name: str
    members: Tuple[str, ...] = ()
    uid: str = field(default_factory=new_uid)
