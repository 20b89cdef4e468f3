"""
Epidemic Model

The model context: owns the population structure, the generated
compartments and shortcuts, the ordered parameters and processes, the
reserved-name registry and the dependency graph. Every authoring and
structural operation goes through this class so that registry, graph and
definition text never drift apart.

Scopes (names a definition may use):
    parameter i   earlier parameters, compartments, shortcuts
    process j     all parameters, earlier processes, compartments, shortcuts
    compartment   everything
"""

import math
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

import numpy as np

from compartsim.dependency.graph import DependencyGraph
from compartsim.dependency.references import referenced_names, rename_tokens, validate_definition
from compartsim.expression.evaluator import ExpressionEvaluator
from compartsim.model.compartments import combine_categories, generate_compartments, generate_shortcuts
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
from compartsim.model.registry import NameRegistry, check_identifier
from compartsim.utils.constants import NAME_SEPARATOR
from compartsim.utils.exceptions import ModelValidationError, StructuralError, ValidationError
from compartsim.utils.logger import get_logger

SegmentSpec = Union[TimeSegment, Tuple[float, str]]

_STRUCTURE_KINDS = (
    EntityKind.DIVISION,
    EntityKind.CATEGORY,
    EntityKind.COMPARTMENT,
    EntityKind.SHORTCUT,
)


class EpidemicModel:
    """
    A compartmental epidemic model under construction.

    Example:
        >>> model = EpidemicModel("flu")
        >>> model.set_population(Population.from_categories(
        ...     "People", 1000, [("Health", ["Healthy", "Sick"])]))
        []
        >>> k = model.add_parameter("k", "0.01")
        >>> model.set_compartment_definition("Healthy", "-k*Healthy")
        >>> model.set_compartment_definition("Sick", "k*Healthy")
    """

    def __init__(self, name: str = "epidemic", time_unit: str = "days", horizon: float = 100.0):
        """
        Initialize an empty model.

        Args:
            name: Model name
            time_unit: Label of the time axis
            horizon: Default simulated time span
        """
        self.name = name
        self.time_unit = time_unit
        self.horizon = float(horizon)

        self.population: Optional[Population] = None
        self.compartments: List[Compartment] = []
        self.shortcuts: List[Shortcut] = []
        self.parameters: List[Parameter] = []
        self.processes: List[Process] = []
        self.results: list = []

        self.registry = NameRegistry()
        self.graph = DependencyGraph()
        self.evaluator = ExpressionEvaluator()
        self._entities: Dict[str, object] = {}

        self.logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def compartment_names(self) -> List[str]:
        return [c.name for c in self.compartments]

    @property
    def shortcut_names(self) -> List[str]:
        return [s.name for s in self.shortcuts]

    @property
    def parameter_names(self) -> List[str]:
        return [p.name for p in self.parameters]

    @property
    def process_names(self) -> List[str]:
        return [p.name for p in self.processes]

    def entity(self, name: str):
        """
        Return the compartment, shortcut, parameter or process called ``name``.

        Raises:
            ValidationError: If no such entity exists
        """
        uid = self.registry.uid_of(name)
        if uid is None or uid not in self._entities:
            raise ValidationError(name, "no compartment, shortcut, parameter or process has this name")
        return self._entities[uid]

    def name_of(self, uid: str) -> str:
        return self._entities[uid].name

    def _typed(self, name: str, cls: type):
        entity = self.entity(name)
        if not isinstance(entity, cls):
            raise ValidationError(name, f"is not a {cls.__name__.lower()}")
        return entity

    def parameter(self, name: str) -> Parameter:
        return self._typed(name, Parameter)

    def process(self, name: str) -> Process:
        return self._typed(name, Process)

    def compartment(self, name: str) -> Compartment:
        return self._typed(name, Compartment)

    def shortcut(self, name: str) -> Shortcut:
        return self._typed(name, Shortcut)

    def combinations(self, fixed: Optional[Mapping[str, str]] = None) -> List[str]:
        """Compartment names of the current structure, optionally restricted to a partial assignment."""
        if self.population is None:
            return []
        return combine_categories(self.population.divisions, fixed)

    def initial_state(self) -> np.ndarray:
        """Current compartment values as a state vector."""
        return np.array([c.value for c in self.compartments], dtype=float)

    # ------------------------------------------------------------------
    # Scopes and links
    # ------------------------------------------------------------------

    def _base_scope(self) -> Set[str]:
        return set(self.compartment_names) | set(self.shortcut_names)

    def _parameter_scope(self, index: int) -> Set[str]:
        return self._base_scope() | {p.name for p in self.parameters[:index]}

    def _process_scope(self, index: int) -> Set[str]:
        return (
            self._base_scope()
            | set(self.parameter_names)
            | {p.name for p in self.processes[:index]}
        )

    def _full_scope(self) -> Set[str]:
        return self._base_scope() | set(self.parameter_names) | set(self.process_names)

    def allowed_names(self, name: str) -> Set[str]:
        """Names the definition of entity ``name`` may legally reference."""
        entity = self.entity(name)
        if isinstance(entity, Parameter):
            return self._parameter_scope(self.parameters.index(entity))
        if isinstance(entity, Process):
            return self._process_scope(self.processes.index(entity))
        if isinstance(entity, Compartment):
            return self._full_scope()
        raise ValidationError(name, "shortcuts have no editable definition")

    def validate_definition(self, text: str, name: str) -> Set[str]:
        """
        Check ``text`` as a definition for entity ``name`` without storing it.

        Returns:
            Names the text references

        Raises:
            ExpressionSyntaxError: On a statement separator or unparseable text
            UndefinedReferenceError: On names not resolvable at the entity's position
        """
        return validate_definition(text, self.allowed_names(name), self.evaluator)

    def _resolve(self, names: Iterable[str]) -> Set[str]:
        """Map referenced names to graph nodes, expanding shortcuts to their members."""
        uids = set()
        for name in names:
            uid = self.registry.uid_of(name)
            entity = self._entities.get(uid) if uid else None
            if isinstance(entity, Shortcut):
                uids.update(entity.members)
            elif uid in self.graph:
                uids.add(uid)
        return uids

    def _definitions_of(self, entity) -> List[str]:
        if isinstance(entity, Process):
            return entity.definitions
        return [entity.definition]

    def _link(self, entity, names: Iterable[str]) -> None:
        self.graph.set_links(entity.uid, self._resolve(names))

    def _relink_all(self) -> None:
        """Rebuild every link from definition text, skipping names that no longer exist."""
        known = set(self.registry.names())
        for entity in [*self.parameters, *self.processes, *self.compartments]:
            names: Set[str] = set()
            for text in self._definitions_of(entity):
                names.update(referenced_names(text, known))
            self._link(entity, names)

    def _ordered_names(self, uids: Iterable[str]) -> List[str]:
        """Entity names for ``uids`` in model order: parameters, processes, compartments."""
        uids = set(uids)
        return [
            e.name for e in [*self.parameters, *self.processes, *self.compartments]
            if e.uid in uids
        ]

    # ------------------------------------------------------------------
    # Population structure
    # ------------------------------------------------------------------

    def _check_population(self, population: Population) -> None:
        if population.habitants is None or population.habitants < 0:
            raise ValidationError(population.name, "habitant count must be non-negative")
        if not population.divisions:
            raise ValidationError(population.name, "a population needs at least one division")

        user_names = set(self.parameter_names) | set(self.process_names)
        seen: Set[str] = set()

        for division in population.divisions:
            check_identifier(division.name)
            if len(division.categories) < 2:
                raise ValidationError(division.name, "a division needs at least two categories")
            if division.name in seen or division.name in user_names:
                raise ValidationError(division.name, "name already in use")
            seen.add(division.name)

        for category in [c for d in population.divisions for c in d.categories]:
            check_identifier(category.name)
            if NAME_SEPARATOR in category.name:
                raise ValidationError(category.name, f"category names may not contain '{NAME_SEPARATOR}'")
            if category.name in seen or category.name in user_names:
                raise ValidationError(category.name, "name already in use")
            seen.add(category.name)

        # generated names must be free before anything is replaced
        compartments = generate_compartments(population.divisions, 0)
        shortcuts = generate_shortcuts(population.divisions, compartments)
        taken = user_names | {d.name for d in population.divisions}
        for entity in [*compartments, *shortcuts]:
            if entity.name in taken:
                raise ValidationError(
                    entity.name, "generated name already used by a parameter, process or division"
                )

    def _compartment_dependents(self) -> List[str]:
        """Parameters and processes whose definitions reference a compartment."""
        dependents: Set[str] = set()
        for compartment in self.compartments:
            dependents |= self.graph.dependents_of(
                compartment.uid, kinds=(EntityKind.PARAMETER, EntityKind.PROCESS)
            )
        return self._ordered_names(dependents)

    def preview_restructure(self, population: Population) -> List[str]:
        """
        Check a new population structure and report what installing it would affect.

        Returns:
            Names of parameters and processes whose definitions reference the
            current compartments

        Raises:
            ValidationError: If the structure is invalid
        """
        self._check_population(population)
        return self._compartment_dependents()

    def set_population(self, population: Population, clear_dependents: bool = False) -> List[str]:
        """
        Install a population structure, regenerating compartments and shortcuts.

        Previous compartment definitions are discarded and the habitants are
        shared out evenly. Parameters and processes referencing the old
        compartments keep their text unless ``clear_dependents`` is set.

        Args:
            population: New structure
            clear_dependents: Clear the definitions of affected parameters and processes

        Returns:
            Names of the affected parameters and processes
        """
        affected = self.preview_restructure(population)
        if affected:
            self.logger.warning(
                f"Restructuring discards compartment definitions; referenced by: {', '.join(affected)}"
                + (" (cleared)" if clear_dependents else "")
            )

        for compartment in self.compartments:
            self.graph.remove_entity(compartment.uid)
            self._entities.pop(compartment.uid, None)
        for shortcut in self.shortcuts:
            self._entities.pop(shortcut.uid, None)

        self.population = population
        self.compartments = generate_compartments(population.divisions, population.habitants)
        self.shortcuts = generate_shortcuts(population.divisions, self.compartments)

        for compartment in self.compartments:
            self._entities[compartment.uid] = compartment
            self.graph.add_entity(compartment.uid, EntityKind.COMPARTMENT)
        for shortcut in self.shortcuts:
            self._entities[shortcut.uid] = shortcut
        self._register_structure()

        if clear_dependents:
            for name in affected:
                self._clear_definition(self.entity(name))
        self._relink_all()

        self.logger.info(
            f"Population '{population.name}': {len(self.compartments)} compartments, "
            f"{len(self.shortcuts)} shortcuts"
        )
        return affected

    def _register_structure(self) -> None:
        self.registry.release_kinds(*_STRUCTURE_KINDS)
        for division in self.population.divisions:
            self.registry.reserve(division.name, EntityKind.DIVISION, division.uid)
            for category in division.categories:
                self.registry.reserve(category.name, EntityKind.CATEGORY, category.uid)
        for entity, kind in [
            *[(c, EntityKind.COMPARTMENT) for c in self.compartments],
            *[(s, EntityKind.SHORTCUT) for s in self.shortcuts],
        ]:
            replace = self.registry.kind_of(entity.name) == EntityKind.CATEGORY
            self.registry.reserve(entity.name, kind, entity.uid, replace=replace)

    def _find_category(self, name: str) -> Optional[Category]:
        if self.population is None:
            return None
        for division in self.population.divisions:
            for category in division.categories:
                if category.name == name:
                    return category
        return None

    def _find_division(self, name: str) -> Optional[Division]:
        if self.population is None:
            return None
        return next((d for d in self.population.divisions if d.name == name), None)

    # ------------------------------------------------------------------
    # Authoring
    # ------------------------------------------------------------------

    def _check_new_name(self, name: str) -> None:
        check_identifier(name)
        if self.registry.is_reserved(name):
            raise ValidationError(name, "name already in use")

    def add_parameter(
        self,
        name: str,
        definition: str = "",
        description: str = "",
        index: Optional[int] = None
    ) -> Parameter:
        """
        Create a parameter.

        Args:
            name: Unique name
            definition: Expression over earlier parameters, compartments and shortcuts
            description: Free text
            index: Position in the evaluation order (default: last)

        Returns:
            The new Parameter
        """
        self._check_new_name(name)
        index = len(self.parameters) if index is None else max(0, min(index, len(self.parameters)))
        names = validate_definition(definition, self._parameter_scope(index), self.evaluator)

        parameter = Parameter(name=name, definition=definition, description=description)
        self.parameters.insert(index, parameter)
        self._add_node(parameter, EntityKind.PARAMETER)
        self._link(parameter, names)
        return parameter

    def set_parameter_definition(self, name: str, definition: str) -> None:
        """Validate and store a new parameter definition."""
        parameter = self.parameter(name)
        index = self.parameters.index(parameter)
        names = validate_definition(definition, self._parameter_scope(index), self.evaluator)
        parameter.definition = definition
        self._link(parameter, names)

    def _normalize_segments(self, name: str, segments: Union[str, Sequence[SegmentSpec]]) -> List[TimeSegment]:
        if isinstance(segments, str):
            segments = [(0.0, segments)]
        normalized = [
            s if isinstance(s, TimeSegment) else TimeSegment(float(s[0]), s[1])
            for s in segments
        ]
        normalized.sort(key=lambda s: s.start)
        for previous, current in zip(normalized, normalized[1:]):
            if current.start == previous.start:
                raise ValidationError(name, f"two time segments start at {current.start:g}")
        return normalized

    def _validate_segments(self, segments: List[TimeSegment], index: int) -> Set[str]:
        scope = self._process_scope(index)
        names: Set[str] = set()
        for segment in segments:
            names |= validate_definition(segment.definition, scope, self.evaluator)
        return names

    def add_process(
        self,
        name: str,
        segments: Union[str, Sequence[SegmentSpec]] = (),
        description: str = "",
        index: Optional[int] = None
    ) -> Process:
        """
        Create a process.

        Args:
            name: Unique name
            segments: Time segments as TimeSegment or (start, definition)
                pairs, or a single definition valid from t=0
            description: Free text
            index: Position in the evaluation order (default: last)

        Returns:
            The new Process
        """
        self._check_new_name(name)
        index = len(self.processes) if index is None else max(0, min(index, len(self.processes)))
        normalized = self._normalize_segments(name, segments)
        names = self._validate_segments(normalized, index)

        process = Process(name=name, segments=normalized, description=description)
        self.processes.insert(index, process)
        self._add_node(process, EntityKind.PROCESS)
        self._link(process, names)
        return process

    def set_process_segments(self, name: str, segments: Union[str, Sequence[SegmentSpec]]) -> None:
        """Validate and store the time segments of a process."""
        process = self.process(name)
        normalized = self._normalize_segments(name, segments)
        names = self._validate_segments(normalized, self.processes.index(process))
        process.segments = normalized
        self._link(process, names)

    def set_compartment_definition(self, name: str, definition: str) -> None:
        """Validate and store the derivative definition of a compartment."""
        compartment = self.compartment(name)
        names = validate_definition(definition, self._full_scope(), self.evaluator)
        compartment.definition = definition
        self._link(compartment, names)

    def set_compartment_value(self, name: str, value: float) -> None:
        """Set the initial value of a compartment."""
        value = float(value)
        if not math.isfinite(value) or value < 0:
            raise ValidationError(name, f"initial value must be finite and non-negative, got {value}")
        self.compartment(name).value = value

    def set_compartment_values(self, values: Mapping[str, float]) -> None:
        for name, value in values.items():
            self.set_compartment_value(name, value)

    def add_result(self, result) -> None:
        """Attach a result sink after checking its function expressions."""
        scope = self._full_scope()
        for function in result.functions:
            validate_definition(function.expression, scope, self.evaluator)
        self.results.append(result)

    def _add_node(self, entity, kind: EntityKind) -> None:
        self.registry.reserve(entity.name, kind, entity.uid)
        self._entities[entity.uid] = entity
        self.graph.add_entity(entity.uid, kind)

    def _clear_definition(self, entity) -> None:
        if isinstance(entity, Process):
            for segment in entity.segments:
                segment.definition = ""
        else:
            entity.definition = ""
        self.graph.clear_links(entity.uid)

    def _rewrite(self, entity, mapping: Mapping[str, str]) -> None:
        if isinstance(entity, Process):
            for segment in entity.segments:
                segment.definition = rename_tokens(segment.definition, mapping)
        else:
            entity.definition = rename_tokens(entity.definition, mapping)

    def _rewrite_results(self, mapping: Mapping[str, str]) -> None:
        for result in self.results:
            for function in result.functions:
                function.expression = rename_tokens(function.expression, mapping)

    # ------------------------------------------------------------------
    # Rename / delete / reorder
    # ------------------------------------------------------------------

    def rename(self, name: str, new_name: str) -> None:
        """
        Rename an entity and rewrite every definition referencing it.

        Parameters, processes, divisions and categories can be renamed; a
        category rename renames the compartments and shortcuts built from
        it. Rewriting is whole-token, so ``mu`` never matches inside ``mu1``.

        Raises:
            ValidationError: If the new name is malformed or taken, or the
                entity's name is generated
        """
        if name == new_name:
            return
        check_identifier(new_name)
        if self.registry.is_reserved(new_name):
            raise ValidationError(new_name, "name already in use")

        category = self._find_category(name)
        if category is not None:
            self._rename_category(category, new_name)
            return

        division = self._find_division(name)
        if division is not None:
            division.name = new_name
            self.registry.release(name)
            self.registry.reserve(new_name, EntityKind.DIVISION, division.uid)
            return

        kind = self.registry.kind_of(name)
        if kind in (EntityKind.COMPARTMENT, EntityKind.SHORTCUT):
            raise ValidationError(name, "generated names change through their categories")
        entity = self.entity(name)

        mapping = {name: new_name}
        for uid in self.graph.dependents_of(entity.uid):
            self._rewrite(self._entities[uid], mapping)
        self._rewrite_results(mapping)

        entity.name = new_name
        self.registry.release(name)
        self.registry.reserve(new_name, kind, entity.uid)
        self.logger.debug(f"Renamed {kind.value} '{name}' to '{new_name}'")

    def _rename_category(self, category: Category, new_name: str) -> None:
        if NAME_SEPARATOR in new_name:
            raise ValidationError(new_name, f"category names may not contain '{NAME_SEPARATOR}'")
        old_name = category.name

        def renamed(generated: str) -> str:
            parts = generated.split(NAME_SEPARATOR)
            return NAME_SEPARATOR.join(new_name if p == old_name else p for p in parts)

        mapping = {old_name: new_name}
        for entity in [*self.compartments, *self.shortcuts]:
            target = renamed(entity.name)
            if target != entity.name:
                mapping[entity.name] = target

        taken = set(self.parameter_names) | set(self.process_names)
        taken |= {d.name for d in self.population.divisions}
        clashes = sorted(n for n in mapping.values() if n in taken)
        if clashes:
            raise ValidationError(clashes[0], "generated name already used by a parameter, process or division")

        for entity in [*self.parameters, *self.processes, *self.compartments]:
            self._rewrite(entity, mapping)
        self._rewrite_results(mapping)

        category.name = new_name
        for entity in [*self.compartments, *self.shortcuts]:
            entity.name = mapping.get(entity.name, entity.name)
        self._register_structure()
        self.logger.debug(f"Renamed category '{old_name}' to '{new_name}' ({len(mapping) - 1} generated names)")

    def can_delete(self, name: str) -> Tuple[bool, List[str]]:
        """
        Check whether an entity is referenced by any definition.

        Returns:
            (True, []) when nothing references it, else (False, blocking names)
        """
        entity = self.entity(name)
        if isinstance(entity, Shortcut):
            known = set(self.registry.names())
            blocking = [
                e.name for e in [*self.parameters, *self.processes, *self.compartments]
                if any(name in referenced_names(t, known) for t in self._definitions_of(e))
            ]
        else:
            blocking = self._ordered_names(self.graph.dependents_of(entity.uid) - {entity.uid})
        return not blocking, blocking

    def delete(self, name: str) -> None:
        """
        Delete a parameter or process.

        Raises:
            StructuralError: If other definitions reference it
            ValidationError: If it is not a parameter or process
        """
        entity = self.entity(name)
        if not isinstance(entity, (Parameter, Process)):
            raise ValidationError(name, "only parameters and processes can be deleted")
        ok, blocking = self.can_delete(name)
        if not ok:
            raise StructuralError("delete", name, blocking)

        items = self.parameters if isinstance(entity, Parameter) else self.processes
        items.remove(entity)
        self.graph.remove_entity(entity.uid)
        self.registry.release(name)
        del self._entities[entity.uid]

    def _ordered_list(self, entity) -> list:
        if isinstance(entity, Parameter):
            return self.parameters
        if isinstance(entity, Process):
            return self.processes
        raise ValidationError(entity.name, "only parameters and processes are ordered")

    def can_reorder(self, name: str, other: str) -> Tuple[bool, List[str]]:
        """
        Check whether ``name`` may move past ``other`` in their ordered list.

        Moving earlier past ``other`` is blocked when ``name`` references it;
        moving later is blocked when ``other`` references ``name``.

        Returns:
            (ok, blocking names)
        """
        a, b = self.entity(name), self.entity(other)
        items = self._ordered_list(a)
        if items is not self._ordered_list(b):
            raise ValidationError(other, f"is not in the same list as '{name}'")

        index_a, index_b = items.index(a), items.index(b)
        if index_a > index_b:
            blocked = self.graph.references(a.uid, b.uid)
        elif index_a < index_b:
            blocked = self.graph.references(b.uid, a.uid)
        else:
            blocked = False
        return (False, [b.name]) if blocked else (True, [])

    def _move(self, name: str, index: int) -> None:
        entity = self.entity(name)
        items = self._ordered_list(entity)
        current = items.index(entity)
        index = max(0, min(index, len(items) - 1))
        if index == current:
            return

        crossed = items[index:current] if index < current else items[current + 1:index + 1]
        blocking = []
        for other in crossed:
            ok, names = self.can_reorder(name, other.name)
            blocking.extend(names)
        if blocking:
            raise StructuralError("move", name, blocking)

        items.pop(current)
        items.insert(index, entity)

    def move_parameter(self, name: str, index: int) -> None:
        """
        Move a parameter to position ``index`` of the evaluation order.

        Raises:
            StructuralError: If the move would cross a dependency
        """
        self.parameter(name)
        self._move(name, index)

    def move_process(self, name: str, index: int) -> None:
        """
        Move a process to position ``index`` of the evaluation order.

        Raises:
            StructuralError: If the move would cross a dependency
        """
        self.process(name)
        self._move(name, index)

    # ------------------------------------------------------------------
    # Whole-model validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """
        Check that the model is ready to simulate.

        Raises:
            ModelValidationError: Listing every problem found
        """
        issues: List[str] = []

        if self.population is None or not self.compartments:
            issues.append("the population has no compartments")

        def check(label: str, text: str, scope: Set[str]) -> None:
            try:
                validate_definition(text, scope, self.evaluator)
            except ValidationError as e:
                issues.append(f"{label}: {e.reason}")

        for i, parameter in enumerate(self.parameters):
            check(f"parameter '{parameter.name}'", parameter.definition, self._parameter_scope(i))

        for j, process in enumerate(self.processes):
            if not process.segments:
                issues.append(f"process '{process.name}' has no time segments")
            starts = [s.start for s in process.segments]
            if any(b <= a for a, b in zip(starts, starts[1:])):
                issues.append(f"process '{process.name}': segment starts must strictly increase")
            if starts and starts[0] > 0:
                self.logger.warning(
                    f"Process '{process.name}' has no segment before t={starts[0]:g}; "
                    "its first segment applies from t=0"
                )
            scope = self._process_scope(j)
            for segment in process.segments:
                check(f"process '{process.name}' (t>={segment.start:g})", segment.definition, scope)

        full = self._full_scope()
        for compartment in self.compartments:
            check(f"compartment '{compartment.name}'", compartment.definition, full)
            if not math.isfinite(compartment.value):
                issues.append(f"compartment '{compartment.name}' has a non-finite value")

        for result in self.results:
            for function in result.functions:
                check(f"result '{result.title}'", function.expression, full)

        if self.population is not None and self.compartments:
            total = sum(c.value for c in self.compartments)
            if abs(total - self.population.habitants) > 1e-9 * max(1.0, self.population.habitants):
                issues.append(
                    f"compartment values add up to {total:g}, population has {self.population.habitants}"
                )

        if issues:
            raise ModelValidationError(issues)
