"""
Reserved-name registry.

Every category, division, compartment, shortcut, parameter and process
name lives in one flat namespace, together with the built-in vocabulary
of the expression evaluator.
"""

import re
from typing import Dict, List, Optional, Tuple

from compartsim.expression.evaluator import BUILTIN_NAMES
from compartsim.model.entities import EntityKind
from compartsim.utils.exceptions import ValidationError

IDENTIFIER_PATTERN = re.compile(r"[^\W\d]\w*")


def check_identifier(name: str) -> None:
    """
    Raise ValidationError unless ``name`` can appear as an expression identifier.
    """
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.fullmatch(name):
        raise ValidationError(str(name), "names must start with a letter and contain only letters, digits or '_'")
    if name in BUILTIN_NAMES:
        raise ValidationError(name, "is a built-in function or constant")


class NameRegistry:
    """Maps each reserved name to the kind and uid of the entity owning it."""

    def __init__(self):
        self._owners: Dict[str, Tuple[EntityKind, str]] = {}

    def reserve(self, name: str, kind: EntityKind, uid: str, replace: bool = False) -> None:
        """
        Reserve a name for an entity.

        Args:
            name: Name to reserve
            kind: Kind of the owning entity
            uid: Owning entity uid
            replace: Take over a name already held by another entity (used
                for generated names that coincide with a category)

        Raises:
            ValidationError: If the name is malformed, built-in or taken
        """
        check_identifier(name)
        owner = self._owners.get(name)
        if owner is not None and owner[1] != uid and not replace:
            raise ValidationError(name, f"already used by a {owner[0].value}")
        self._owners[name] = (kind, uid)

    def release(self, name: str) -> None:
        self._owners.pop(name, None)

    def release_kinds(self, *kinds: EntityKind) -> None:
        """Release every name held by entities of the given kinds."""
        for name in [n for n, (k, _) in self._owners.items() if k in kinds]:
            del self._owners[name]

    def is_reserved(self, name: str) -> bool:
        return name in BUILTIN_NAMES or name in self._owners

    def kind_of(self, name: str) -> Optional[EntityKind]:
        owner = self._owners.get(name)
        return owner[0] if owner else None

    def uid_of(self, name: str) -> Optional[str]:
        owner = self._owners.get(name)
        return owner[1] if owner else None

    def names(self, kind: Optional[EntityKind] = None) -> List[str]:
        """Reserved names, optionally restricted to one kind."""
        return [n for n, (k, _) in self._owners.items() if kind is None or k == kind]

    def __contains__(self, name: str) -> bool:
        return name in self._owners

    def __len__(self) -> int:
        return len(self._owners)
