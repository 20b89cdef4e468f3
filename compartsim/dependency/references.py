"""
Reference extraction and whole-token rewriting of definition text.

Identifiers are matched as whole tokens: renaming ``mu`` never touches
``mu1`` or ``gamma_mu``.
"""

from typing import Iterable, List, Mapping, Optional, Set

from compartsim.expression.evaluator import BUILTIN_NAMES, ExpressionEvaluator, iter_names
from compartsim.utils.constants import STATEMENT_SEPARATOR
from compartsim.utils.exceptions import ExpressionSyntaxError


def strip_builtins(text: str) -> str:
    """Blank out built-in function and constant tokens, keeping offsets."""
    pieces = []
    cursor = 0
    for name, start, end in iter_names(text):
        if name in BUILTIN_NAMES:
            pieces.append(text[cursor:start])
            pieces.append(' ' * (end - start))
            cursor = end
    pieces.append(text[cursor:])
    return ''.join(pieces)


def referenced_names(text: str, known: Optional[Iterable[str]] = None) -> List[str]:
    """
    Identifiers referenced by a definition, in order of first appearance.

    Args:
        text: Definition text
        known: If given, only names in this collection are returned

    Returns:
        Distinct referenced names
    """
    known = set(known) if known is not None else None
    found: List[str] = []
    for name, _, _ in iter_names(strip_builtins(text or "")):
        if name in found:
            continue
        if known is None or name in known:
            found.append(name)
    return found


def rename_tokens(text: str, mapping: Mapping[str, str]) -> str:
    """
    Replace whole identifier tokens according to ``mapping`` in one pass.

    Example:
        >>> rename_tokens("mu*mu1 + sin(mu)", {"mu": "nu"})
        'nu*mu1 + sin(nu)'
    """
    if not text or not mapping:
        return text
    pieces = []
    cursor = 0
    for name, start, end in iter_names(text):
        if name in mapping:
            pieces.append(text[cursor:start])
            pieces.append(mapping[name])
            cursor = end
    pieces.append(text[cursor:])
    return ''.join(pieces)


def validate_definition(
    text: str,
    allowed: Iterable[str],
    evaluator: ExpressionEvaluator
) -> Set[str]:
    """
    Check a definition before it is stored.

    A statement separator rejects the text without consulting the
    evaluator. Blank text is an absent definition and always valid.

    Args:
        text: Definition text
        allowed: Names resolvable at the owning entity's position
        evaluator: Evaluator used to parse and trial-evaluate the text

    Returns:
        Names the definition references

    Raises:
        ExpressionSyntaxError: On a separator or unparseable text
        UndefinedReferenceError: On a name outside ``allowed``
    """
    if STATEMENT_SEPARATOR in (text or ""):
        raise ExpressionSyntaxError(text, f"'{STATEMENT_SEPARATOR}' is not allowed in a definition")
    if not text or not text.strip():
        return set()
    return evaluator.check(text, allowed)
