"""
Expression Evaluator

Parses the user-authored algebraic definitions of compartments, parameters
and processes into fast numeric callables and evaluates them against bound
variable values.

Parsing goes through sympy: every identifier of the definition is replaced
by a safe placeholder symbol before ``parse_expr`` sees it, so that model
names never collide with Python keywords or sympy's own namespace, and the
result is compiled once with ``lambdify``.

Grammar:
    numbers, identifiers, + - * / ^ (power), parentheses, comparisons and
    the built-in functions listed in BUILTIN_FUNCTIONS; ``pi`` and ``e`` are
    constants.
"""

import math
import re
from dataclasses import dataclass
from tokenize import TokenError
from typing import Callable, Dict, Iterable, Iterator, Mapping, Optional, Set, Tuple, Union

import numpy as np
import sympy as sp
from sympy.parsing.sympy_parser import convert_xor, parse_expr, standard_transformations

from compartsim.utils.exceptions import (
    EvaluationError,
    ExpressionSyntaxError,
    UndefinedReferenceError,
    ValidationError,
)

TOKEN_PATTERN = re.compile(
    r"(?P<number>(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)|(?P<name>[^\W\d]\w*)"
)

_TRANSFORMATIONS = standard_transformations + (convert_xor,)

# TypeError messages raised by calling a built-in with the wrong number of arguments
_ARITY_ERROR = re.compile(r"positional argument|takes .*arguments? |expected .*arguments?")

# Built-ins with a direct sympy counterpart
_SYMPY_FUNCTIONS: Dict[str, Callable] = {
    'sin': sp.sin,
    'cos': sp.cos,
    'tan': sp.tan,
    'asin': sp.asin,
    'acos': sp.acos,
    'atan': sp.atan,
    'atan2': sp.atan2,
    'sinh': sp.sinh,
    'cosh': sp.cosh,
    'tanh': sp.tanh,
    'asinh': sp.asinh,
    'acosh': sp.acosh,
    'atanh': sp.atanh,
    'log': lambda x: sp.log(x, 10),
    'ln': sp.log,
    'exp': sp.exp,
    'pow': sp.Pow,
    'sqrt': sp.sqrt,
    'abs': sp.Abs,
    'mod': sp.Mod,
    'floor': sp.floor,
    'ceil': sp.ceiling,
}

# Built-ins evaluated at run time (random draws, variadic sums); the value is
# the name of the opaque sympy function they are parsed into.
_RUNTIME_FUNCTIONS: Dict[str, str] = {
    'sum': 'cs_sum',
    'rand': 'cs_rand',
    'round': 'cs_round',
    'Binomial': 'cs_binomial',
    'Poisson': 'cs_poisson',
    'Hypergeometric': 'cs_hypergeometric',
    'Beta': 'cs_beta',
    'Gamma': 'cs_gamma',
    'Normal': 'cs_normal',
    'Uniform': 'cs_uniform',
    'Exponential': 'cs_exponential',
    'ChiSquare': 'cs_chisquare',
    'StudentT': 'cs_studentt',
}

BUILTIN_CONSTANTS: Dict[str, sp.Expr] = {
    'pi': sp.pi,
    'e': sp.E,
}

BUILTIN_FUNCTIONS = frozenset(_SYMPY_FUNCTIONS) | frozenset(_RUNTIME_FUNCTIONS)
BUILTIN_NAMES = BUILTIN_FUNCTIONS | frozenset(BUILTIN_CONSTANTS)


def iter_names(text: str) -> Iterator[Tuple[str, int, int]]:
    """
    Yield every identifier token of a definition.

    Numbers are consumed as whole tokens, so the exponent of ``2e5`` is never
    mistaken for an identifier.

    Args:
        text: Definition text

    Yields:
        (name, start, end) for each identifier, in text order
    """
    for match in TOKEN_PATTERN.finditer(text):
        if match.lastgroup == 'name':
            yield match.group(), match.start(), match.end()


def _runtime_functions(rng: np.random.Generator) -> Dict[str, Callable]:
    """Numeric implementations of the run-time built-ins, bound to one generator."""
    return {
        'cs_sum': lambda *args: math.fsum(args),
        'cs_rand': lambda: rng.random(),
        'cs_round': lambda x, digits=0: round(x, int(digits)),
        'cs_binomial': lambda n, p: rng.binomial(int(n), p),
        'cs_poisson': lambda lam: rng.poisson(lam),
        'cs_hypergeometric': lambda good, bad, sample: rng.hypergeometric(
            int(good), int(bad), int(sample)
        ),
        'cs_beta': lambda a, b: rng.beta(a, b),
        'cs_gamma': lambda shape, scale: rng.gamma(shape, scale),
        'cs_normal': lambda mean, sd: rng.normal(mean, sd),
        'cs_uniform': lambda low, high: rng.uniform(low, high),
        'cs_exponential': lambda scale: rng.exponential(scale),
        'cs_chisquare': lambda df: rng.chisquare(df),
        'cs_studentt': lambda df: rng.standard_t(df),
    }


@dataclass(frozen=True)
class CompiledExpression:
    """A parsed definition ready for repeated numeric evaluation."""
    text: str
    names: Tuple[str, ...]
    function: Callable
    expr: sp.Expr

    def evaluate(self, values: Mapping[str, float]) -> float:
        """
        Evaluate against a mapping of variable values.

        Args:
            values: Value of every name the expression uses

        Returns:
            The finite float result

        Raises:
            EvaluationError: On a missing name, arithmetic failure or a
                non-finite / non-real result
        """
        try:
            args = [values[name] for name in self.names]
        except KeyError as e:
            raise EvaluationError(self.text, f"name '{e.args[0]}' has no value") from e

        try:
            value = float(self.function(*args))
        except (ArithmeticError, ValueError, TypeError) as e:
            raise EvaluationError(self.text, str(e) or type(e).__name__) from e

        if not math.isfinite(value):
            raise EvaluationError(self.text, f"result is not finite ({value})")
        return value


class ExpressionEvaluator:
    """
    Binds named variables to values and evaluates definitions against them.

    Compiled expressions are cached by text, so evaluating the same
    definition repeatedly only parses it once.
    """

    def __init__(self, seed: Optional[int] = None):
        """
        Initialize the evaluator.

        Args:
            seed: Seed for the random built-ins (None draws fresh entropy)
        """
        self.rng = np.random.default_rng(seed)
        self._functions = _runtime_functions(self.rng)
        self._values: Dict[str, float] = {}
        self._cache: Dict[str, CompiledExpression] = {}

    def bind(self, name: str, value: float) -> None:
        """Bind (or rebind) a variable."""
        if name in BUILTIN_NAMES:
            raise ValidationError(name, "is a reserved built-in name")
        self._values[name] = float(value)

    def bind_all(self, values: Mapping[str, float]) -> None:
        """Bind every entry of a mapping."""
        for name, value in values.items():
            self.bind(name, value)

    def unbind(self, name: str) -> None:
        """Remove a variable binding if present."""
        self._values.pop(name, None)

    def value_of(self, name: str) -> float:
        """Return the value currently bound to a name."""
        return self._values[name]

    @property
    def bound_names(self) -> frozenset:
        """Names currently bound."""
        return frozenset(self._values)

    def compile(self, text: str) -> CompiledExpression:
        """
        Parse a definition into a CompiledExpression.

        Args:
            text: Definition text

        Returns:
            CompiledExpression whose ``names`` are the non built-in
            identifiers in order of first appearance

        Raises:
            ExpressionSyntaxError: If the text cannot be parsed
        """
        cached = self._cache.get(text)
        if cached is not None:
            return cached

        if not text or not text.strip():
            raise ExpressionSyntaxError(text, "empty definition")

        placeholders: Dict[str, str] = {}
        local_dict: Dict[str, object] = {}
        pieces = []
        cursor = 0
        for name, start, end in iter_names(text):
            pieces.append(text[cursor:start])
            cursor = end
            if name in _SYMPY_FUNCTIONS:
                local_dict[name] = _SYMPY_FUNCTIONS[name]
                pieces.append(name)
            elif name in _RUNTIME_FUNCTIONS:
                local_dict[name] = sp.Function(_RUNTIME_FUNCTIONS[name])
                pieces.append(name)
            elif name in BUILTIN_CONSTANTS:
                local_dict[name] = BUILTIN_CONSTANTS[name]
                pieces.append(name)
            else:
                if name not in placeholders:
                    placeholder = f"cs_var_{len(placeholders)}"
                    placeholders[name] = placeholder
                    local_dict[placeholder] = sp.Symbol(placeholder)
                pieces.append(placeholders[name])
        pieces.append(text[cursor:])
        safe_text = ''.join(pieces)

        try:
            expr = parse_expr(safe_text, local_dict=local_dict, transformations=_TRANSFORMATIONS)
        except (SyntaxError, TokenError, TypeError, ValueError, AttributeError, NameError) as e:
            raise ExpressionSyntaxError(text, str(e) or type(e).__name__) from e

        if not isinstance(expr, sp.Basic):
            raise ExpressionSyntaxError(text, "not a single algebraic expression")

        names = tuple(placeholders)
        symbols = [local_dict[placeholders[name]] for name in names]
        try:
            function = sp.lambdify(symbols, expr, modules=[self._functions, "math"])
        except (SyntaxError, TypeError, ValueError, NameError) as e:
            raise ExpressionSyntaxError(text, str(e) or type(e).__name__) from e

        compiled = CompiledExpression(text=text, names=names, function=function, expr=expr)
        self._cache[text] = compiled
        return compiled

    def evaluate(self, expression: Union[str, CompiledExpression]) -> float:
        """
        Evaluate a definition against the current bindings.

        Raises:
            ExpressionSyntaxError: If a text expression cannot be parsed
            EvaluationError: If evaluation fails
        """
        compiled = expression if isinstance(expression, CompiledExpression) else self.compile(expression)
        return compiled.evaluate(self._values)

    def check(self, text: str, allowed: Iterable[str]) -> Set[str]:
        """
        Check a definition against the names it may legally use.

        Every allowed name is bound to 1.0 for a trial evaluation. Arity
        mistakes surface as syntax errors. Other failures of the trial values
        (a division by ``x - 1``, a complex intermediate) are left to run time.

        Args:
            text: Definition text
            allowed: Names resolvable at the definition's position

        Returns:
            Set of non built-in names the definition uses

        Raises:
            UndefinedReferenceError: If a name is not allowed
            ExpressionSyntaxError: If the text does not parse
        """
        allowed = set(allowed)
        used = {name for name, _, _ in iter_names(text) if name not in BUILTIN_NAMES}
        undefined = used - allowed
        if undefined:
            raise UndefinedReferenceError(text, undefined)

        compiled = self.compile(text)
        try:
            compiled.function(*[1.0 for _ in compiled.names])
        except TypeError as e:
            if _ARITY_ERROR.search(str(e)):
                raise ExpressionSyntaxError(text, str(e)) from e
        except (ArithmeticError, ValueError):
            pass
        return used
