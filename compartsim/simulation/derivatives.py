"""
Derivative Evaluator

Evaluates the right-hand side of the model's ODE system for a given time
and state vector in one deterministic forward pass:

    1. bind every compartment to its state value
    2. bind every shortcut to the live sum of its members
    3. evaluate parameters in stored order, binding each result
    4. evaluate processes with the segment in force at t, binding each result
    5. evaluate each compartment definition (no definition -> derivative 0)

All definitions are compiled once at construction.
"""

from bisect import bisect_right
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from compartsim.expression.evaluator import CompiledExpression, ExpressionEvaluator
from compartsim.utils.exceptions import CompartSimError, EvaluationError, ExpressionSyntaxError

Compiled = Optional[CompiledExpression]


class DerivativeEvaluator:
    """Callable ``f(t, state) -> derivatives`` over a compiled model."""

    def __init__(self, model, evaluator: Optional[ExpressionEvaluator] = None, seed: Optional[int] = None):
        """
        Compile every definition of the model.

        Args:
            model: EpidemicModel to evaluate (read only)
            evaluator: Evaluator to bind values into (a fresh one by default)
            seed: Seed for the random built-ins of a fresh evaluator

        Raises:
            EvaluationError: If a stored definition does not compile
        """
        self.evaluator = evaluator or ExpressionEvaluator(seed)
        self.evaluations = 0

        self.compartment_names: Tuple[str, ...] = tuple(model.compartment_names)
        index_of = {c.uid: i for i, c in enumerate(model.compartments)}

        self._shortcuts: List[Tuple[str, np.ndarray]] = [
            (s.name, np.array([index_of[uid] for uid in s.members], dtype=int))
            for s in model.shortcuts
        ]
        self._parameters: List[Tuple[str, Compiled]] = [
            (p.name, self._compile(p.name, p.definition)) for p in model.parameters
        ]
        self._processes: List[Tuple[str, List[float], List[Compiled]]] = [
            (
                p.name,
                [s.start for s in p.segments],
                [self._compile(p.name, s.definition) for s in p.segments],
            )
            for p in model.processes
        ]
        self._compartments: List[Compiled] = [
            self._compile(c.name, c.definition) for c in model.compartments
        ]

    def _compile(self, entity: str, text: str) -> Compiled:
        if not text or not text.strip():
            return None
        try:
            return self.evaluator.compile(text)
        except ExpressionSyntaxError as e:
            raise EvaluationError(entity, e.reason) from e

    def _evaluate(self, entity: str, compiled: Compiled, t: float) -> float:
        if compiled is None:
            return 0.0
        try:
            return self.evaluator.evaluate(compiled)
        except EvaluationError as e:
            raise EvaluationError(entity, e.reason, time=t) from e

    def bind(self, t: float, state: Sequence[float]) -> Dict[str, float]:
        """
        Bind compartments, shortcuts, parameters and processes for time t.

        Returns:
            Every bound name with its value
        """
        state = np.asarray(state, dtype=float)
        values: Dict[str, float] = {}

        for name, value in zip(self.compartment_names, state):
            values[name] = float(value)
        for name, members in self._shortcuts:
            values[name] = float(state[members].sum())
        self.evaluator.bind_all(values)

        for name, compiled in self._parameters:
            values[name] = self._evaluate(name, compiled, t)
            self.evaluator.bind(name, values[name])

        for name, starts, segments in self._processes:
            if not segments:
                values[name] = 0.0
            else:
                index = max(bisect_right(starts, t) - 1, 0)
                values[name] = self._evaluate(name, segments[index], t)
            self.evaluator.bind(name, values[name])

        return values

    def __call__(self, t: float, state: Sequence[float]) -> np.ndarray:
        """
        Evaluate compartment derivatives.

        Args:
            t: Simulated time
            state: Compartment values in model order

        Returns:
            Array of derivatives in model order

        Raises:
            EvaluationError: If any definition fails to evaluate
        """
        self.evaluations += 1
        self.bind(t, state)
        return np.array(
            [
                self._evaluate(name, compiled, t)
                for name, compiled in zip(self.compartment_names, self._compartments)
            ],
            dtype=float,
        )

    def evaluate_expressions(self, t: float, state: Sequence[float], expressions: Sequence[str]) -> List[float]:
        """
        Evaluate arbitrary expressions (e.g. result functions) at a state.

        Raises:
            EvaluationError: If an expression fails to compile or evaluate
        """
        self.bind(t, state)
        values = []
        for text in expressions:
            try:
                compiled = self.evaluator.compile(text)
            except CompartSimError as e:
                raise EvaluationError(text, str(e), time=t) from e
            values.append(self._evaluate(text, compiled, t))
        return values
