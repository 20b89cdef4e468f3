"""
Result sinks.

A result is a titled set of function expressions (with display color and
line width) plus axis labels. During a run the simulation task appends the
value of every function at each sample; charting and export read the
collected series.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import pandas as pd


@dataclass
class ResultFunction:
    """One plotted expression."""
    expression: str
    color: str = "#000000"
    width: float = 1.0
    label: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.label or self.expression


class ResultSink:
    """Collects the time series of a result's functions."""

    def __init__(
        self,
        title: str,
        functions: Optional[Sequence[ResultFunction]] = None,
        x_label: str = "time",
        y_label: str = "value"
    ):
        self.title = title
        self.functions: List[ResultFunction] = list(functions or [])
        self.x_label = x_label
        self.y_label = y_label
        self.times: List[float] = []
        self.series: List[List[float]] = []

    def __repr__(self) -> str:
        return f"ResultSink(title={self.title!r}, functions={len(self.functions)}, samples={len(self.times)})"

    @property
    def expressions(self) -> List[str]:
        return [f.expression for f in self.functions]

    def add_function(self, expression: str, color: str = "#000000", width: float = 1.0,
                     label: Optional[str] = None) -> ResultFunction:
        function = ResultFunction(expression, color, width, label)
        self.functions.append(function)
        return function

    def set_axis_labels(self, x_label: str, y_label: str) -> None:
        self.x_label = x_label
        self.y_label = y_label

    def append_sample(self, t: float, values: Sequence[float]) -> None:
        """
        Record the function values at time t.

        Raises:
            ValueError: If the number of values does not match the functions
        """
        if len(values) != len(self.functions):
            raise ValueError(
                f"Result '{self.title}' expects {len(self.functions)} values, got {len(values)}"
            )
        self.times.append(float(t))
        self.series.append([float(v) for v in values])

    def clear(self) -> None:
        self.times = []
        self.series = []

    def to_dataframe(self) -> pd.DataFrame:
        """Samples as a DataFrame indexed by time, one column per function."""
        columns = [f.display_name for f in self.functions]
        df = pd.DataFrame(self.series, columns=columns, index=pd.Index(self.times, name=self.x_label))
        return df

    def to_dict(self) -> Dict:
        """Definition (not samples) for persistence."""
        return {
            'title': self.title,
            'x_label': self.x_label,
            'y_label': self.y_label,
            'functions': [
                {'expression': f.expression, 'color': f.color, 'width': f.width, 'label': f.label}
                for f in self.functions
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'ResultSink':
        return cls(
            title=data['title'],
            functions=[
                ResultFunction(
                    expression=f['expression'],
                    color=f.get('color', "#000000"),
                    width=float(f.get('width', 1.0)),
                    label=f.get('label'),
                )
                for f in data.get('functions', [])
            ],
            x_label=data.get('x_label', "time"),
            y_label=data.get('y_label', "value"),
        )
