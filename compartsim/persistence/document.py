"""
Model documents.

A model is stored as a YAML document holding its population structure,
parameters, processes, compartments (initial values and definitions),
results, horizon and time unit. Links between definitions are not stored:
they are rebuilt from the definition text on load.

The autosave snapshot uses the same document format.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from compartsim.model.entities import Category, Division, Population, TimeSegment
from compartsim.model.epidemic import EpidemicModel
from compartsim.simulation.results import ResultSink
from compartsim.utils.constants import AUTOSAVE_PATH
from compartsim.utils.exceptions import CompartSimError, ModelIOError
from compartsim.utils.logger import get_logger

logger = get_logger(__name__)

FORMAT_VERSION = 1

PathLike = Union[str, Path]


def model_to_document(model: EpidemicModel) -> Dict[str, Any]:
    """Serialize a model into plain YAML-safe data."""
    population = model.population
    return {
        'format_version': FORMAT_VERSION,
        'name': model.name,
        'time_unit': model.time_unit,
        'horizon': model.horizon,
        'population': None if population is None else {
            'name': population.name,
            'habitants': population.habitants,
            'divisions': [
                {
                    'name': d.name,
                    'categories': [
                        {'name': c.name, 'description': c.description} for c in d.categories
                    ],
                }
                for d in population.divisions
            ],
        },
        'parameters': [
            {'name': p.name, 'description': p.description, 'definition': p.definition}
            for p in model.parameters
        ],
        'processes': [
            {
                'name': p.name,
                'description': p.description,
                'segments': [{'start': s.start, 'definition': s.definition} for s in p.segments],
            }
            for p in model.processes
        ],
        'compartments': [
            {'name': c.name, 'value': c.value, 'definition': c.definition}
            for c in model.compartments
        ],
        'results': [r.to_dict() for r in model.results],
    }


def model_from_document(document: Dict[str, Any], source: str = "<document>") -> EpidemicModel:
    """
    Rebuild a model from document data.

    Definitions are validated in evaluation order, which also rebuilds
    every link.

    Args:
        document: Data produced by model_to_document (or read from YAML)
        source: Where the data came from, for error messages

    Raises:
        ModelIOError: If the document is malformed or inconsistent
    """
    if not isinstance(document, dict):
        raise ModelIOError(source, "document must be a mapping")

    try:
        model = EpidemicModel(
            name=document.get('name', 'epidemic'),
            time_unit=document.get('time_unit', 'days'),
            horizon=float(document.get('horizon', 100.0)),
        )

        pop = document.get('population')
        if pop:
            model.set_population(Population(
                name=pop['name'],
                habitants=int(pop['habitants']),
                divisions=[
                    Division(
                        d['name'],
                        [Category(c['name'], c.get('description', '')) for c in d['categories']],
                    )
                    for d in pop['divisions']
                ],
            ))

        stored = [c['name'] for c in document.get('compartments') or []]
        if stored != model.compartment_names:
            raise ModelIOError(
                source,
                f"compartments {stored} do not match the category combination {model.compartment_names}",
            )

        for p in document.get('parameters') or []:
            model.add_parameter(p['name'], p.get('definition') or '', p.get('description') or '')

        for p in document.get('processes') or []:
            segments = [
                TimeSegment(float(s['start']), s.get('definition') or '')
                for s in p.get('segments') or []
            ]
            model.add_process(p['name'], segments, p.get('description') or '')

        for c in document.get('compartments') or []:
            model.set_compartment_value(c['name'], c.get('value', 0.0))
            model.set_compartment_definition(c['name'], c.get('definition') or '')

        for r in document.get('results') or []:
            model.add_result(ResultSink.from_dict(r))

    except ModelIOError:
        raise
    except CompartSimError as e:
        raise ModelIOError(source, str(e)) from e
    except (KeyError, TypeError, ValueError) as e:
        raise ModelIOError(source, f"malformed document ({type(e).__name__}: {e})") from e

    return model


def save_model(model: EpidemicModel, path: PathLike) -> Path:
    """
    Write a model document.

    The file is written next to its destination and moved into place, so an
    interrupted save never leaves a truncated document.

    Raises:
        ModelIOError: If the file cannot be written
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + '.tmp')
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, 'w') as f:
            yaml.safe_dump(model_to_document(model), f, sort_keys=False, allow_unicode=True)
        os.replace(tmp_path, path)
    except (OSError, yaml.YAMLError) as e:
        raise ModelIOError(str(path), str(e)) from e

    logger.debug(f"Saved model '{model.name}' to {path}")
    return path


def load_model(path: PathLike) -> EpidemicModel:
    """
    Read a model document.

    Raises:
        ModelIOError: If the file cannot be read or is not a valid model
    """
    path = Path(path)
    try:
        with open(path, 'r') as f:
            document = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ModelIOError(str(path), str(e)) from e

    model = model_from_document(document, source=str(path))
    logger.info(f"Loaded model '{model.name}' from {path}")
    return model


class AutosaveManager:
    """
    The single pre-run snapshot used for crash recovery.

    A snapshot is written before a run starts and discarded when it
    completes; one still present at startup means the previous session
    ended during a run.
    """

    def __init__(self, path: Optional[PathLike] = None):
        self.path = Path(path) if path else Path(AUTOSAVE_PATH())

    def write(self, model: EpidemicModel) -> Path:
        """Write (or overwrite) the snapshot."""
        return save_model(model, self.path)

    def has_snapshot(self) -> bool:
        return self.path.exists()

    def recover(self) -> EpidemicModel:
        """
        Load the leftover snapshot.

        Raises:
            ModelIOError: If there is no snapshot or it cannot be read
        """
        if not self.has_snapshot():
            raise ModelIOError(str(self.path), "no autosave snapshot present")
        model = load_model(self.path)
        logger.info(f"Recovered model '{model.name}' from autosave snapshot")
        return model

    def discard(self) -> None:
        """Delete the snapshot if present."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise ModelIOError(str(self.path), str(e)) from e
