#!/usr/bin/env python
"""
compartsim command line

Runs a simulation of a model document and writes the samples to CSV.

Usage:
    python -m compartsim.main --model configs/models/health.yaml
    python -m compartsim.main --model flu.yaml --method rk4 --dt 0.05 --horizon 200
    python -m compartsim.main --model flu.yaml --method rkf45 --tolerance 1e-6 --output flu.csv
    python -m compartsim.main --recover --output recovered.csv
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from compartsim.model.epidemic import EpidemicModel
from compartsim.persistence.document import AutosaveManager, load_model
from compartsim.simulation.integrators import IntegrationMethod
from compartsim.simulation.preferences import SimulationPreferences
from compartsim.simulation.task import EventKind, RunStatus, SimulationEvent, SimulationTask
from compartsim.utils.config_manager import ConfigManager
from compartsim.utils.exceptions import CompartSimError
from compartsim.utils.logger import LoggerContext, configure_from_config, get_logger


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="compartsim: compartmental epidemic model simulator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run a model with the configured method and step
    python -m compartsim.main --model configs/models/health.yaml

    # Adaptive run with a tight tolerance
    python -m compartsim.main --model flu.yaml --method rkf45 --tolerance 1e-7

    # Recover the model left by an interrupted run
    python -m compartsim.main --recover
        """
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        default=None,
        help='Path to configuration file (default: configs/config.yaml)'
    )

    parser.add_argument(
        '--model', '-m',
        type=str,
        default=None,
        help='Model document (YAML) to simulate'
    )

    parser.add_argument(
        '--recover',
        action='store_true',
        help='Simulate the model of the leftover autosave snapshot'
    )

    parser.add_argument(
        '--method',
        type=str,
        choices=[m.value for m in IntegrationMethod] + [str(i) for i in range(len(IntegrationMethod))],
        default=None,
        help='Integration method (overrides configuration)'
    )

    parser.add_argument(
        '--dt',
        type=float,
        default=None,
        help='Fixed step size'
    )

    parser.add_argument(
        '--horizon',
        type=float,
        default=None,
        help="Simulated time span (default: the model's horizon)"
    )

    parser.add_argument(
        '--tolerance',
        type=float,
        default=None,
        help='Local error tolerance of the adaptive method'
    )

    parser.add_argument(
        '--output', '-o',
        type=str,
        default=None,
        help='CSV file for the samples (default: <model name>.csv)'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Logging level (default: logging.level from the configuration)'
    )

    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Only log warnings and errors while the run is in progress'
    )

    return parser.parse_args(argv)


class SimulationRunner:
    """Loads a model, runs it with a progress bar and exports the samples."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the runner.

        Args:
            config_path: Configuration file to load (default configuration otherwise)
        """
        self.config = ConfigManager()
        self.config.load(config_path)
        self.preferences = SimulationPreferences.from_config(self.config)
        self.autosave = AutosaveManager(self.preferences.autosave_path)
        self.logger = get_logger(__name__)

    def check_leftover_snapshot(self) -> bool:
        """Warn when the previous session ended during a run."""
        if self.autosave.has_snapshot():
            self.logger.warning(
                f"An autosave snapshot was found at {self.autosave.path}; "
                "the previous run did not finish. Use --recover to load it."
            )
            return True
        return False

    def load(self, model_path: Optional[str], recover: bool) -> EpidemicModel:
        if recover:
            return self.autosave.recover()
        if model_path is None:
            raise SystemExit("error: --model is required unless --recover is given")
        return load_model(model_path)

    def run(
        self,
        model: EpidemicModel,
        method: Optional[str] = None,
        dt: Optional[float] = None,
        horizon: Optional[float] = None,
        tolerance: Optional[float] = None,
        quiet: bool = False
    ) -> SimulationTask:
        """Run the model synchronously, showing progress."""
        task = SimulationTask(
            model,
            preferences=self.preferences,
            horizon=horizon,
            method=method,
            dt=dt,
            tolerance=tolerance,
            autosave=self.autosave,
        )

        project = get_logger("compartsim")
        with logging_redirect_tqdm(loggers=[project]), \
                tqdm(total=100, desc=f"{model.name} ({task.method.value})", unit="%", disable=quiet) as bar:
            def on_event(_task: SimulationTask, event: SimulationEvent) -> None:
                if event.kind == EventKind.PROGRESS:
                    bar.update(round(event.progress * 100) - bar.n)

            task.add_listener(on_event)
            if quiet:
                with LoggerContext(project, "WARNING"):
                    task.run()
            else:
                task.run()

        return task

    def export(self, task: SimulationTask, output: Optional[str]) -> Path:
        path = Path(output) if output else Path(f"{task.model.name}.csv")
        path.parent.mkdir(parents=True, exist_ok=True)
        task.to_dataframe().to_csv(path, index=False)
        self.logger.info(f"Wrote {len(task.samples)} samples to {path}")
        return path


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    logger = get_logger(__name__)

    try:
        runner = SimulationRunner(args.config)
        configure_from_config(runner.config, args.log_level)
        runner.check_leftover_snapshot()
        model = runner.load(args.model, args.recover)
        task = runner.run(
            model,
            method=args.method,
            dt=args.dt,
            horizon=args.horizon,
            tolerance=args.tolerance,
            quiet=args.quiet,
        )
    except (CompartSimError, FileNotFoundError) as e:
        logger.error(str(e))
        return 1

    if task.status == RunStatus.FAILED:
        logger.error(f"Simulation failed: {task.error}")
        return 1
    if task.status == RunStatus.CANCELLED:
        logger.warning("Simulation cancelled")
        return 2

    runner.export(task, args.output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
