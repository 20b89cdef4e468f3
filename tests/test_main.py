"""
Tests for the command line runner.
"""

from pathlib import Path

import pandas as pd
import pytest
import yaml

from compartsim.main import main, parse_args
from compartsim.persistence.document import AutosaveManager, load_model
from compartsim.utils.config_manager import ConfigManager

EXAMPLE_MODEL = Path(__file__).parent.parent / "configs" / "models" / "health.yaml"


@pytest.fixture
def cli_config(temp_dir):
    """Configuration keeping the autosave snapshot inside the temp dir."""
    path = temp_dir / "config.yaml"
    path.write_text(yaml.safe_dump({
        'simulation': {
            'method': 'rk4',
            'dt': 0.5,
            'autosave': True,
            'autosave_path': str(temp_dir / "autosave.yaml"),
        },
    }))
    yield path
    ConfigManager().clear()


@pytest.mark.integration
class TestCommandLine:
    """End-to-end runs through main()."""

    def test_parse_args_accepts_legacy_index(self):
        args = parse_args(["--model", "m.yaml", "--method", "2"])
        assert args.method == "2"
        assert args.log_level == "INFO"

    def test_run_writes_csv(self, cli_config, temp_dir):
        output = temp_dir / "out" / "health.csv"
        code = main(["--config", str(cli_config), "--model", str(EXAMPLE_MODEL), "--output", str(output), "--quiet"])

        assert code == 0
        df = pd.read_csv(output)
        assert list(df.columns) == ["t", "Healthy", "Sick"]
        assert df["t"].iloc[-1] == pytest.approx(100.0)
        assert (df["Healthy"] + df["Sick"]).round(6).eq(1000.0).all()
        assert not (temp_dir / "autosave.yaml").exists()

    def test_overrides(self, cli_config, temp_dir):
        output = temp_dir / "short.csv"
        code = main([
            "--config", str(cli_config), "--model", str(EXAMPLE_MODEL),
            "--method", "rkf45", "--tolerance", "1e-6", "--horizon", "20",
            "--output", str(output), "--quiet",
        ])
        assert code == 0
        assert pd.read_csv(output)["t"].iloc[-1] == pytest.approx(20.0)

    def test_recover(self, cli_config, temp_dir):
        AutosaveManager(temp_dir / "autosave.yaml").write(load_model(EXAMPLE_MODEL))
        output = temp_dir / "recovered.csv"
        code = main(["--config", str(cli_config), "--recover", "--horizon", "5", "--output", str(output), "--quiet"])
        assert code == 0
        assert output.exists()

    def test_invalid_model_file(self, cli_config, temp_dir):
        broken = temp_dir / "broken.yaml"
        broken.write_text("compartments: [\n")
        assert main(["--config", str(cli_config), "--model", str(broken), "--quiet"]) == 1
