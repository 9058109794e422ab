"""Unit tests for the nucleusprofile CLI."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import click.testing
import pytest
import yaml

from nucleusprofile.cli import cli
from nucleusprofile.engine import ConsoleObserver, ProgressObserver, TimingObserver


@pytest.fixture
def runner() -> click.testing.CliRunner:
    """Create a Click CliRunner for isolated CLI testing."""
    return click.testing.CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text("input_path: nuclei.yaml\n")
    return path


@pytest.fixture
def mock_pipeline(tmp_path: Path):
    """Mock load_config, build_stages, and ProfilingPipeline for CLI tests.

    Yields a dict with the mocks for introspection.
    """
    mock_config = MagicMock()
    mock_config.output_dir = str(tmp_path / "output")

    mock_stages = [MagicMock() for _ in range(4)]
    mock_pipeline_instance = MagicMock()

    with (
        patch("nucleusprofile.cli.load_config", return_value=mock_config) as mock_lc,
        patch("nucleusprofile.cli.build_stages", return_value=mock_stages) as mock_bs,
        patch(
            "nucleusprofile.cli.ProfilingPipeline", return_value=mock_pipeline_instance
        ) as mock_pp,
    ):
        yield {
            "load_config": mock_lc,
            "build_stages": mock_bs,
            "ProfilingPipeline": mock_pp,
            "pipeline_instance": mock_pipeline_instance,
            "config": mock_config,
            "stages": mock_stages,
        }


class TestCLIHelp:
    """Tests for CLI help and argument discovery."""

    def test_run_help_shows_options(self, runner: click.testing.CliRunner) -> None:
        result = runner.invoke(cli, ["run", "--help"])
        assert result.exit_code == 0
        assert "--config" in result.output
        assert "--set" in result.output
        assert "--verbose" in result.output

    def test_run_without_config_fails(self, runner: click.testing.CliRunner) -> None:
        result = runner.invoke(cli, ["run"])
        assert result.exit_code != 0

    def test_run_with_missing_config_file_fails(
        self, runner: click.testing.CliRunner, tmp_path: Path
    ) -> None:
        result = runner.invoke(cli, ["run", "--config", str(tmp_path / "nope.yaml")])
        assert result.exit_code != 0


class TestCLIExecution:
    """Tests for CLI run command execution."""

    def test_run_success_exit_zero(
        self, runner: click.testing.CliRunner, config_file: Path, mock_pipeline: dict
    ) -> None:
        result = runner.invoke(cli, ["run", "--config", str(config_file)])
        assert result.exit_code == 0
        mock_pipeline["build_stages"].assert_called_once_with(mock_pipeline["config"])
        mock_pipeline["pipeline_instance"].run.assert_called_once()

    def test_run_failure_exit_one(
        self, runner: click.testing.CliRunner, config_file: Path, mock_pipeline: dict
    ) -> None:
        mock_pipeline["pipeline_instance"].run.side_effect = RuntimeError("boom")
        result = runner.invoke(cli, ["run", "--config", str(config_file)])
        assert result.exit_code == 1

    def test_config_error_exit_one(
        self, runner: click.testing.CliRunner, config_file: Path, mock_pipeline: dict
    ) -> None:
        mock_pipeline["load_config"].side_effect = ValueError("Unknown config field")
        result = runner.invoke(cli, ["run", "--config", str(config_file)])
        assert result.exit_code == 1
        mock_pipeline["ProfilingPipeline"].assert_not_called()

    def test_set_overrides_passed_to_config(
        self, runner: click.testing.CliRunner, config_file: Path, mock_pipeline: dict
    ) -> None:
        runner.invoke(
            cli,
            [
                "run",
                "--config",
                str(config_file),
                "--set",
                "segmentation.min_segment_size=12",
                "--set",
                "shape_class=pig_sperm",
            ],
        )
        kwargs = mock_pipeline["load_config"].call_args.kwargs
        assert kwargs["yaml_path"] == str(config_file)
        assert kwargs["cli_overrides"] == {
            "segmentation.min_segment_size": "12",
            "shape_class": "pig_sperm",
        }

    def test_default_observers_attached(
        self, runner: click.testing.CliRunner, config_file: Path, mock_pipeline: dict
    ) -> None:
        runner.invoke(cli, ["run", "--config", str(config_file)])
        observers = mock_pipeline["ProfilingPipeline"].call_args.kwargs["observers"]
        kinds = {type(o) for o in observers}
        assert kinds == {ConsoleObserver, TimingObserver, ProgressObserver}


class TestInitConfig:
    """Tests for the init-config command."""

    def test_writes_default_config(
        self, runner: click.testing.CliRunner, tmp_path: Path
    ) -> None:
        output = tmp_path / "np.yaml"
        result = runner.invoke(cli, ["init-config", "--output", str(output)])
        assert result.exit_code == 0
        parsed = yaml.safe_load(output.read_text())
        assert parsed["shape_class"] == "round"
        assert parsed["segmentation"]["mode"] == "new"

    def test_refuses_to_overwrite(
        self, runner: click.testing.CliRunner, tmp_path: Path
    ) -> None:
        output = tmp_path / "np.yaml"
        output.write_text("keep: me\n")
        result = runner.invoke(cli, ["init-config", "-o", str(output)])
        assert result.exit_code != 0
        assert "already exists" in result.output
        assert output.read_text() == "keep: me\n"

    def test_force_overwrites(self, runner: click.testing.CliRunner, tmp_path: Path) -> None:
        output = tmp_path / "np.yaml"
        output.write_text("keep: me\n")
        result = runner.invoke(cli, ["init-config", "-o", str(output), "--force"])
        assert result.exit_code == 0
        assert "profiling" in yaml.safe_load(output.read_text())


def test_shape_classes_lists_landmarks(runner: click.testing.CliRunner) -> None:
    result = runner.invoke(cli, ["shape-classes"])
    assert result.exit_code == 0
    assert "round: RP, OP" in result.output
    assert "mouse_sperm: RP" in result.output


def test_stage_factory_is_used_with_real_config(
    runner: click.testing.CliRunner, tmp_path: Path
) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(f"input_path: {tmp_path / 'missing.yaml'}\noutput_dir: {tmp_path}\n")
    with patch("nucleusprofile.cli.ProfilingPipeline", MagicMock()) as mock_pp:
        result = runner.invoke(cli, ["run", "--config", str(config)])
    assert result.exit_code == 1
    mock_pp.assert_not_called()
