"""Tests for the clip-montage command line."""

import subprocess

import pytest
from click.testing import CliRunner

from clip_montage._version import __version__
from clip_montage.cli import cli
from clip_montage.pipeline import MontagePipeline

from conftest import FakeToolkit


@pytest.fixture
def cli_runner():
    return CliRunner()


WORKED_EXAMPLE = ["--interval", "2", "--length", "20", "--start-cut", "10", "--end-cut", "50", "--seed", "1"]


def test_version(cli_runner):
    result = cli_runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_plan_prints_table(cli_runner):
    result = cli_runner.invoke(cli, ["plan", "--duration", "300", *WORKED_EXAMPLE, "--variations", "2"])
    assert result.exit_code == 0, result.output
    assert "target 10 clips" in result.output
    assert "Planned clips" in result.output


def test_plan_invalid_range(cli_runner):
    result = cli_runner.invoke(cli, ["plan", "--duration", "50", "--start-cut", "40", "--end-cut", "20"])
    assert result.exit_code == 1
    assert "Invalid video range" in result.output


def test_plan_rejects_bad_variation_count(cli_runner):
    result = cli_runner.invoke(cli, ["plan", "--duration", "300", "--variations", "0"])
    assert result.exit_code == 2


def test_script_writes_file(cli_runner, tmp_path, monkeypatch, settings):
    monkeypatch.setattr("clip_montage.config.get_settings", lambda: settings)
    monkeypatch.setattr(
        "clip_montage.media_tools.run_command",
        lambda cmd, **kw: subprocess.CompletedProcess(cmd, 0, stdout="300\n", stderr=""),
    )
    out = tmp_path / "party.sh"
    result = cli_runner.invoke(cli, ["script", "https://example.com/a.mp4", *WORKED_EXAMPLE, "-o", str(out)])

    assert result.exit_code == 0, result.output
    content = out.read_text()
    assert content.startswith("#!/usr/bin/env bash")
    assert "cut_pool" in content
    assert "seed 1" in result.output


def test_render_runs_pipeline(cli_runner, monkeypatch, settings, make_pipeline):
    monkeypatch.setattr("clip_montage.config.get_settings", lambda: settings)

    def fake_pipeline(tracker, settings=None):
        pipeline = make_pipeline(toolkit=FakeToolkit())
        pipeline.tracker = tracker
        return pipeline

    monkeypatch.setattr("clip_montage.pipeline.MontagePipeline", fake_pipeline)
    result = cli_runner.invoke(cli, ["render", "https://example.com/a.mp4", *WORKED_EXAMPLE, "--name", "demo"])

    assert result.exit_code == 0, result.output
    assert "1 montage(s) written" in result.output
    assert "/downloads/demo_v01_" in result.output
    assert list(settings.paths.output_dir.glob("demo_v01_*.mp4"))


def test_render_reports_failure(cli_runner, monkeypatch, settings, make_pipeline):
    monkeypatch.setattr("clip_montage.config.get_settings", lambda: settings)

    def fake_pipeline(tracker, settings=None):
        pipeline = make_pipeline(toolkit=FakeToolkit(fail_first=10_000))
        pipeline.tracker = tracker
        return pipeline

    monkeypatch.setattr("clip_montage.pipeline.MontagePipeline", fake_pipeline)
    result = cli_runner.invoke(cli, ["render", "https://example.com/a.mp4", *WORKED_EXAMPLE])

    assert result.exit_code == 1
    assert "No valid clips" in result.output
