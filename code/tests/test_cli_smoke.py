import json
import subprocess
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

import cli.capbench as cli_module
from capture_fakes import FakeExecutor, make_results
from capbench.harness import orchestrator as orchestrator_module
from capbench.loopback.provisioner import LoopbackProvisioner

runner = CliRunner()


def _provisioner_class(system):
    class FakeBackedProvisioner(LoopbackProvisioner):
        created = []

        def __init__(self):
            super().__init__(
                run=system.run,
                popen=system.popen,
                which=system.which,
                path_exists=system.path_exists,
                sleep=system.sleep,
                clock=system.clock,
            )
            FakeBackedProvisioner.created.append(self)

    return FakeBackedProvisioner


@pytest.fixture
def single_executor(monkeypatch):
    executor = FakeExecutor()
    monkeypatch.setattr(cli_module, "BenchmarkExecutor", lambda: executor)
    return executor


def test_capbench_help_exits_cleanly():
    result = subprocess.run(
        [sys.executable, "-m", "cli.capbench", "--help"],
        cwd=repo_root,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        timeout=30,
    )
    assert result.returncode == 0
    assert "--scenario" in result.stdout
    assert "--loopback-num" in result.stdout


def test_capbench_list_scenarios():
    result = subprocess.run(
        [sys.executable, "-m", "cli.capbench", "--list"],
        cwd=repo_root,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        timeout=30,
    )
    assert result.returncode == 0
    assert "baseline_480p_mjpeg" in result.stdout
    assert "fps_720p_60fps" in result.stdout


@pytest.mark.parametrize(
    "args",
    [
        ["--device", "/dev/video50", "--duration", "ten"],
        ["--device", "/dev/video50", "--scenario", "no_such_scenario"],
        ["--device", "/dev/video50", "--single", "--format", "RGB3"],
        ["--device", "/dev/video50", "--single", "--fps", "0"],
    ],
)
def test_configuration_errors_exit_2(args, single_executor):
    result = runner.invoke(cli_module.app, args)

    assert result.exit_code == 2
    assert single_executor.calls == []


def test_bad_pattern_rejected_before_provisioning(monkeypatch, fake_system):
    monkeypatch.setattr(cli_module, "LoopbackProvisioner", _provisioner_class(fake_system))

    result = runner.invoke(cli_module.app, ["--single", "--test-pattern", "color="])

    assert result.exit_code == 2
    assert fake_system.commands == []


def test_single_run_prints_report(single_executor):
    result = runner.invoke(
        cli_module.app,
        ["--device", "/dev/video7", "--single", "--width", "1280", "--height", "720", "--duration", "2s"],
    )

    assert result.exit_code == 0, result.output
    assert "BENCHMARK RESULTS" in result.output
    assert "Resolution:    1280x720" in result.output
    (config,) = single_executor.calls
    assert config.device_path == "/dev/video7"
    assert config.duration == 2.0


def test_json_log_file(single_executor, tmp_path):
    log_file = tmp_path / "logs" / "run.jsonl"

    result = runner.invoke(
        cli_module.app,
        ["--device", "/dev/video7", "--single", "--log-file", str(log_file), "--log-format", "json"],
    )

    assert result.exit_code == 0, result.output
    entries = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert any(entry["message"] == "Using real device: /dev/video7" for entry in entries)
    assert all(entry["logger"] for entry in entries)


def test_single_run_without_frames_exits_1(monkeypatch):
    executor = FakeExecutor(default=make_results(frames=0))
    monkeypatch.setattr(cli_module, "BenchmarkExecutor", lambda: executor)

    result = runner.invoke(cli_module.app, ["--device", "/dev/video7", "--single", "--duration", "1s"])

    assert result.exit_code == 1
    assert "no frames captured" in result.output


def test_missing_prerequisite_exits_1(monkeypatch, fake_system, single_executor):
    fake_system.have_ffmpeg = False
    monkeypatch.setattr(cli_module, "LoopbackProvisioner", _provisioner_class(fake_system))

    result = runner.invoke(cli_module.app, ["--single", "--duration", "1s"])

    assert result.exit_code == 1
    assert "ffmpeg not found" in result.output
    assert fake_system.load_commands == []
    assert single_executor.calls == []


def test_loopback_provisioned_and_released(monkeypatch, fake_system, single_executor):
    monkeypatch.setattr(cli_module, "LoopbackProvisioner", _provisioner_class(fake_system))

    result = runner.invoke(cli_module.app, ["--single", "--loopback-num", "42", "--duration", "1s"])

    assert result.exit_code == 0, result.output
    assert single_executor.calls[0].device_path == "/dev/video42"
    assert len(fake_system.load_commands) == 1
    assert len(fake_system.unload_commands) == 1
    assert fake_system.running == []


def test_multi_run_writes_artifacts(monkeypatch, tmp_path):
    executor = FakeExecutor()
    monkeypatch.setattr(orchestrator_module, "BenchmarkExecutor", lambda: executor)
    output = tmp_path / "results"

    result = runner.invoke(
        cli_module.app,
        [
            "--device", "/dev/video50",
            "--duration", "1s",
            "--output", str(output),
            "--scenario", "format_480p_yuyv",
        ],
    )

    assert result.exit_code == 0, result.output
    assert (output / "format_480p_yuyv_results.txt").exists()
    assert (output / "summary.txt").exists()
    summary = json.loads((output / "summary.json").read_text())
    assert [o["status"] for o in summary["outcomes"]] == ["SUCCESS"]
    assert executor.calls[0].cpu_profile == output / "format_480p_yuyv_cpu.prof"


def test_multi_run_failures_still_exit_0(monkeypatch, tmp_path):
    from capbench.benchmark.exceptions import DeviceOpenError

    executor = FakeExecutor(
        default=None,
        behaviours=[DeviceOpenError("gone", device_path="/dev/video50", stage="open")],
    )
    monkeypatch.setattr(orchestrator_module, "BenchmarkExecutor", lambda: executor)

    result = runner.invoke(
        cli_module.app,
        ["--device", "/dev/video50", "--duration", "1s", "--output", str(tmp_path / "out")],
    )

    assert result.exit_code == 0, result.output
    assert "FAILED" in result.output
    assert len(executor.calls) == 7


def test_multi_run_without_profiling(monkeypatch, tmp_path):
    executor = FakeExecutor()
    monkeypatch.setattr(orchestrator_module, "BenchmarkExecutor", lambda: executor)
    output = tmp_path / "results"

    result = runner.invoke(
        cli_module.app,
        [
            "--device", "/dev/video50",
            "--duration", "1s",
            "--output", str(output),
            "--scenario", "format_480p_yuyv",
            "--no-profile",
        ],
    )

    assert result.exit_code == 0, result.output
    (config,) = executor.calls
    assert config.cpu_profile is None
    assert config.mem_profile is None
    assert config.trace_file is None
    assert "tracing overhead" not in (output / "format_480p_yuyv_results.txt").read_text()
