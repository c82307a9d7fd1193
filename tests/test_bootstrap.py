"""Tests for core.bootstrap."""

import json
import subprocess
import sys
from unittest.mock import MagicMock

from config.settings import resolve
from conftest import write_stage
from core.bootstrap import Bootstrapper

# Each run appends "<version> <stage>" to calls.log beside the engine.
ENGINE_V2 = (
    "import os, sys\n"
    "log = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'calls.log')\n"
    "with open(log, 'a') as f:\n"
    "    f.write('v2 ' + sys.argv[sys.argv.index('--start') + 1] + '\\n')\n"
)
# v1 logs, then replaces itself with v2 the way a regenerating stage would.
ENGINE_V1 = (
    "NEXT = " + repr(ENGINE_V2) + "\n"
    + ENGINE_V2.replace("'v2 '", "'v1 '")
    + "with open(os.path.abspath(__file__), 'w') as f:\n"
    "    f.write(NEXT)\n"
)


def _baseline(workspace, engine_source="print('engine')\n"):
    bin_dir = workspace / "output" / "bootstrap" / "bin"
    bin_dir.mkdir(parents=True)
    (bin_dir / "stagesmith.py").write_text(engine_source)
    (bin_dir.parent / "README.md").write_text("baseline")
    return bin_dir


def _stages(workspace, count):
    for n in range(1, count + 1):
        write_stage(workspace, "core", f"{n:03d}_stage.md", f"stage {n}")


def _runner(*codes):
    return MagicMock(side_effect=[MagicMock(returncode=code) for code in codes])


def test_seed_copies_baseline_into_current(workspace, make_config):
    _baseline(workspace)
    current = workspace / "output" / "current"
    current.mkdir(parents=True)
    (current / "kept.txt").write_text("from an earlier run")

    Bootstrapper(make_config()).seed_current()

    assert (current / "bin" / "stagesmith.py").read_text() == "print('engine')\n"
    assert (current / "README.md").read_text() == "baseline"
    assert (current / "kept.txt").exists()


def test_missing_baseline_fails(workspace, make_config, caplog):
    _stages(workspace, 1)
    runner = MagicMock()
    assert Bootstrapper(make_config(), runner=runner).run() == 1
    runner.assert_not_called()
    assert "stagesmith init" in caplog.text


def test_runs_each_stage_in_its_own_process(workspace, make_config):
    _baseline(workspace)
    _stages(workspace, 3)
    runner = _runner(0, 0, 0)
    config = make_config(stacks="core", test_cmd="pytest -q")

    assert Bootstrapper(config, runner=runner).run() == 0
    assert runner.call_count == 3
    first = runner.call_args_list[0].args[0]
    engine = str(workspace / "output" / "current" / "bin" / "stagesmith.py")
    assert first[:3] == [sys.executable, engine, "run"]
    assert first[first.index("--start") + 1] == "1"
    assert first[first.index("--end") + 1] == "1"
    assert first[first.index("--test-cmd") + 1] == "pytest -q"
    last = runner.call_args_list[2].args[0]
    assert last[last.index("--start") + 1] == "3"


def test_halts_on_first_failing_stage(workspace, make_config, caplog):
    _baseline(workspace)
    _stages(workspace, 3)
    runner = _runner(0, 3, 0)
    assert Bootstrapper(make_config(), runner=runner).run() == 3
    assert runner.call_count == 2
    assert "Stage 2 exited with code 3" in caplog.text


def test_explicit_range(workspace, make_config):
    _baseline(workspace)
    _stages(workspace, 5)
    runner = _runner(0, 0)
    assert Bootstrapper(make_config(start=2, end=3), runner=runner).run() == 0
    starts = [c.args[0][c.args[0].index("--start") + 1] for c in runner.call_args_list]
    assert starts == ["2", "3"]


def test_no_stages_fails(workspace, make_config):
    _baseline(workspace)
    runner = MagicMock()
    assert Bootstrapper(make_config(), runner=runner).run() == 1
    runner.assert_not_called()


def test_engine_removed_mid_loop_fails(workspace, make_config):
    _baseline(workspace)
    _stages(workspace, 2)
    engine = workspace / "output" / "current" / "bin" / "stagesmith.py"

    def runner(command):
        engine.unlink()
        return MagicMock(returncode=0)

    assert Bootstrapper(make_config(), runner=runner).run() == 1


def test_flags_forwarded_to_child(workspace, make_config):
    config = make_config(dry_run=True, no_overwrite=True, stacks="core,tests", output="out")
    command = Bootstrapper(config).build_command(4)
    assert "--dry-run" in command
    assert "--no-overwrite" in command
    assert command[command.index("--stacks") + 1] == "core,tests"
    assert command[command.index("--output") + 1] == "out"
    assert command[command.index("--workdir") + 1] == str(workspace)
    assert "--test-cmd" not in command


def test_every_command_line_option_reaches_the_child(workspace, make_config):
    config = make_config(no_cache=True, iterations="5", retries="3", api_key="k",
                         api_url="http://localhost:9000", api_model="m", max_tokens="100",
                         api_timeout="30", test_timeout="60", plugin_timeout="2",
                         test_cmd="pytest -q")
    command = Bootstrapper(config).build_command(1)

    def value(flag):
        return command[command.index(flag) + 1]

    assert "--no-cache" in command
    assert value("--iterations") == "5"
    assert value("--retries") == "3"
    assert value("--api-key") == "k"
    assert value("--api-url") == "http://localhost:9000"
    assert value("--api-model") == "m"
    assert value("--max-tokens") == "100"
    assert float(value("--api-timeout")) == 30
    assert float(value("--test-timeout")) == 60
    assert float(value("--plugin-timeout")) == 2
    assert value("--test-cmd") == "pytest -q"


def test_env_and_file_options_are_left_to_the_child(workspace):
    config = resolve(cli={"workdir": str(workspace)},
                     env={"STAGESMITH_ITERATIONS": "4"}, file_config={"retries": 2})
    command = Bootstrapper(config).build_command(1)
    assert "--iterations" not in command
    assert "--retries" not in command


def test_clear_cache_runs_once_before_the_stages(workspace, make_config):
    _baseline(workspace)
    _stages(workspace, 2)
    cache = workspace / ".stagesmith-cache.json"
    cache.write_text(json.dumps({"core/1": {"hash": "abc", "outcome": "success"}}))
    runner = _runner(0, 0)

    assert Bootstrapper(make_config(clear_cache=True), runner=runner).run() == 0
    assert not cache.exists()
    for call in runner.call_args_list:
        assert "--clear-cache" not in call.args[0]


def test_regenerated_engine_runs_later_stages(workspace, make_config):
    _baseline(workspace, ENGINE_V1)
    _stages(workspace, 3)

    assert Bootstrapper(make_config(), runner=subprocess.run).run() == 0

    calls = workspace / "output" / "current" / "bin" / "calls.log"
    assert calls.read_text().splitlines() == ["v1 1", "v2 2", "v2 3"]
    baseline = workspace / "output" / "bootstrap" / "bin" / "stagesmith.py"
    assert baseline.read_text() == ENGINE_V1
