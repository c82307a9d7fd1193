"""Tests for core.sandbox."""

import sys
import tempfile

import pytest

from core.sandbox import run_command

PY = sys.executable


def test_no_command_always_passes():
    assert run_command(None).success is True
    assert run_command("").success is True


def test_passing_command():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = run_command([PY, "-c", "print('all good')"], cwd=tmpdir)
        assert result.success is True
        assert result.returncode == 0
        assert "all good" in result.output


def test_failing_command_reports_output():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = run_command(
            [PY, "-c", "import sys; print('bad'); sys.stderr.write('worse'); sys.exit(3)"],
            cwd=tmpdir,
        )
        assert result.success is False
        assert result.returncode == 3
        assert "bad" in result.output
        assert "worse" in result.output


def test_string_command_is_split_without_shell():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = run_command(f'"{PY}" -c "print(1 + 1)"', cwd=tmpdir)
        assert result.success is True
        assert "2" in result.output


def test_output_is_echoed(capsys):
    with tempfile.TemporaryDirectory() as tmpdir:
        run_command([PY, "-c", "print('visible')"], cwd=tmpdir)
    assert "visible" in capsys.readouterr().out


def test_invalid_cwd():
    with pytest.raises(ValueError, match="does not exist"):
        run_command([PY, "--version"], cwd="/nonexistent/path")


def test_timeout():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = run_command([PY, "-c", "import time; time.sleep(10)"], cwd=tmpdir, timeout=1)
        assert result.success is False
        assert result.returncode == -1
        assert "timed out" in result.output.lower()


def test_command_not_found():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = run_command("nonexistent_cmd_xyz --flag", cwd=tmpdir)
        assert result.success is False
        assert "not found" in result.output.lower()
