"""Shared fixtures: a throwaway workspace with stacks/ and an output tree."""

import pytest

from config.settings import resolve


def write_stage(workdir, stack, filename, text):
    directory = workdir / "stacks" / stack
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    path.write_text(text)
    return path


def write_plugin(workdir, stack, filename, text):
    directory = workdir / "stacks" / stack / "plugins"
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    path.write_text(text)
    return path


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "stacks").mkdir()
    return tmp_path


@pytest.fixture
def make_config(workspace):
    """Build an EffectiveConfig rooted at the workspace; kwargs act as CLI flags."""
    def _make(**cli):
        cli.setdefault("workdir", str(workspace))
        return resolve(cli=cli, env={}, file_config={})
    return _make
