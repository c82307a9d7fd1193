"""`stagesmith init`: lay out a new workspace with a baseline engine."""

import json
import logging
import os
from string import Template

from config.defaults import CONFIG_FILE, ENGINE_PATH
from utils.folder_naming import baseline_dir

logger = logging.getLogger(__name__)

LAUNCHER = Template('''#!/usr/bin/env python3
"""Baseline $project engine. Later stages may replace this file."""

import sys

from main import main

if __name__ == "__main__":
    sys.exit(main())
''')

FIRST_STAGE = Template('''# $title

Describe what this stage should build.

## Context: $engine

## Output: $engine
''')


def _write_new(path, content, mode=None):
    """Write a file unless it already exists. Returns True if written."""
    if os.path.exists(path):
        logger.info("Keeping existing %s", path)
        return False
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    if mode is not None:
        os.chmod(path, mode)
    logger.info("Created %s", path)
    return True


def init_workspace(workdir=".", output="output", stacks=("core",)):
    """Create stack directories, a config file and the baseline launcher.

    Existing files are never overwritten. Returns the list of created paths.
    """
    created = []
    variables = {"project": "stagesmith", "engine": ENGINE_PATH, "title": "First stage"}

    for stack in stacks:
        os.makedirs(os.path.join(workdir, "stacks", stack, "plugins"), exist_ok=True)

    first_stage = os.path.join(workdir, "stacks", stacks[0], "001_first_stage.md")
    if _write_new(first_stage, FIRST_STAGE.safe_substitute(variables)):
        created.append(first_stage)

    config_path = os.path.join(workdir, CONFIG_FILE)
    config = {"stacks": list(stacks), "output": output, "retries": 2, "iterations": 2}
    if _write_new(config_path, json.dumps(config, indent=2) + "\n"):
        created.append(config_path)

    launcher = os.path.join(baseline_dir(os.path.join(workdir, output)), *ENGINE_PATH.split("/"))
    if _write_new(launcher, LAUNCHER.safe_substitute(variables), mode=0o755):
        created.append(launcher)

    return created
