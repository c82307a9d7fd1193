"""Output tree naming: snapshot directories, stage file names, containment."""

import os
import re

STAGE_FILE_RE = re.compile(r"^(\d+)_.+\.md$")
STAGE_DIR_RE = re.compile(r"^(\d+)_")


def parse_stage_number(filename):
    """Return the numeric prefix of a stage file name, or None if it doesn't match."""
    match = STAGE_FILE_RE.match(filename)
    if not match:
        return None
    return int(match.group(1))


def stack_dir(workdir, stack):
    return os.path.join(workdir, "stacks", stack)


def plugin_dir(workdir, stack):
    return os.path.join(stack_dir(workdir, stack), "plugins")


def current_dir(output_root):
    return os.path.join(output_root, "current")


def baseline_dir(output_root):
    return os.path.join(output_root, "bootstrap")


def snapshot_dir(output_root, stage):
    """Immutable per-stage directory: <output>/stacks/<stack>/<NNN_name>."""
    return os.path.join(output_root, "stacks", stage.stack, stage.name)


def check_containment(root, relative_path):
    """Resolve relative_path under root and refuse anything that escapes it.

    Returns the resolved absolute path.
    """
    if os.path.isabs(relative_path):
        raise ValueError(f"Path escapes output directory: {relative_path}")
    base = os.path.realpath(root)
    resolved = os.path.realpath(os.path.join(base, relative_path))
    if not resolved.startswith(base + os.sep):
        raise ValueError(f"Path escapes output directory: {relative_path}")
    return resolved
