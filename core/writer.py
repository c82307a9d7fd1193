"""Dual-target writer: per-stage snapshot plus the merged current tree."""

from __future__ import annotations

import logging
import os
import shutil

from core.state import GeneratedFile, StageDescriptor
from utils.folder_naming import check_containment, current_dir, snapshot_dir

logger = logging.getLogger(__name__)


class WriteError(Exception):
    """A batch was refused before anything was written."""


class PathEscapeError(WriteError):
    pass


class OverwriteError(WriteError):
    pass


def reset_snapshot(stage: StageDescriptor, output_root):
    """Drop a stage's previous snapshot before the stage is regenerated."""
    path = snapshot_dir(output_root, stage)
    if os.path.isdir(path):
        shutil.rmtree(path)
        logger.debug("Removed stale snapshot %s", path)


def write_files(files: list[GeneratedFile], stage: StageDescriptor, output_root,
                no_overwrite=False, owned=(), replace_snapshot=False):
    """Write every file to the stage snapshot and to the current tree.

    The whole batch is checked before the first write: a path that leaves
    either root raises PathEscapeError, and with no_overwrite any path that
    already exists in the current tree (and is not in `owned`, the paths this
    stage wrote on an earlier attempt) raises OverwriteError. In both cases
    nothing is written. With replace_snapshot the stage's previous snapshot
    is removed once the checks pass, so a regenerated stage leaves no stale
    files behind.

    Repeated paths are written in order, so the last record wins.

    Returns the list of relative paths written, in order, without duplicates.
    """
    snapshot_root = snapshot_dir(output_root, stage)
    current_root = current_dir(output_root)

    targets = []
    for f in files:
        try:
            snapshot_path = check_containment(snapshot_root, f.path)
            current_path = check_containment(current_root, f.path)
        except ValueError as e:
            raise PathEscapeError(str(e)) from None
        targets.append((f, snapshot_path, current_path))

    if no_overwrite:
        owned = set(owned)
        existing = [f.path for f, _, current_path in targets
                    if f.path not in owned and os.path.exists(current_path)]
        if existing:
            raise OverwriteError(
                f"{len(existing)} file(s) already exist in {current_root} and "
                f"no-overwrite is set: {', '.join(sorted(set(existing)))}"
            )

    if replace_snapshot:
        reset_snapshot(stage, output_root)

    written = []
    for f, snapshot_path, current_path in targets:
        for path in (snapshot_path, current_path):
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "w", encoding="utf-8") as fp:
                fp.write(f.content)
        if f.path not in written:
            written.append(f.path)
        logger.info("Wrote file: %s", f.path)
    return written
