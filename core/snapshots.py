"""Browse stage snapshots and diff a stage against everything before it."""

import difflib
import os

from utils.folder_naming import STAGE_DIR_RE


def _files_under(root):
    """Relative paths of all files under root, sorted, with "/" separators."""
    found = []
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            rel = os.path.relpath(os.path.join(dirpath, name), root)
            found.append(rel.replace(os.sep, "/"))
    return sorted(found)


def list_snapshots(output_root):
    """Every snapshot directory under <output>/stacks, ordered by stage number.

    Returns a list of dicts: {"stack", "name", "number", "path", "files"}.
    """
    stacks_root = os.path.join(output_root, "stacks")
    if not os.path.isdir(stacks_root):
        return []

    snapshots = []
    for stack in sorted(os.listdir(stacks_root)):
        stack_root = os.path.join(stacks_root, stack)
        if not os.path.isdir(stack_root):
            continue
        for name in sorted(os.listdir(stack_root)):
            match = STAGE_DIR_RE.match(name)
            path = os.path.join(stack_root, name)
            if not match or not os.path.isdir(path):
                continue
            snapshots.append({
                "stack": stack,
                "name": name,
                "number": int(match.group(1)),
                "path": path,
                "files": _files_under(path),
            })
    snapshots.sort(key=lambda s: (s["number"], s["stack"], s["name"]))
    return snapshots


def _read(path):
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError:
        return ""


def diff_stage(output_root, stack, name):
    """Unified diff of each file in a snapshot against the state before that stage.

    "Before" is the merged content of all snapshots with a lower stage number,
    applied in stage order (last write wins, like the current tree).

    Returns a list of {"path", "status", "diff"}; status is "added",
    "modified" or "unchanged". Raises KeyError for an unknown snapshot.
    """
    snapshots = list_snapshots(output_root)
    target = next((s for s in snapshots if s["stack"] == stack and s["name"] == name), None)
    if target is None:
        raise KeyError(f"No snapshot {stack}/{name}")

    previous = {}
    for snap in snapshots:
        if snap["number"] >= target["number"]:
            break
        for rel in snap["files"]:
            previous[rel] = os.path.join(snap["path"], *rel.split("/"))

    result = []
    for rel in target["files"]:
        new = _read(os.path.join(target["path"], *rel.split("/")))
        if rel in previous:
            old = _read(previous[rel])
            status = "unchanged" if old == new else "modified"
        else:
            old = ""
            status = "added"
        diff = "".join(difflib.unified_diff(
            old.splitlines(keepends=True),
            new.splitlines(keepends=True),
            fromfile=f"a/{rel}",
            tofile=f"b/{rel}",
        ))
        result.append({"path": rel, "status": status, "diff": diff})
    return result
