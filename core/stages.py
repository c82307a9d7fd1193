"""Stage discovery and ordering."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from core.state import StageDescriptor
from utils.folder_naming import parse_stage_number, stack_dir

logger = logging.getLogger(__name__)


@dataclass
class DiscoveryResult:
    stages: list[StageDescriptor] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)   # stack -> message


def discover(workdir, stacks) -> DiscoveryResult:
    """Scan each stack directory (non-recursively) for NNN_description.md files.

    Stages are sorted by number. Stages sharing a number across stacks keep
    the order of their stack in `stacks`, then file name, so the order never
    depends on the filesystem's listing order. A missing or unreadable stack
    directory is logged and recorded; the remaining stacks are still scanned.
    """
    result = DiscoveryResult()
    stack_rank = {}
    for stack in stacks:
        stack_rank.setdefault(stack, len(stack_rank))

    for stack in stack_rank:
        directory = stack_dir(workdir, stack)
        try:
            entries = os.listdir(directory)
        except OSError as e:
            message = f"Could not read stack directory {directory}: {e.strerror or e}"
            logger.error(message)
            result.errors[stack] = message
            continue

        for entry in entries:
            number = parse_stage_number(entry)
            if number is None:
                continue
            path = os.path.join(directory, entry)
            if not os.path.isfile(path):
                continue
            result.stages.append(StageDescriptor(stack=stack, number=number, path=path))

    result.stages.sort(key=lambda s: (s.number, stack_rank[s.stack], s.name))
    return result


def filter_range(stages, start=None, end=None):
    """Keep stages with start <= number <= end; None leaves a side open."""
    return [
        s for s in stages
        if (start is None or s.number >= start) and (end is None or s.number <= end)
    ]


def highest_stage(workdir, stacks):
    """Largest stage number across the stacks, 0 when there are none."""
    stages = discover(workdir, stacks).stages
    return max((s.number for s in stages), default=0)
