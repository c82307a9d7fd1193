"""Pipeline state models shared across all stages."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class StageDescriptor:
    stack: str          # e.g. "core"
    number: int         # parsed from the NNN_ prefix, the ordering key
    path: str           # stacks/<stack>/NNN_description.md

    @property
    def name(self):
        """File stem, e.g. "003_add_cli"."""
        return os.path.splitext(os.path.basename(self.path))[0]

    @property
    def key(self):
        """Cache key, e.g. "core/3"."""
        return f"{self.stack}/{self.number}"

    def __str__(self):
        return f"{self.stack}/{self.name}"


@dataclass
class GeneratedFile:
    path: str           # relative path e.g. "bin/stagesmith.py"
    content: str


@dataclass
class CacheEntry:
    hash: str
    outcome: str        # "success" | "failure"


@dataclass
class PluginContext:
    config: dict
    stack: str
    number: int
    prompt_content: str
    working_dir: str    # the current output tree
    params: dict = field(default_factory=dict)  # plugin_params[<plugin name>]


@dataclass
class Payload:
    system: str
    prompt: str


@dataclass
class GateResult:
    success: bool
    output: str = ""
    returncode: int | None = 0


@dataclass
class StageOutcome:
    stage: StageDescriptor
    status: str = "pending"             # pending|skipped|success|failed|dry_run
    iterations: int = 0
    written: list[str] = field(default_factory=list)
    error: str = ""
    exit_code: int = 1                  # process status when the stage fails
