"""Self-bootstrap loop: run every stage with the engine currently in the output tree.

The loop never imports the engine it runs. Each stage is a fresh child
process started from <output>/current/bin/stagesmith.py, resolved again
before every stage, so a stage that regenerates the engine changes the
binary used by all later stages, and a broken generation can only take down
its own process.
"""

import logging
import os
import shutil
import subprocess
import sys

from config.defaults import CACHE_FILE, ENGINE_PATH, OPTION_TYPES
from core.cache import StageCache
from core.stages import highest_stage
from utils.folder_naming import baseline_dir, current_dir

logger = logging.getLogger(__name__)

# Set explicitly per child, handled once by the loop, or not a CLI flag.
NOT_FORWARDED = {"start", "end", "stacks", "workdir", "output", "clear_cache", "plugin_params"}


class BootstrapError(Exception):
    pass


class Bootstrapper:
    def __init__(self, config, runner=subprocess.run):
        self.config = config
        self.runner = runner

    @property
    def engine_path(self):
        return os.path.join(current_dir(self.config.output_root), *ENGINE_PATH.split("/"))

    def seed_current(self):
        """Copy the baseline implementation over the current tree."""
        source = baseline_dir(self.config.output_root)
        if not os.path.isdir(source):
            raise BootstrapError(
                f"Baseline directory {source} not found; run `stagesmith init` first"
            )
        target = current_dir(self.config.output_root)
        shutil.copytree(source, target, dirs_exist_ok=True)
        logger.info("Seeded %s from %s", target, source)

    def stage_range(self):
        start = self.config.start or 1
        end = self.config.end
        if end is None:
            end = highest_stage(self.config.workdir, self.config.stacks)
        return start, end

    def build_command(self, number):
        """Child command line for one stage.

        Options given on our own command line are passed on as flags; the
        child resolves env and config-file values itself, so precedence holds.
        """
        config = self.config
        command = [
            sys.executable, self.engine_path, "run",
            "--start", str(number),
            "--end", str(number),
            "--stacks", ",".join(config.stacks),
            "--workdir", config.workdir,
            "--output", config.output,
        ]
        for name, kind in OPTION_TYPES.items():
            if name in NOT_FORWARDED or config.sources.get(name) != "cli":
                continue
            value = getattr(config, name)
            flag = "--" + name.replace("_", "-")
            if kind == "bool":
                if value:
                    command.append(flag)
            elif value is not None:
                command += [flag, ",".join(value) if kind == "list" else str(value)]
        return command

    def run_stage(self, number):
        if not os.path.isfile(self.engine_path):
            raise BootstrapError(f"Engine not found at {self.engine_path}")
        command = self.build_command(number)
        logger.info("Running stage %d with %s", number, self.engine_path)
        logger.debug("Executing: %s", " ".join(command))
        result = self.runner(command)
        return result.returncode

    def run(self):
        """Seed, then run stages start..end one child process at a time.

        Returns 0 when every stage passed, otherwise the first non-zero exit
        status (1 for a bootstrap-level error).
        """
        if self.config.clear_cache:
            StageCache(os.path.join(self.config.workdir, CACHE_FILE)).clear()

        try:
            self.seed_current()
        except (BootstrapError, OSError) as e:
            logger.error("Bootstrap failed: %s", e)
            return 1

        start, end = self.stage_range()
        if end < start:
            logger.error("No stages to run (start %d, highest stage %d)", start, end)
            return 1
        logger.info("Bootstrap will run stages %d through %d", start, end)

        for number in range(start, end + 1):
            try:
                returncode = self.run_stage(number)
            except (BootstrapError, OSError) as e:
                logger.error("Bootstrap failed at stage %d: %s", number, e)
                return 1
            if returncode != 0:
                logger.error("Stage %d exited with code %d", number, returncode)
                return returncode

        logger.info("Bootstrap completed successfully")
        return 0
