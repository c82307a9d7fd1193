"""Stage engine: discover → (skip | assemble → generate → parse → write → test) per stage."""

import logging
import os

from config.defaults import CACHE_FILE
from core.cache import FAILURE, SUCCESS, StageCache
from core.context import assemble, read_stage
from core.sandbox import run_command
from core.stages import discover, filter_range
from core.state import StageOutcome
from core.writer import write_files
from utils import llm

logger = logging.getLogger(__name__)


class Orchestrator:
    """Runs the configured stages strictly one after another.

    Stage N+1 may read what stage N wrote to the current tree, so there is no
    parallelism. The first stage that fails (backend exhausted, write refused,
    tests still failing after every iteration) stops the run; stages already
    written are left untouched.
    """

    def __init__(self, config, generate=None, run_tests=None, cache=None):
        self.config = config
        self.generate = generate or llm.generate
        self.run_tests = run_tests or run_command
        self.cache = cache or StageCache(
            os.path.join(config.workdir, CACHE_FILE), enabled=not config.no_cache,
        )
        self.outcomes = []

    def run(self):
        """Process every stage in range. Returns the process exit code."""
        config = self.config
        if config.clear_cache:
            self.cache.clear()

        discovery = discover(config.workdir, config.stacks)
        if not discovery.stages:
            logger.error("No stage files found in stacks: %s", ", ".join(config.stacks))
            return 1

        stages = filter_range(discovery.stages, config.start, config.end)
        logger.info("Found %d stage(s) across %d stack(s), %d in range",
                    len(discovery.stages), len(config.stacks), len(stages))

        if not config.dry_run:
            os.makedirs(config.current_dir, exist_ok=True)

        for stage in stages:
            outcome = self.process_stage(stage)
            self.outcomes.append(outcome)
            if outcome.status == "failed":
                logger.error("Processing failed at %s (stack %s, stage %d): %s",
                             stage.name, stage.stack, stage.number, outcome.error)
                return outcome.exit_code

        logger.info("Processing completed successfully")
        return 0

    def process_stage(self, stage) -> StageOutcome:
        config = self.config
        outcome = StageOutcome(stage=stage)

        try:
            text = read_stage(stage)
        except (OSError, UnicodeDecodeError) as e:
            outcome.status = "failed"
            reason = getattr(e, "strerror", None) or e
            outcome.error = f"Could not read stage file {stage.path}: {reason}"
            return outcome

        if self.cache.should_skip(stage, text):
            logger.info("Skipping %s: unchanged since its last successful run", stage)
            outcome.status = "skipped"
            return outcome

        logger.info("Processing %s (stage %d)", stage, stage.number)
        try:
            self._run_iterations(stage, text, outcome)
        except Exception as e:
            logger.debug("Stage %s raised", stage, exc_info=True)
            outcome.status = "failed"
            outcome.error = f"{type(e).__name__}: {e}"

        if not config.dry_run:
            self.cache.record(stage, text, SUCCESS if outcome.status == "success" else FAILURE)
        return outcome

    def _run_iterations(self, stage, text, outcome):
        config = self.config
        test_output = ""
        owned = []

        for attempt in range(1, config.iterations + 1):
            outcome.iterations = attempt
            if attempt > 1:
                logger.info("Iteration %d/%d for %s", attempt, config.iterations, stage)

            payload = assemble(stage, config, test_output=test_output, source_text=text)
            reply = self.generate(payload.system, payload.prompt, config)
            files = llm.parse_files(reply)
            logger.info("Extracted %d file(s) from the reply", len(files))
            if not files:
                logger.warning("No files generated for %s", stage)

            if config.dry_run:
                for f in files:
                    logger.info("Dry run: would write %s", f.path)
                outcome.status = "dry_run"
                return

            written = write_files(files, stage, config.output_root,
                                  no_overwrite=config.no_overwrite, owned=owned,
                                  replace_snapshot=True)
            owned.extend(p for p in written if p not in owned)
            outcome.written = written
            logger.info("Generated %d file(s) for %s", len(written), stage)

            result = self.run_tests(config.test_cmd, cwd=config.workdir,
                                    timeout=config.test_timeout)
            if result.success:
                outcome.status = "success"
                return
            test_output = result.output

        outcome.status = "failed"
        outcome.error = f"tests still failing after {config.iterations} iteration(s)"
        if result.returncode and result.returncode > 0:
            outcome.exit_code = result.returncode
