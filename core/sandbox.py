"""Test-gate runner: runs the configured test command after each stage."""

import logging
import os
import shlex
import subprocess
import sys

from config.defaults import DEFAULTS
from core.state import GateResult

logger = logging.getLogger(__name__)


def run_command(command, cwd=".", timeout=None):
    """Run a test command without a shell and report whether it passed.

    Args:
        command: Command line string, e.g. "pytest -q", or an argv list.
            None or empty means there is no gate, which always passes.
        cwd: Working directory (must exist)
        timeout: Seconds before killing the process (default from config)

    Output is captured so a failing run can be fed back into the next
    attempt, then echoed to this process's stdout/stderr.

    Raises:
        ValueError: If cwd is invalid or the command cannot be tokenized.
    """
    if not command:
        return GateResult(success=True)
    if timeout is None:
        timeout = DEFAULTS["test_timeout"]

    argv = shlex.split(command) if isinstance(command, str) else list(command)
    if not argv:
        return GateResult(success=True)

    cwd = os.path.realpath(cwd)
    if not os.path.isdir(cwd):
        raise ValueError(f"Working directory does not exist: {cwd}")

    logger.info("Running tests: %s", " ".join(argv))
    try:
        result = subprocess.run(
            argv,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        message = f"Command timed out after {timeout}s"
        logger.error(message)
        return GateResult(success=False, output=message, returncode=-1)
    except FileNotFoundError:
        message = f"Command not found: {argv[0]}"
        logger.error(message)
        return GateResult(success=False, output=message, returncode=-1)

    if result.stdout:
        sys.stdout.write(result.stdout)
    if result.stderr:
        sys.stderr.write(result.stderr)

    output = result.stdout + result.stderr
    if result.returncode == 0:
        logger.info("Tests passed")
        return GateResult(success=True, output=output, returncode=0)
    logger.error("Tests failed with exit code %d", result.returncode)
    return GateResult(success=False, output=output, returncode=result.returncode)
