#!/usr/bin/env python3
"""stagesmith - staged, prompt-driven code generation.

Usage:
    python main.py init                                   # scaffold stacks/, config, baseline engine
    python main.py run --stacks core,tests                # process every stage once
    python main.py run --start 3 --end 3 --dry-run        # one stage, no backend call, no writes
    python main.py bootstrap --test-cmd "pytest -q"       # re-run stages with the regenerated engine
    python main.py list-stages                            # stage order and cache status
    python main.py diff core/003_add_cli                  # what a stage changed
    python main.py clear-cache
"""

import argparse
import logging
import os
import sys

from config import settings
from config.defaults import CACHE_FILE, OPTION_TYPES, VERSION
from core.bootstrap import Bootstrapper
from core.cache import StageCache
from core.orchestrator import Orchestrator
from core.scaffold import init_workspace
from core.snapshots import diff_stage
from core.stages import discover


def _setup_logging(verbose):
    level = logging.DEBUG if verbose or os.environ.get("STAGESMITH_DEBUG") else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)-7s %(message)s", stream=sys.stdout)
    # The SDK's HTTP client is chatty at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _cli_options(args):
    """The config options given on the command line; absent ones are None."""
    return {name: getattr(args, name, None) for name in OPTION_TYPES}


def _print_outcomes(outcomes):
    print(f"\nProcessed {len(outcomes)} stage(s):")
    for outcome in outcomes:
        line = f"  {str(outcome.stage):40s} {outcome.status}"
        if outcome.written:
            line += f" ({len(outcome.written)} file(s), {outcome.iterations} iteration(s))"
        if outcome.error:
            line += f" - {outcome.error}"
        print(line)


def cmd_run(args):
    """Process the configured stages once."""
    config = settings.load(_cli_options(args))
    logging.getLogger(__name__).debug("Effective options: %s", config.as_dict())
    orchestrator = Orchestrator(config)
    code = orchestrator.run()
    if orchestrator.outcomes:
        _print_outcomes(orchestrator.outcomes)
    return code


def cmd_bootstrap(args):
    """Seed the current tree and run each stage with the engine found there."""
    config = settings.load(_cli_options(args))
    return Bootstrapper(config).run()


def cmd_init(args):
    config = settings.load(_cli_options(args))
    created = init_workspace(config.workdir, config.output, tuple(config.stacks))
    print(f"Created {len(created)} file(s):")
    for path in created:
        print(f"  {path}")
    return 0


def cmd_list_stages(args):
    config = settings.load(_cli_options(args))
    discovery = discover(config.workdir, config.stacks)
    cache = StageCache(os.path.join(config.workdir, CACHE_FILE))
    entries = cache.entries()

    if not discovery.stages:
        print("No stage files found")
        return 1
    for stage in discovery.stages:
        entry = entries.get(stage.key)
        status = entry.outcome if entry else "-"
        print(f"  {stage.number:4d}  {stage.stack:12s} {stage.name:40s} {status}")
    return 0


def cmd_clear_cache(args):
    config = settings.load(_cli_options(args))
    StageCache(os.path.join(config.workdir, CACHE_FILE)).clear()
    return 0


def cmd_diff(args):
    config = settings.load(_cli_options(args))
    stack, _, name = args.stage.partition("/")
    try:
        changes = diff_stage(config.output_root, stack, name)
    except KeyError as e:
        print(f"Error: {e.args[0]}", file=sys.stderr)
        return 1

    for change in changes:
        print(f"[{change['status']}] {change['path']}")
        if change["diff"]:
            print(change["diff"])
    return 0


def _add_config_options(parser):
    """Flags that map onto config options. Defaults are None so unset flags fall through."""
    parser.add_argument("--workdir", help="Working directory (default: .)")
    parser.add_argument("--stacks", help="Comma-separated stacks to process (default: core)")
    parser.add_argument("--output", help="Output directory (default: output)")
    parser.add_argument("--start", type=int, help="First stage number to process")
    parser.add_argument("--end", type=int, help="Last stage number to process")
    parser.add_argument("--dry-run", action="store_true", default=None,
                        help="No backend call and no file writes")
    parser.add_argument("--api-url", help="Backend base URL")
    parser.add_argument("--api-key", help="Backend API key")
    parser.add_argument("--api-model", help="Model name")
    parser.add_argument("--max-tokens", help="Max tokens per reply")
    parser.add_argument("--api-timeout", help="Backend request timeout in seconds")
    parser.add_argument("--retries", help="Retries for failed backend calls (default: 0)")
    parser.add_argument("--test-cmd", help="Command run after each stage; failure stops the run")
    parser.add_argument("--test-timeout", help="Test command timeout in seconds")
    parser.add_argument("--iterations", help="Attempts per stage while tests fail (default: 2)")
    parser.add_argument("--plugin-timeout", help="Seconds per dynamic plugin (default: 5)")
    parser.add_argument("--no-overwrite", action="store_true", default=None,
                        help="Refuse a stage whose files already exist in the current tree")
    parser.add_argument("--clear-cache", action="store_true", default=None,
                        help="Delete the stage cache before running")
    parser.add_argument("--no-cache", action="store_true", default=None,
                        help="Neither consult nor update the stage cache")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="stagesmith",
        description="Staged, prompt-driven code generation",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    common = argparse.ArgumentParser(add_help=False)
    _add_config_options(common)

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", parents=[common], help="Process the stages once")
    subparsers.add_parser("bootstrap", parents=[common],
                          help="Run each stage with the engine from the current tree")
    subparsers.add_parser("init", parents=[common], help="Scaffold a new workspace")
    subparsers.add_parser("list-stages", parents=[common], help="Show stage order and cache status")
    subparsers.add_parser("clear-cache", parents=[common], help="Delete the stage cache")
    diff_parser = subparsers.add_parser("diff", parents=[common],
                                        help="Show what a stage snapshot changed")
    diff_parser.add_argument("stage", help="<stack>/<NNN_name>, e.g. core/003_add_cli")
    return parser


COMMANDS = {
    "run": cmd_run,
    "bootstrap": cmd_bootstrap,
    "init": cmd_init,
    "list-stages": cmd_list_stages,
    "clear-cache": cmd_clear_cache,
    "diff": cmd_diff,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    _setup_logging(args.verbose)
    return COMMANDS[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
