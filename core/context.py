"""Prompt assembly: stage text + Context: files + plugin contributions."""

from __future__ import annotations

import logging
import re

from core.plugins import collect_contributions
from core.state import Payload, PluginContext, StageDescriptor
from utils.folder_naming import check_containment

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Generate code files in this exact format for each file:\n"
    "File: path/to/file\n"
    "```lang\n"
    "content\n"
    "```\n"
    "Paths are relative to the project root. Always output complete files. "
    "Ensure every response includes ALL files requested in the prompt's "
    "Output sections. Do not skip any requested outputs."
)

# A single "Context: a, b" line, optionally written as a markdown heading.
CONTEXT_RE = re.compile(r"^[ \t]*(?:#+[ \t]*)?Context:[ \t]*(.*?)[ \t]*$", re.MULTILINE)


def read_stage(stage: StageDescriptor):
    with open(stage.path, encoding="utf-8") as f:
        return f.read()


def _context_block(path, content):
    return f"File: {path}\n```\n{content}\n```"


def expand_context(text, current_dir):
    """Replace the first Context: directive with the referenced files' contents.

    Files are read from the current output tree. A file that cannot be read,
    or whose path leaves the tree, is skipped with a warning.
    """
    match = CONTEXT_RE.search(text)
    if not match:
        return text

    blocks = []
    for rel_path in [p.strip() for p in match.group(1).split(",") if p.strip()]:
        try:
            full_path = check_containment(current_dir, rel_path)
            with open(full_path, encoding="utf-8") as f:
                blocks.append(_context_block(rel_path, f.read()))
        except ValueError as e:
            logger.warning("Skipping context file %s: %s", rel_path, e)
        except OSError as e:
            logger.warning("Could not read context file %s: %s", rel_path, e.strerror or e)

    return text[:match.start()] + "\n\n".join(blocks) + text[match.end():]


def _test_feedback(test_output):
    return (
        "## Test Output\n"
        "The previous implementation failed with this test output:\n"
        f"```\n{test_output}\n```\n"
        "Please fix the issues in your implementation."
    )


def assemble(stage: StageDescriptor, config, test_output="", source_text=None) -> Payload:
    """Build the request payload for one stage.

    Args:
        stage: the stage to assemble.
        config: EffectiveConfig of the run.
        test_output: failing gate output from the previous attempt, if any.
        source_text: the stage's raw text when the caller already read it.
    """
    raw = source_text if source_text is not None else read_stage(stage)
    parts = [expand_context(raw, config.current_dir)]

    plugin_context = PluginContext(
        config=config.as_dict(),
        stack=stage.stack,
        number=stage.number,
        prompt_content=raw,
        working_dir=config.current_dir,
    )
    parts.extend(collect_contributions(config.workdir, stage.stack, plugin_context,
                                       config.plugin_timeout))

    if test_output:
        parts.append(_test_feedback(test_output))

    return Payload(system=SYSTEM_PROMPT, prompt="\n\n".join(p.strip("\n") for p in parts))
