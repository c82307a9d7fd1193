"""Claude API client for stage generation, and the reply parser."""

import logging
import os
import re
import time

import anthropic

from config.defaults import DEFAULTS, MAX_BACKOFF
from core.state import GeneratedFile

logger = logging.getLogger(__name__)

DRY_RUN_REPLY = "File: example/file\n```lang\ncontent\n```"


def get_client(api_key=None, api_url=None, timeout=None):
    """Return an Anthropic client. Raises if no API key is available."""
    api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        raise RuntimeError(
            "No API key configured. Pass --api-key, set STAGESMITH_API_KEY, or run:\n"
            "  export ANTHROPIC_API_KEY='your-key-here'"
        )
    kwargs = {"api_key": api_key}
    if api_url:
        kwargs["base_url"] = api_url
    if timeout:
        kwargs["timeout"] = timeout
    return anthropic.Anthropic(**kwargs)


def backoff_delay(attempt):
    """Seconds to wait before retry number `attempt` (1-based)."""
    return min(2 ** (attempt - 1), MAX_BACKOFF)


def generate(system_prompt, user_prompt, options, sleep=time.sleep):
    """Send one stage to the backend and return the raw reply text.

    Args:
        system_prompt: reply-format instructions.
        user_prompt: assembled stage payload.
        options: EffectiveConfig (dry_run, api_*, max_tokens, retries).
        sleep: injectable for tests.

    Dry-run mode returns a canned reply without touching the network.
    Backend errors are retried up to `options.retries` times with
    exponential backoff; the last error is re-raised.
    """
    if options.dry_run:
        logger.info("Dry run: skipping backend call (%d chars of prompt)", len(user_prompt))
        logger.debug("Prompt:\n%s", user_prompt)
        return DRY_RUN_REPLY

    client = get_client(options.api_key, options.api_url, options.api_timeout)
    model = options.api_model or DEFAULTS["api_model"]
    max_tokens = options.max_tokens or DEFAULTS["max_tokens"]

    attempt = 0
    while True:
        try:
            logger.info("Sending %d chars to %s", len(user_prompt), model)
            # Streaming avoids the SDK timeout for large max_tokens
            text = ""
            with client.messages.stream(
                model=model,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
            ) as stream:
                for chunk in stream.text_stream:
                    text += chunk
                stop_reason = stream.get_final_message().stop_reason

            if stop_reason == "max_tokens":
                logger.warning("Reply hit the max_tokens limit; the last file may be truncated")
            return text

        except anthropic.APIError as e:
            attempt += 1
            if attempt > options.retries:
                raise
            delay = backoff_delay(attempt)
            logger.warning("Backend attempt %d/%d failed (%s), retrying in %ss",
                           attempt, options.retries, e, delay)
            sleep(delay)


# "File: path" (or "Path: path") on its own line, then a fenced block. The
# content group is lazy-optional so an empty block closes at its own fence.
FILE_BLOCK_RE = re.compile(
    r"^(?:File|Path):[ \t]*(\S[^\n]*?)[ \t]*\n```[^\n`]*\n(?:(.*?)\n)??```",
    re.DOTALL | re.MULTILINE,
)


def parse_files(response):
    """Extract generated files from a backend reply.

    Wire format, repeated:

        File: path/to/file.py
        ```python
        ...content...
        ```

    The content excludes both fences and the newline before the closing one.
    Duplicate paths are kept in encounter order; the writer applies them
    last-wins. Paths are not validated here.
    """
    return [
        GeneratedFile(path=match.group(1), content=match.group(2) or "")
        for match in FILE_BLOCK_RE.finditer(response or "")
    ]
