"""Stack plugins: static text fragments and dynamic Python fragments.

A stack may carry a ``plugins/`` directory next to its stage files:

    stacks/core/plugins/
        010_style.md        static, appended verbatim
        020_dump_files.py   dynamic, must define execute(context)

Static plugins are appended in file-name order. Dynamic plugins are then run
in file-name order, each on its own daemon thread with a timeout. A plugin
that raises, lacks ``execute`` or overruns its timeout is logged and skipped;
it never stops the remaining plugins or the stage itself. A timed-out plugin
thread is abandoned, not killed.
"""

from __future__ import annotations

import asyncio
import dataclasses
import importlib.util
import inspect
import logging
import os
import re
import threading

from config.defaults import DYNAMIC_PLUGIN_EXTENSION, STATIC_PLUGIN_EXTENSION
from core.state import PluginContext
from utils.folder_naming import plugin_dir

logger = logging.getLogger(__name__)


class PluginError(Exception):
    """A dynamic plugin could not be loaded, failed, or timed out."""


class StaticPlugin:
    kind = "static"

    def __init__(self, path):
        self.path = path
        self.name = os.path.splitext(os.path.basename(path))[0]

    def load(self):
        with open(self.path, encoding="utf-8") as f:
            return f.read()


class DynamicPlugin:
    kind = "dynamic"

    def __init__(self, path):
        self.path = path
        self.name = os.path.splitext(os.path.basename(path))[0]

    def _load_execute(self):
        module_name = "stagesmith_plugin_" + re.sub(r"\W", "_", self.name)
        spec = importlib.util.spec_from_file_location(module_name, self.path)
        if spec is None or spec.loader is None:
            raise PluginError(f"Cannot load plugin {self.path}")
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        execute = getattr(module, "execute", None)
        if not callable(execute):
            raise PluginError(f"Plugin {self.path} does not define execute(context)")
        return execute

    def execute(self, context):
        """Load the module fresh and call its execute(context).

        Coroutine functions are supported and run to completion on a private
        event loop.
        """
        execute = self._load_execute()
        result = execute(context)
        if inspect.isawaitable(result):
            result = asyncio.run(_await(result))
        return result


async def _await(awaitable):
    return await awaitable


def run_with_timeout(func, arg, timeout):
    """Call func(arg) on a daemon thread and wait at most `timeout` seconds.

    Returns func's result or re-raises its exception. Raises PluginError when
    the call has not settled in time; the thread is left running.
    """
    outcome = {}

    def target():
        try:
            outcome["result"] = func(arg)
        except BaseException as e:  # stored and re-raised in the caller's thread
            outcome["error"] = e

    worker = threading.Thread(target=target, name="stagesmith-plugin", daemon=True)
    worker.start()
    worker.join(timeout)

    if worker.is_alive():
        raise PluginError(f"timed out after {timeout}s")
    if "error" in outcome:
        error = outcome["error"]
        if not isinstance(error, Exception):
            raise PluginError(f"exited abnormally: {error!r}")
        raise error
    return outcome.get("result")


def discover_plugins(workdir, stack):
    """Return (static_plugins, dynamic_plugins) for a stack, each sorted by file name."""
    directory = plugin_dir(workdir, stack)
    if not os.path.isdir(directory):
        return [], []
    try:
        names = sorted(os.listdir(directory))
    except OSError as e:
        logger.warning("Could not list plugins for stack %s: %s", stack, e)
        return [], []

    static, dynamic = [], []
    for name in names:
        path = os.path.join(directory, name)
        if not os.path.isfile(path):
            continue
        if name.endswith(STATIC_PLUGIN_EXTENSION):
            static.append(StaticPlugin(path))
        elif name.endswith(DYNAMIC_PLUGIN_EXTENSION):
            dynamic.append(DynamicPlugin(path))
    return static, dynamic


def collect_contributions(workdir, stack, context: PluginContext, timeout):
    """Run every plugin of a stack and return their text contributions in order."""
    static, dynamic = discover_plugins(workdir, stack)
    contributions = []

    for plugin in static:
        try:
            contributions.append(plugin.load())
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read plugin %s/%s: %s", stack, plugin.name, e)
            continue
        logger.info("Loaded plugin: %s/%s", stack, plugin.name)

    params = context.config.get("plugin_params") or {}
    for plugin in dynamic:
        plugin_params = params.get(plugin.name) or {}
        if not isinstance(plugin_params, dict):
            logger.warning("plugin_params for %s/%s must be an object, got %r; ignoring it",
                           stack, plugin.name, plugin_params)
            plugin_params = {}
        plugin_context = dataclasses.replace(context, params=dict(plugin_params))
        logger.info("Running dynamic plugin: %s/%s", stack, plugin.name)
        try:
            result = run_with_timeout(plugin.execute, plugin_context, timeout)
        except Exception as e:
            logger.error("Plugin %s/%s failed, skipping it: %s", stack, plugin.name, e)
            continue
        if isinstance(result, str) and result.strip():
            contributions.append(result)
        elif result is not None and not isinstance(result, str):
            logger.debug("Plugin %s/%s returned %s, ignoring the value",
                         stack, plugin.name, type(result).__name__)

    return contributions
