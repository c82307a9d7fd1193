"""Default pipeline settings."""

VERSION = "0.1.0"

DEFAULTS = {
    "workdir": ".",
    "stacks": ["core"],
    "dry_run": False,
    "start": None,
    "end": None,
    "api_url": None,            # None lets the SDK pick its own endpoint
    "api_key": None,
    "api_model": "claude-sonnet-4-5-20250929",
    "max_tokens": 32768,
    "api_timeout": 600.0,
    "test_cmd": None,
    "test_timeout": 600.0,
    "retries": 0,
    "plugin_timeout": 5.0,      # seconds per dynamic plugin
    "iterations": 2,
    "output": "output",
    "no_overwrite": False,
    "clear_cache": False,
    "no_cache": False,
    "plugin_params": {},
}

# Option types drive parsing of env vars and config-file values.
OPTION_TYPES = {
    "workdir": "str",
    "stacks": "list",
    "dry_run": "bool",
    "start": "int",
    "end": "int",
    "api_url": "str",
    "api_key": "str",
    "api_model": "str",
    "max_tokens": "int",
    "api_timeout": "float",
    "test_cmd": "str",
    "test_timeout": "float",
    "retries": "int",
    "plugin_timeout": "float",
    "iterations": "int",
    "output": "str",
    "no_overwrite": "bool",
    "clear_cache": "bool",
    "no_cache": "bool",
    "plugin_params": "dict",
}

ENV_PREFIX = "STAGESMITH_"

# plugin_params is only settable from the config file
ENV_VARS = {
    name: ENV_PREFIX + name.upper()
    for name in OPTION_TYPES
    if name != "plugin_params"
}

# (option, predicate, requirement) checked after all layers are merged
NUMERIC_RULES = [
    ("retries", lambda v: v >= 0, "a non-negative integer"),
    ("plugin_timeout", lambda v: v > 0, "a positive number of seconds"),
    ("iterations", lambda v: v >= 1, "a positive integer"),
    ("max_tokens", lambda v: v > 0, "a positive integer"),
    ("api_timeout", lambda v: v > 0, "a positive number of seconds"),
    ("test_timeout", lambda v: v > 0, "a positive number of seconds"),
]

CONFIG_FILE = "stagesmith.json"
CACHE_FILE = ".stagesmith-cache.json"
ENGINE_PATH = "bin/stagesmith.py"   # relative to the current tree

STAGE_EXTENSION = ".md"
STATIC_PLUGIN_EXTENSION = ".md"
DYNAMIC_PLUGIN_EXTENSION = ".py"
PLUGIN_DIR = "plugins"

MAX_BACKOFF = 30
