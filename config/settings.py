"""Layered configuration: CLI flags > environment > config file > defaults."""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass, field

from config.defaults import (
    CONFIG_FILE,
    DEFAULTS,
    ENV_VARS,
    NUMERIC_RULES,
    OPTION_TYPES,
)

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class EffectiveConfig:
    workdir: str = "."
    stacks: list[str] = field(default_factory=lambda: ["core"])
    dry_run: bool = False
    start: int | None = None
    end: int | None = None
    api_url: str | None = None
    api_key: str | None = None
    api_model: str = ""
    max_tokens: int = 32768
    api_timeout: float = 600.0
    test_cmd: str | None = None
    test_timeout: float = 600.0
    retries: int = 0
    plugin_timeout: float = 5.0
    iterations: int = 2
    output: str = "output"
    no_overwrite: bool = False
    clear_cache: bool = False
    no_cache: bool = False
    plugin_params: dict = field(default_factory=dict)
    sources: dict[str, str] = field(default_factory=dict)   # option -> winning layer
    warnings: list[str] = field(default_factory=list)

    @property
    def output_root(self):
        return os.path.join(self.workdir, self.output)

    @property
    def current_dir(self):
        return os.path.join(self.output_root, "current")

    def as_dict(self):
        """Plain dict of option values, with the API key masked."""
        data = {name: getattr(self, name) for name in OPTION_TYPES}
        if data.get("api_key"):
            data["api_key"] = "***"
        return data


def _coerce(value, kind):
    """Convert a raw layer value to the option's type. Raises ValueError."""
    if kind == "list":
        if isinstance(value, str):
            items = value.split(",")
        elif isinstance(value, (list, tuple)):
            items = [str(v) for v in value]
        else:
            raise ValueError(f"expected a list or comma-separated string, got {value!r}")
        items = [item.strip() for item in items if item.strip()]
        if not items:
            raise ValueError("empty list")
        return items
    if kind == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in TRUTHY
        return bool(value)
    if kind == "int":
        if isinstance(value, bool):
            raise ValueError(f"expected an integer, got {value!r}")
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(value)
    if kind == "float":
        if isinstance(value, bool):
            raise ValueError(f"expected a number, got {value!r}")
        return float(value)
    if kind == "dict":
        if not isinstance(value, dict):
            raise ValueError(f"expected an object, got {value!r}")
        return value
    return str(value)


def env_layer(env):
    """Pick the recognised STAGESMITH_* variables out of an environment mapping."""
    layer = {}
    for name, var in ENV_VARS.items():
        value = env.get(var)
        if value is not None and value.strip() != "":
            layer[name] = value
    return layer


def file_layer(file_config, warnings=None):
    """Normalise config-file keys (`test-cmd` and `test_cmd` are equivalent)."""
    layer = {}
    for key, value in (file_config or {}).items():
        name = str(key).replace("-", "_")
        if name not in OPTION_TYPES:
            if warnings is not None:
                warnings.append(f"Unknown config file key ignored: {key}")
            continue
        if value is not None:
            layer[name] = value
    return layer


def resolve(cli=None, env=None, file_config=None, defaults=None):
    """Merge the four layers into an EffectiveConfig.

    Each option is resolved independently: the first of CLI, env, file that
    defines it wins, otherwise the default applies. Lists are replaced, never
    concatenated. Invalid values never raise; they fall back to the default
    and a warning is recorded on the result.

    Args:
        cli: option map from the argument parser; None values mean "not given".
        env: environment mapping (e.g. os.environ).
        file_config: parsed config-file object.
        defaults: defaults dict (DEFAULTS when omitted).
    """
    defaults = defaults if defaults is not None else DEFAULTS
    warnings = []

    layers = [
        ("cli", {k: v for k, v in (cli or {}).items() if v is not None}),
        ("env", env_layer(env or {})),
        ("file", file_layer(file_config, warnings)),
    ]

    values = {}
    sources = {}
    for name, kind in OPTION_TYPES.items():
        default = copy.deepcopy(defaults.get(name, DEFAULTS.get(name)))
        values[name] = default
        sources[name] = "default"
        for layer_name, layer in layers:
            if name not in layer:
                continue
            try:
                values[name] = _coerce(layer[name], kind)
                sources[name] = layer_name
            except (TypeError, ValueError) as e:
                warnings.append(
                    f"Invalid {name} value from {layer_name} ({e}); using default {default!r}"
                )
            break

    for name, is_valid, requirement in NUMERIC_RULES:
        value = values[name]
        if value is not None and not is_valid(value):
            default = defaults.get(name, DEFAULTS.get(name))
            warnings.append(
                f"Invalid {name} value {value!r}: must be {requirement}; using default {default!r}"
            )
            values[name] = default
            sources[name] = "default"

    return EffectiveConfig(**values, sources=sources, warnings=warnings)


def load_config_file(workdir="."):
    """Read stagesmith.json from workdir.

    A missing file is an empty layer. Malformed JSON, or JSON that is not an
    object, is logged as an error and also treated as an empty layer.
    """
    path = os.path.join(workdir, CONFIG_FILE)
    try:
        with open(path, encoding="utf-8") as f:
            raw = f.read()
    except FileNotFoundError:
        return {}
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Could not read %s: %s", path, e)
        return {}

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.error("Malformed %s, ignoring it: %s", path, e)
        return {}

    if not isinstance(data, dict):
        logger.error("%s must contain a JSON object, ignoring it", path)
        return {}

    logger.debug("Loaded configuration from %s", path)
    return data


def load(cli=None, env=None):
    """Resolve configuration the way the CLI does: read the file, then merge.

    The config file is looked up in the workdir given on the CLI or in the
    environment, falling back to the current directory.
    """
    env = os.environ if env is None else env
    workdir = (cli or {}).get("workdir") or env.get(ENV_VARS["workdir"]) or "."
    config = resolve(cli, env, load_config_file(workdir))
    for warning in config.warnings:
        logger.warning(warning)
    return config
