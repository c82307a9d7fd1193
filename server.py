#!/usr/bin/env python3
"""Stage browser - read-only web API over stages, snapshots and the cache."""

import os

from flask import Flask, jsonify

from config import settings
from config.defaults import CACHE_FILE
from core.cache import StageCache
from core.snapshots import diff_stage, list_snapshots
from core.stages import discover

app = Flask(__name__)
app.config["WORKDIR"] = None    # None: resolve from env / current directory


def _config():
    return settings.load({"workdir": app.config.get("WORKDIR")})


def _cache(config):
    return StageCache(os.path.join(config.workdir, CACHE_FILE))


@app.route("/api/stages")
def api_stages():
    """Discovered stages in processing order, with their cache status."""
    config = _config()
    discovery = discover(config.workdir, config.stacks)
    entries = _cache(config).entries()
    stages = []
    for stage in discovery.stages:
        entry = entries.get(stage.key)
        stages.append({
            "stack": stage.stack,
            "number": stage.number,
            "name": stage.name,
            "cached": entry.outcome if entry else None,
        })
    return jsonify({"stages": stages, "errors": discovery.errors})


@app.route("/api/snapshots")
def api_snapshots():
    config = _config()
    snapshots = [
        {k: v for k, v in snap.items() if k != "path"}
        for snap in list_snapshots(config.output_root)
    ]
    return jsonify(snapshots)


@app.route("/api/diff/<stack>/<name>")
def api_diff(stack, name):
    config = _config()
    try:
        changes = diff_stage(config.output_root, stack, name)
    except KeyError:
        return jsonify({"error": f"Snapshot not found: {stack}/{name}"}), 404
    return jsonify({"stack": stack, "name": name, "files": changes})


@app.route("/api/cache")
def api_cache():
    config = _config()
    entries = _cache(config).entries()
    return jsonify({key: {"hash": e.hash, "outcome": e.outcome} for key, e in entries.items()})


@app.route("/api/cache/clear", methods=["POST"])
def api_cache_clear():
    config = _config()
    _cache(config).clear()
    return jsonify({"cleared": True})


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    print(f"Stage browser running at http://localhost:{port}")
    app.run(debug=False, port=port)
