"""Stage cache: skip stages whose text is unchanged since their last success.

The store is one JSON file mapping "stack/number" to {"hash", "outcome"}.
Every failure to read or write it is logged and otherwise ignored, so a
broken cache only ever costs a re-run, never an abort.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os

from core.state import CacheEntry, StageDescriptor

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILURE = "failure"


def content_hash(text):
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class StageCache:
    def __init__(self, path, enabled=True):
        self.path = path
        self.enabled = enabled
        self._entries = None

    def _load(self):
        if self._entries is not None:
            return self._entries
        self._entries = {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return self._entries
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable cache %s: %s", self.path, e)
            return self._entries

        if not isinstance(data, dict):
            logger.warning("Ignoring malformed cache %s: expected an object", self.path)
            return self._entries

        for key, value in data.items():
            if (isinstance(value, dict) and isinstance(value.get("hash"), str)
                    and value.get("outcome") in (SUCCESS, FAILURE)):
                self._entries[key] = CacheEntry(hash=value["hash"], outcome=value["outcome"])
            else:
                logger.warning("Ignoring malformed cache entry %s", key)
        return self._entries

    def _save(self):
        data = {k: {"hash": e.hash, "outcome": e.outcome} for k, e in self._entries.items()}
        tmp_path = self.path + ".tmp"
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.warning("Could not write cache %s: %s", self.path, e)

    def entries(self):
        return dict(self._load())

    def should_skip(self, stage: StageDescriptor, text) -> bool:
        """True when the stage text is unchanged and its last run succeeded."""
        if not self.enabled:
            return False
        entry = self._load().get(stage.key)
        return bool(entry and entry.outcome == SUCCESS and entry.hash == content_hash(text))

    def record(self, stage: StageDescriptor, text, outcome):
        if not self.enabled:
            return
        self._load()[stage.key] = CacheEntry(hash=content_hash(text), outcome=outcome)
        self._save()

    def clear(self):
        """Delete the whole store."""
        self._entries = {}
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not delete cache %s: %s", self.path, e)
        else:
            logger.info("Cleared stage cache %s", self.path)
