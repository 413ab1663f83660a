"""Persistent cache of annotation payloads keyed by variant signature.

The cache is a single gzip-compressed JSON object mapping
``chrom:pos:ref:alt[:end]`` to the CSQ payload produced by the annotation
tool. The special key ``__schema__`` holds the annotation schema (the
``##VEP`` and ``##INFO=<ID=CSQ`` header lines) the payloads were built with;
payloads are only valid for that schema. Entries are never removed.
"""

from __future__ import annotations

import gzip
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

from .errors import CacheSchemaError, ConfigurationError

logger = logging.getLogger(__name__)

SCHEMA_KEY = "__schema__"


class AnnotationCache:
    """In-memory view of the cache file; single writer, persisted once."""

    def __init__(self, path: str | Path, entries: Optional[Dict[str, str]] = None) -> None:
        self.path = Path(path)
        self._entries: Dict[str, str] = dict(entries or {})
        self.added = 0
        self.dirty = False

    @classmethod
    def load(cls, path: str | Path) -> "AnnotationCache":
        """Load the cache at ``path``; a missing or empty file gives an empty cache."""
        p = Path(path)
        if not p.exists() or p.stat().st_size == 0:
            logger.info("No annotation cache at %s, starting empty", p)
            return cls(p)
        try:
            with gzip.open(p, "rt", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, EOFError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read annotation cache {p}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"annotation cache {p} does not hold a JSON object")
        cache = cls(p, data)
        logger.info("Loaded %d cached annotations from %s", len(cache), p)
        return cache

    def __len__(self) -> int:
        return len(self._entries) - (1 if SCHEMA_KEY in self._entries else 0)

    def __contains__(self, sig: str) -> bool:
        return sig != SCHEMA_KEY and sig in self._entries

    @property
    def schema(self) -> Optional[str]:
        return self._entries.get(SCHEMA_KEY)

    def lookup(self, sig: str) -> Optional[str]:
        if sig == SCHEMA_KEY:
            return None
        return self._entries.get(sig)

    def store(self, sig: str, payload: str) -> bool:
        """Record ``payload`` for ``sig``; return True if it was new.

        An existing, different payload is kept.
        """
        if sig == SCHEMA_KEY:
            raise ValueError(f"{SCHEMA_KEY} is reserved")
        old = self._entries.get(sig)
        if old is None:
            self._entries[sig] = payload
            self.added += 1
            self.dirty = True
            return True
        if old != payload:
            logger.warning(
                "%s is already cached with a different annotation, keeping the cached one:\n"
                "cached: %s\nnew:    %s",
                sig,
                old,
                payload,
            )
        return False

    def verify_schema(self, schema: str) -> None:
        """Check ``schema`` against the stored one, or record it on a cold cache."""
        stored = self._entries.get(SCHEMA_KEY)
        if stored is None:
            self._entries[SCHEMA_KEY] = schema
            self.dirty = True
            return
        if stored != schema:
            raise CacheSchemaError(
                f"the annotation schema changed since the cache {self.path} was built.\n"
                f"cached:  {stored}\ncurrent: {schema}\n"
                "The cached annotations are stale: delete the cache file and run again."
            )

    def persist(self) -> None:
        """Atomically rewrite the cache file if anything changed."""
        if not self.dirty:
            logger.info("Annotation cache unchanged, not rewriting %s", self.path)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "wb") as raw, gzip.open(raw, "wt", encoding="utf-8") as f:
                json.dump(self._entries, f, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise
        self.dirty = False
        logger.info("Saved %d annotations (%d new) to %s", len(self), self.added, self.path)
