"""Run defaults and loading of filter thresholds / sample lists."""

from __future__ import annotations

import json
import logging
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .errors import ConfigurationError
from .models import FilterParams

logger = logging.getLogger(__name__)

BATCH_SIZE = 500_000
JOBS = 16
POLL_INTERVAL = 1.0
VEP_BIN = "vep"
VEP_JOBS = 4

# progress log line every N batches
LOG_EVERY = 10

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def filter_param_names() -> List[str]:
    return [f.name for f in fields(FilterParams)]


def load_filter_params(
    path: Optional[str | Path] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> FilterParams:
    """Build FilterParams from defaults, then a JSON file, then explicit overrides.

    ``overrides`` values of None are ignored so argparse namespaces can be
    passed through unfiltered.
    """
    values: Dict[str, Any] = {}
    known = set(filter_param_names())

    if path is not None:
        try:
            with open(path, "rt", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read filter params from {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a JSON object")
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown filter params in {path}: {', '.join(unknown)}")
        values.update(data)

    for k, v in (overrides or {}).items():
        if k in known and v is not None:
            values[k] = v

    try:
        params = replace(FilterParams(), **values)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid filter params: {e}") from e
    logger.debug("Filter params: %s", params)
    return params


def load_samples(
    samples_file: Optional[str | Path] = None, samples: Optional[str] = None
) -> Optional[List[str]]:
    """Sample IDs to keep, from a file (one per line, '#' comments) and/or a comma list.

    Returns None when neither is given, meaning keep every sample.
    """
    if samples_file is None and not samples:
        return None
    out: List[str] = []
    if samples_file is not None:
        for line in Path(samples_file).read_text(encoding="utf-8").splitlines():
            line = line.split("#", 1)[0].strip()
            if line:
                out.append(line)
    if samples:
        out.extend(s.strip() for s in samples.split(",") if s.strip())
    if not out:
        raise ConfigurationError("sample list is empty")
    return out
