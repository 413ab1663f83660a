from __future__ import annotations

import gzip
import json
import logging
import shlex
import sys
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Sequence, TextIO

logger = logging.getLogger(__name__)


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode, encoding="utf-8")  # type: ignore[return-value]
    return open(p, mode, encoding="utf-8")


@contextmanager
def open_input(path: Optional[str]) -> Iterator[TextIO]:
    """Open ``path`` (gzip-aware) for reading, or use stdin for None / '-'."""
    if path is None or path == "-":
        yield sys.stdin
        return
    with open_textmaybe_gzip(path) as fh:
        yield fh


@contextmanager
def open_output(path: Optional[str]) -> Iterator[TextIO]:
    """Open ``path`` for writing, or use stdout for None / '-'."""
    if path is None or path == "-":
        yield sys.stdout
        sys.stdout.flush()
        return
    with open(path, "wt", encoding="utf-8") as fh:
        yield fh


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def dataclass_to_jsonable(dc: Any) -> Mapping[str, Any]:
    if is_dataclass(dc):
        return asdict(dc)
    return dict(dc)


def command_line(argv: Optional[Sequence[str]] = None, prog: str = "varsieve") -> str:
    """The invocation as a shell-quoted string, for provenance headers."""
    args = list(sys.argv[1:] if argv is None else argv)
    text = " ".join([prog] + [shlex.quote(a) for a in args])
    # must fit inside a double-quoted VCF header value
    return text.replace('"', "'")
