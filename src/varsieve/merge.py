"""Sorted two-stream merge-join.

Both streams must be sorted by the same key. Used to collate a secondary
variant source (e.g. a CNV caller's VCF) into the primary stream, and to
reunite cached and freshly annotated records.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Optional, TextIO, TypeVar

from .errors import MalformedRecordError
from .utils import open_textmaybe_gzip
from .vcf import NOCALL, VcfHeader, iter_data_lines, parse_record, position_key, read_header, write_lines

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXHAUSTED = object()


def merge_sorted(primary: Iterable[T], secondary: Iterable[T], key: Callable[[T], object]) -> Iterator[T]:
    """Merge two key-sorted iterables, primary first on equal keys.

    Every item of both inputs is yielded exactly once, and ``key`` is
    computed for every item, so a malformed one is never passed through.
    """
    p_it, s_it = iter(primary), iter(secondary)
    p = next(p_it, _EXHAUSTED)
    s = next(s_it, _EXHAUSTED)
    pk = key(p) if p is not _EXHAUSTED else None
    sk = key(s) if s is not _EXHAUSTED else None

    while p is not _EXHAUSTED and s is not _EXHAUSTED:
        if pk <= sk:  # type: ignore[operator]
            yield p  # type: ignore[misc]
            p = next(p_it, _EXHAUSTED)
            pk = key(p) if p is not _EXHAUSTED else None
        else:
            yield s  # type: ignore[misc]
            s = next(s_it, _EXHAUSTED)
            sk = key(s) if s is not _EXHAUSTED else None

    for item, rest in ((p, p_it), (s, s_it)):
        if item is _EXHAUSTED:
            continue
        yield item  # type: ignore[misc]
        for item in rest:
            # keys of the tail must still parse
            key(item)
            yield item


def sample_mapping(primary: VcfHeader, secondary: VcfHeader) -> List[Optional[int]]:
    """For each primary sample, its index among the secondary samples (or None)."""
    where = {name: i for i, name in enumerate(secondary.samples)}
    mapping = [where.get(name) for name in primary.samples]
    missing = sum(1 for m in mapping if m is None)
    extra = len(set(secondary.samples) - set(primary.samples))
    if missing:
        logger.info("%d samples absent from the secondary input, filled with %s", missing, NOCALL)
    if extra:
        logger.info("%d secondary samples not in the primary input, dropped", extra)
    return mapping


def remap_line(line: str, mapping: List[Optional[int]]) -> str:
    rec = parse_record(line)
    if not rec.format_keys:
        raise MalformedRecordError(f"secondary line has no FORMAT column:\n{line}")
    n = len(rec.samples)
    samples = tuple(rec.samples[i] if i is not None and i < n else (NOCALL,) for i in mapping)
    return rec.with_samples(samples).to_line()


def collate_vcfs(main: Iterable[str], secondary: Iterable[str], out: TextIO) -> Dict[str, int]:
    """Merge ``secondary`` records into the ``main`` stream by (chrom, pos).

    Main headers are copied, secondary headers ignored except for #CHROM,
    which is used to reorder its sample columns to the main order.
    """
    main, secondary = iter(main), iter(secondary)
    main_header = read_header(main, source="main input")
    sec_header = read_header(secondary, source="secondary input")
    mapping = sample_mapping(main_header, sec_header)

    out.write(main_header.text())
    counts = {"primary": 0, "secondary": 0}

    def count(stream: Iterable[str], name: str) -> Iterator[str]:
        for line in stream:
            counts[name] += 1
            yield line

    merged = merge_sorted(
        count(iter_data_lines(main), "primary"),
        count((remap_line(line, mapping) for line in iter_data_lines(secondary)), "secondary"),
        key=position_key,
    )
    write_lines(out, merged)
    logger.info("Collated %d primary and %d secondary records", counts["primary"], counts["secondary"])
    return counts


def collate_files(main: TextIO, secondary_path: str | Path, out: TextIO) -> Dict[str, int]:
    """Like :func:`collate_vcfs`, reading the (optionally gzipped) secondary from a path."""
    with open_textmaybe_gzip(secondary_path) as sec:
        return collate_vcfs(main, sec, out)
