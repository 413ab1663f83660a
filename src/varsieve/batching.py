"""Batch splitting and per-batch genotype filtering.

A batch is a contiguous run of raw GVCF data lines. Batches may only be cut
in front of a line whose REF and ALT are single characters, so that an indel
and the non-variant block ending at it always land in the same batch (the
block's END is fixed up when the indel is seen, see :func:`process_batch`).
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, TextIO

import numpy as np

from .errors import ConfigurationError, MalformedRecordError
from .genotype import (
    NOCALLED,
    TO_HET,
    TO_HV,
    check_required_fields,
    filter_sample,
    format_index,
    rewrite_format,
    star_allele_number,
)
from .models import AF_BINS, Batch, BatchSummary, FilterParams
from .sequencer import batch_path, done_path
from .vcf import FIXED_COLUMNS, VcfHeader, info_end

logger = logging.getLogger(__name__)

_CUT_RE = re.compile(r"^[^\t]+\t[^\t]+\t[^\t]+\t[^\t]\t[^\t]\t")
_SKIP_ALTS = (".", "<NON_REF>")
_PROVENANCE_KEY = "varsieve_filter"


def is_cut_point(line: str) -> bool:
    """True if a new batch may start at ``line`` (single-character REF and ALT)."""
    return _CUT_RE.match(line) is not None


def _reaches(prev: str, line: str) -> bool:
    """True if ``prev`` is at the position of ``line`` or is a block extending to it."""
    p = prev.split("\t", 8)
    f = line.split("\t", 2)
    if len(p) < 8 or len(f) < 3 or p[0] != f[0]:
        return False
    if p[1] == f[1]:
        return True
    end = info_end(p[7])
    return end is not None and f[1].isdigit() and end >= int(f[1])


def split_batches(lines: Iterable[str], batch_size: int) -> Iterator[Batch]:
    """Group data lines into numbered batches of about ``batch_size`` lines.

    A full batch is closed in front of the next line that starts a new batch
    safely: single-character REF and ALT, and not at a position still covered
    by the previous line.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    number = 0
    current: List[str] = []
    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            continue
        if len(current) >= batch_size and is_cut_point(line) and not _reaches(current[-1], line):
            number += 1
            yield Batch(number=number, lines=tuple(current))
            current = []
        current.append(line)
    if current:
        yield Batch(number=number + 1, lines=tuple(current))


def excluded_columns(header: VcfHeader, keep_samples: Optional[Sequence[str]]) -> List[int]:
    """Indices (in the full column list) of sample columns to drop."""
    if keep_samples is None:
        return []
    keep = set(keep_samples)
    missing = sorted(keep - set(header.samples))
    if missing:
        logger.warning("%d requested samples are absent from the input: %s", len(missing), ", ".join(missing))
    skipped = [i for i, s in enumerate(header.columns) if i >= FIXED_COLUMNS and s not in keep]
    if len(skipped) == len(header.samples):
        raise ConfigurationError("none of the requested samples are present in the input")
    if skipped:
        logger.info("Dropping %d sample columns", len(skipped))
    return skipped


def filter_header(header: VcfHeader, skipped_cols: Sequence[int], command_line: str) -> str:
    """Header text for the filtered output, with a provenance line before #CHROM."""
    skip = set(skipped_cols)
    cols = [c for i, c in enumerate(header.columns) if i not in skip]
    prov = f'##{_PROVENANCE_KEY}=<commandLine="{command_line}">\n'
    return "".join(header.meta) + prov + "\t".join(cols) + "\n"


def _is_hr_block_at(prev: List[str], chrom: str, pos: int) -> bool:
    return prev[0] == chrom and int(prev[1]) == pos and len(prev[3]) == 1 and prev[4] == "."


def _shorten_block(prev: List[str], last_flushed: Optional[List[str]], chrom: str, pos: int) -> None:
    """Decrement END of the buffered block if it reaches the new line's position."""
    if prev[0] != chrom:
        return
    end = info_end(prev[7])
    if end is None or end != pos:
        return
    if last_flushed is not None and last_flushed[0] == chrom:
        other_end = info_end(last_flushed[7])
        if other_end is not None and other_end >= pos:
            raise MalformedRecordError(
                f"two pending non-variant blocks reach {chrom}:{pos}, cannot fix both:\n"
                + "\t".join(last_flushed)
                + "\n"
                + "\t".join(prev)
            )
    # INFO of a kept block always starts with END=
    prev[7] = f"END={pos - 1}" + prev[7][len(f"END={end}") :]


def process_batch(
    lines: Iterable[str],
    params: FilterParams,
    skipped_cols: Sequence[int],
    keep_hr: bool,
    out: TextIO,
) -> BatchSummary:
    """Filter one batch of raw data lines into ``out``.

    The previously kept line is held back until the next raw line is seen: a
    single-base HR block at the same position as the next line is discarded,
    and a block whose END equals the next line's POS gets END-1.
    """
    skip = set(skipped_cols)
    prev: Optional[List[str]] = None
    last_flushed: Optional[List[str]] = None
    lines_in = lines_out = 0
    calls_seen = calls_nocalled = to_hv = to_het = 0
    afs: List[float] = []

    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            continue
        lines_in += 1
        f = line.split("\t")
        if len(f) < FIXED_COLUMNS + 1:
            raise MalformedRecordError(f"line has fewer than 10 columns:\n{line}")
        chrom = f[0]
        try:
            pos = int(f[1])
        except ValueError:
            raise MalformedRecordError(f"non-numeric POS in line:\n{line}") from None

        if prev is not None:
            if _is_hr_block_at(prev, chrom, pos):
                logger.debug("Discarding HR line at %s:%d, a variant follows", chrom, pos)
            else:
                _shorten_block(prev, last_flushed, chrom, pos)
                out.write("\t".join(prev) + "\n")
                lines_out += 1
                last_flushed = prev
            prev = None

        if not keep_hr and f[4] in _SKIP_ALTS:
            continue
        format_keys = f[8].split(":")
        fmt = format_index(format_keys)
        if "DP" not in fmt and "DPI" not in fmt:
            # no supporting reads
            continue
        check_required_fields(fmt, line)

        f[5] = "."
        if not f[7].startswith("END="):
            f[7] = "."
        f[8] = rewrite_format(format_keys)
        star_num = star_allele_number(f[4])

        kept = f[:FIXED_COLUMNS]
        keep_line = False
        line_afs: List[float] = []
        for i in range(FIXED_COLUMNS, len(f)):
            if i in skip:
                continue
            res = filter_sample(f[i], fmt, star_num, params, line)
            calls_seen += 1
            if res.outcome == NOCALLED:
                calls_nocalled += 1
            elif res.outcome == TO_HV:
                to_hv += 1
                logger.debug("%s:%d column %d fixed to HV (%s)", chrom, pos, i, res.data)
            elif res.outcome == TO_HET:
                to_het += 1
                logger.debug("%s:%d column %d fixed to HET (%s)", chrom, pos, i, res.data)
            kept.append(res.data)
            if res.call is not None:
                if keep_hr or not res.call.is_hom_ref:
                    keep_line = True
                if res.call.af is not None:
                    line_afs.append(float(res.call.af))
        if keep_line:
            prev = kept
            afs.extend(line_afs)

    if prev is not None:
        out.write("\t".join(prev) + "\n")
        lines_out += 1

    hist, _ = np.histogram(np.clip(np.asarray(afs, dtype=float), 0.0, 1.0), bins=AF_BINS, range=(0.0, 1.0))
    return BatchSummary(
        lines_in=lines_in,
        lines_out=lines_out,
        calls_seen=calls_seen,
        calls_nocalled=calls_nocalled,
        fixed_to_hv=to_hv,
        fixed_to_het=to_het,
        af_counts=tuple(int(c) for c in hist),
    )


def run_batch(
    batch: Batch,
    scratch: str,
    params: FilterParams,
    skipped_cols: Sequence[int],
    keep_hr: bool,
) -> BatchSummary:
    """Worker entry point: filter ``batch`` into the scratch dir, then mark it done."""
    out_path = batch_path(scratch, batch.number)
    with open(out_path, "wt", encoding="utf-8") as out:
        summary = process_batch(batch.lines, params, skipped_cols, keep_hr, out)
    Path(done_path(scratch, batch.number)).write_text(f"{batch.number}\n", encoding="utf-8")
    return replace(summary, batch=batch.number)
