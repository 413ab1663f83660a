"""Line-level VCF/GVCF helpers shared by every stage.

All stages stream text lines; records are only parsed as far as each stage
needs, and header lines are passed through verbatim.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, TextIO, Tuple

from .errors import MalformedRecordError
from .models import VariantRecord

FIXED_COLUMNS = 9
NOCALL = "./."
CNV_ALTS = ("<DEL>", "<DUP>")

_X, _Y, _M = 90, 91, 92
_END_RE = re.compile(r"(?:^|;)END=(\d+)(?:;|$)")
_CSQ_RE = re.compile(r"(?:^|;)CSQ=([^;]+)")


@dataclass(frozen=True)
class VcfHeader:
    meta: List[str]  # '##' lines, newline-terminated
    columns: List[str]  # fields of the '#CHROM' line

    @property
    def samples(self) -> List[str]:
        return self.columns[FIXED_COLUMNS:]

    @property
    def chrom_line(self) -> str:
        return "\t".join(self.columns) + "\n"

    def text(self) -> str:
        return "".join(self.meta) + self.chrom_line


def read_header(fh: Iterable[str], *, source: str = "input") -> VcfHeader:
    """Consume header lines from ``fh`` up to and including ``#CHROM``.

    Iteration of ``fh`` resumes at the first data line afterwards.
    """
    meta: List[str] = []
    for line in fh:
        if line.startswith("##"):
            meta.append(line if line.endswith("\n") else line + "\n")
        elif line.startswith("#CHROM"):
            return VcfHeader(meta=meta, columns=line.rstrip("\r\n").split("\t"))
        else:
            raise MalformedRecordError(
                f"parsing header of {source}: expected '##' or '#CHROM' line, found:\n{line}"
            )
    raise MalformedRecordError(f"{source} has no '#CHROM' header line")


def iter_data_lines(fh: Iterable[str]) -> Iterator[str]:
    """Yield chomped, non-empty lines (headers must already be consumed)."""
    for line in fh:
        line = line.rstrip("\r\n")
        if line:
            yield line


def parse_record(line: str) -> VariantRecord:
    f = line.rstrip("\r\n").split("\t")
    if len(f) < 8:
        raise MalformedRecordError(f"VCF line has fewer than 8 columns:\n{line}")
    try:
        pos = int(f[1])
    except ValueError:
        raise MalformedRecordError(f"non-numeric POS in line:\n{line}") from None
    format_keys: Tuple[str, ...] = tuple(f[8].split(":")) if len(f) > 8 else ()
    samples = tuple(tuple(s.split(":")) for s in f[FIXED_COLUMNS:])
    return VariantRecord(
        chrom=f[0],
        pos=pos,
        id=f[2],
        ref=f[3],
        alt=f[4],
        qual=f[5],
        filter=f[6],
        info=f[7],
        format_keys=format_keys,
        samples=samples,
    )


def chrom_key(chrom: str) -> int:
    """Sort key for contig names: 1..22 numerically, then X, Y, M/MT."""
    c = chrom[3:] if chrom.startswith("chr") else chrom
    if c == "X":
        return _X
    if c == "Y":
        return _Y
    if c in ("M", "MT"):
        return _M
    if c.isdigit():
        return int(c)
    raise MalformedRecordError(
        f"CHROM {chrom} is not numeric or X/Y/M/MT, cannot order it"
    )


def position_key(line: str) -> Tuple[int, int]:
    """(chrom_key, pos) of a data line."""
    f = line.split("\t", 2)
    if len(f) < 3 or not f[1].isdigit():
        raise MalformedRecordError(f"cannot parse CHROM and POS from line:\n{line}")
    return chrom_key(f[0]), int(f[1])


def info_end(info: str) -> Optional[int]:
    m = _END_RE.search(info)
    return int(m.group(1)) if m else None


def info_csq(info: str) -> Optional[str]:
    m = _CSQ_RE.search(info)
    return m.group(1) if m else None


def variant_signature(rec: VariantRecord) -> str:
    """Cache key: chrom:pos:ref:alt, plus :END for symbolic CNV alleles."""
    key = f"{rec.chrom}:{rec.pos}:{rec.ref}:{rec.alt}"
    if rec.alt in CNV_ALTS:
        end = rec.end
        if end is None:
            raise MalformedRecordError("cannot grab END from CNV line:\n" + rec.to_line())
        key += f":{end}"
    return key


def annotated_key(line: str) -> Tuple[int, int, str, int]:
    """Merge key for reuniting cached and freshly annotated records."""
    f = line.split("\t", 8)
    if len(f) < 8 or not f[1].isdigit():
        raise MalformedRecordError(f"cannot parse CHROM, POS and ALT from line:\n{line}")
    end = -1
    if f[4] in CNV_ALTS:
        e = info_end(f[7])
        if e is None:
            raise MalformedRecordError(f"cannot grab END from CNV line:\n{line}")
        end = e
    return chrom_key(f[0]), int(f[1]), f[4], end


def write_lines(out: TextIO, lines: Iterable[str]) -> int:
    n = 0
    for line in lines:
        out.write(line)
        out.write("\n")
        n += 1
    return n
