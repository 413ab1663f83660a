from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from .errors import MalformedRecordError

# number of equal-width allele-fraction bins on [0, 1] reported per batch
AF_BINS = 20


@dataclass(frozen=True)
class VariantRecord:
    """One data line of a VCF/GVCF file.

    Attributes
    ----------
    chrom:
        Contig name as present in the file (e.g. ``chr3``).
    pos:
        1-based position.
    ref, alt:
        Reference allele and comma-separated alternate alleles (``.`` for
        non-variant records).
    info:
        Raw INFO column; see :meth:`info_fields` for a parsed view.
    format_keys:
        FORMAT keys in declaration order (GT first for genotyped records).
    samples:
        One tuple of values per sample column, aligned with the header sample
        order. NOCALL samples may be abbreviated to ``(".",)`` or ``("./.",)``.
    """

    chrom: str
    pos: int
    id: str
    ref: str
    alt: str
    qual: str
    filter: str
    info: str
    format_keys: Tuple[str, ...]
    samples: Tuple[Tuple[str, ...], ...]

    @property
    def info_fields(self) -> Dict[str, Optional[str]]:
        """INFO as a mapping; flags map to None."""
        out: Dict[str, Optional[str]] = {}
        if self.info in ("", "."):
            return out
        for item in self.info.split(";"):
            key, sep, value = item.partition("=")
            out[key] = value if sep else None
        return out

    @property
    def end(self) -> Optional[int]:
        value = self.info_fields.get("END")
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            raise MalformedRecordError(f"non-numeric END={value} at {self.chrom}:{self.pos}") from None

    def with_info(self, info: str) -> "VariantRecord":
        return replace(self, info=info)

    def with_samples(self, samples: Tuple[Tuple[str, ...], ...]) -> "VariantRecord":
        return replace(self, samples=samples)

    def to_line(self) -> str:
        cols = [
            self.chrom,
            str(self.pos),
            self.id,
            self.ref,
            self.alt,
            self.qual,
            self.filter,
            self.info,
        ]
        if self.format_keys:
            cols.append(":".join(self.format_keys))
            cols.extend(":".join(s) for s in self.samples)
        return "\t".join(cols)


@dataclass(frozen=True)
class GenotypeCall:
    """A canonical diploid call for one sample (allele1 <= allele2)."""

    allele1: int
    allele2: int
    depth: int
    quality: float
    af: Optional[str]  # rounded to 2 decimals, None when not applicable (HR, x/y)

    @property
    def gt(self) -> str:
        return f"{self.allele1}/{self.allele2}"

    @property
    def is_hom_ref(self) -> bool:
        return self.allele1 == 0 and self.allele2 == 0


@dataclass(frozen=True)
class FilterParams:
    """Thresholds for nulling out and correcting genotype calls.

    Depth is max(DP, DPI, sum(AD)) and quality is max(GQ, GQX).

    - depth < min_dp or quality < min_gq: call becomes NOCALL
    - AF < min_af: call becomes NOCALL
    - depth >= min_dp_hv and 0/x with AF >= min_af_hv: call becomes x/x
    - depth >= min_dp_het and x/x with min_af_het <= AF <= max_af_het: call becomes 0/x

    min_af_het <= max_af_het < min_af_hv, so a corrected call is stable.
    """

    min_dp: int = 10
    min_gq: float = 20
    min_af: float = 0.15
    min_dp_hv: int = 20
    min_af_hv: float = 0.85
    min_dp_het: int = 20
    min_af_het: float = 0.25
    max_af_het: float = 0.75

    def __post_init__(self) -> None:
        if self.min_dp < 1:
            raise ValueError("min_dp must be >= 1")
        for name in ("min_af", "min_af_hv", "min_af_het", "max_af_het"):
            v = getattr(self, name)
            if not 0.0 <= v <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {v}")
        if self.min_af_het > self.max_af_het:
            raise ValueError("min_af_het must be <= max_af_het")
        if self.min_af_hv <= self.max_af_het:
            # HV and HET bands must not overlap
            raise ValueError("min_af_hv must be > max_af_het")


@dataclass(frozen=True)
class Batch:
    """A contiguous slice of raw data lines, the unit of parallel work."""

    number: int
    lines: Tuple[str, ...]


@dataclass(frozen=True)
class BatchSummary:
    """Per-batch counters returned by a worker and summed by the dispatcher."""

    batch: int = 0
    lines_in: int = 0
    lines_out: int = 0
    calls_seen: int = 0
    calls_nocalled: int = 0
    fixed_to_hv: int = 0
    fixed_to_het: int = 0
    af_counts: Tuple[int, ...] = field(default_factory=lambda: (0,) * AF_BINS)

    def __add__(self, other: "BatchSummary") -> "BatchSummary":
        return BatchSummary(
            batch=max(self.batch, other.batch),
            lines_in=self.lines_in + other.lines_in,
            lines_out=self.lines_out + other.lines_out,
            calls_seen=self.calls_seen + other.calls_seen,
            calls_nocalled=self.calls_nocalled + other.calls_nocalled,
            fixed_to_hv=self.fixed_to_hv + other.fixed_to_hv,
            fixed_to_het=self.fixed_to_het + other.fixed_to_het,
            af_counts=tuple(a + b for a, b in zip(self.af_counts, other.af_counts)),
        )
