"""Per-sample genotype filtering and correction.

Callers make systematic mistakes (HET calls with 95% variant reads, HV calls
with 50%) and low-depth/low-quality calls are unreliable. Given one sample
column and :class:`~varsieve.models.FilterParams`, :func:`filter_sample`
returns one of four outcomes together with the sample column to print, where
the allele fraction (AF) has been inserted right after GT.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import MalformedRecordError
from .models import FilterParams, GenotypeCall
from .vcf import NOCALL

UNCHANGED = "unchanged"
NOCALLED = "nocall"
TO_HV = "to_hv"
TO_HET = "to_het"

_AD_RE = re.compile(r"^[\d,]+$")

FormatIndex = Dict[str, int]


@dataclass(frozen=True)
class SampleResult:
    outcome: str  # UNCHANGED, NOCALLED, TO_HV or TO_HET
    data: str  # sample column to print
    call: Optional[GenotypeCall] = None


_NOCALL_RESULT = SampleResult(outcome=NOCALLED, data=NOCALL)


def format_index(format_keys: Sequence[str]) -> FormatIndex:
    return {k: i for i, k in enumerate(format_keys)}


def check_required_fields(fmt: FormatIndex, line: str) -> None:
    """GT first, GQ or GQX, AD or DP; anything else is a fatal FORMAT error."""
    if fmt.get("GT") != 0:
        raise MalformedRecordError(f"FORMAT does not start with GT in line:\n{line}")
    if "GQ" not in fmt and "GQX" not in fmt:
        raise MalformedRecordError(f"no GQ or GQX key in FORMAT for line:\n{line}")
    if "AD" not in fmt and "DP" not in fmt:
        raise MalformedRecordError(f"no AD or DP key in FORMAT for line:\n{line}")


def star_allele_number(alt: str) -> int:
    """Allele number of the '*' spanning-deletion ALT, or -1 if absent."""
    for i, a in enumerate(alt.split(",")):
        if a == "*":
            return i + 1
    return -1


def is_nocall(raw: str) -> bool:
    return raw == "." or raw.startswith(".:") or raw.startswith("./.") or raw.startswith(".|.")


def _field(values: Sequence[str], fmt: FormatIndex, key: str) -> Optional[str]:
    i = fmt.get(key)
    if i is None or i >= len(values):
        return None
    v = values[i]
    if v in ("", "."):
        return None
    return v


def _number(values: Sequence[str], fmt: FormatIndex, key: str, line: str) -> Optional[float]:
    v = _field(values, fmt, key)
    if v is None:
        return None
    try:
        return float(v)
    except ValueError:
        raise MalformedRecordError(f"non-numeric {key} value '{v}' in line:\n{line}") from None


def canonical_alleles(gt: str, star_num: int, line: str = "") -> Optional[Tuple[int, int]]:
    """Unphase, expand hemizygous and sort a GT string.

    Returns None when the call must become NOCALL (partial call or ``*/*``).
    """
    parts = gt.replace("|", "/").split("/")
    if len(parts) == 1:
        # hemizygous 'x' (strelka)
        parts = [parts[0], parts[0]]
    if len(parts) != 2:
        raise MalformedRecordError(f"a sample's genotype cannot be split: {gt} in:\n{line}")
    if "." in parts:
        return None
    try:
        a1, a2 = int(parts[0]), int(parts[1])
    except ValueError:
        raise MalformedRecordError(f"non-integer allele in genotype {gt} in:\n{line}") from None
    if star_num != -1:
        if a1 == star_num and a2 == star_num:
            return None
        # GATK hemizygous calls under a HET deletion: x/* or */x
        if a2 == star_num:
            a2 = a1
        elif a1 == star_num:
            a1 = a2
    if a2 < a1:
        a1, a2 = a2, a1
    return a1, a2


def _depth(values: Sequence[str], fmt: FormatIndex, line: str) -> Optional[int]:
    depth: Optional[float] = None
    for key in ("DP", "DPI"):
        v = _number(values, fmt, key, line)
        if v is not None and (depth is None or v > depth):
            depth = v
    ad = _field(values, fmt, "AD")
    if ad is not None and _AD_RE.match(ad):
        total = sum(int(x) for x in ad.split(",") if x)
        if depth is None or total > depth:
            depth = total
    return int(depth) if depth is not None else None


def _quality(values: Sequence[str], fmt: FormatIndex, line: str) -> Optional[float]:
    gq = _number(values, fmt, "GQ", line)
    gqx = _number(values, fmt, "GQX", line)
    if gq is None:
        return gqx
    if gqx is None:
        return gq
    return max(gq, gqx)


def _allele_fraction(
    values: Sequence[str], fmt: FormatIndex, a1: int, a2: int, depth: int, line: str
) -> Optional[str]:
    existing = _field(values, fmt, "AF")
    if existing is not None:
        return existing
    if a2 == 0 or (a1 != 0 and a1 != a2):
        # HR or x/y: not applicable
        return None
    ad = _field(values, fmt, "AD")
    if ad is None or not _AD_RE.match(ad):
        raise MalformedRecordError(f"GT is HET or HV but AD is missing or blank in:\n{line}")
    ads = ad.split(",")
    if a2 >= len(ads):
        raise MalformedRecordError(f"AD has no value for allele {a2} in:\n{line}")
    return f"{int(ads[a2]) / depth:.2f}"


def build_call(
    values: Sequence[str], fmt: FormatIndex, star_num: int, params: FilterParams, line: str = ""
) -> Optional[GenotypeCall]:
    """Build the GenotypeCall for one sample, or None if it fails a NOCALL rule."""
    alleles = canonical_alleles(values[fmt["GT"]], star_num, line)
    if alleles is None:
        return None
    a1, a2 = alleles

    quality = _quality(values, fmt, line)
    if quality is None or quality < params.min_gq:
        return None
    depth = _depth(values, fmt, line)
    if depth is None or depth < params.min_dp:
        return None

    af = _allele_fraction(values, fmt, a1, a2, depth, line)
    if af is not None and float(af) < params.min_af:
        return None
    return GenotypeCall(allele1=a1, allele2=a2, depth=depth, quality=quality, af=af)


def correct_call(call: GenotypeCall, params: FilterParams) -> Tuple[str, GenotypeCall]:
    """Fix blatantly wrong HET/HV calls; both tests look at the uncorrected call.

    The HV fix applies to 0/x calls and the HET fix only to x/x calls with
    x != 0. An x/y call keeps its genotype even when it carries an AF.
    """
    if call.af is None:
        return UNCHANGED, call
    af = float(call.af)
    if (
        call.depth >= params.min_dp_hv
        and call.allele1 == 0
        and call.allele2 != 0
        and af >= params.min_af_hv
    ):
        return TO_HV, replace(call, allele1=call.allele2)
    if (
        call.depth >= params.min_dp_het
        and call.allele1 != 0
        and call.allele1 == call.allele2
        and params.min_af_het <= af <= params.max_af_het
    ):
        return TO_HET, replace(call, allele1=0)
    return UNCHANGED, call


def filter_sample(
    raw: str, fmt: FormatIndex, star_num: int, params: FilterParams, line: str = ""
) -> SampleResult:
    if is_nocall(raw):
        return _NOCALL_RESULT
    values: List[str] = raw.split(":")
    call = build_call(values, fmt, star_num, params, line)
    if call is None:
        return _NOCALL_RESULT
    outcome, call = correct_call(call, params)

    values[fmt["GT"]] = call.gt
    af_idx = fmt.get("AF")
    if af_idx is not None and af_idx < len(values):
        del values[af_idx]
    values.insert(1, call.af if call.af is not None else ".")
    return SampleResult(outcome=outcome, data=":".join(values), call=call)


def rewrite_format(format_keys: Sequence[str]) -> str:
    """FORMAT string with AF moved (or added) right after GT."""
    keys = [k for k in format_keys if k != "AF"]
    keys.insert(1, "AF")
    return ":".join(keys)
