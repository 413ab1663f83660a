"""Cache-backed annotation of a VCF stream with VEP (or any VCF-to-VCF annotator).

Records whose signature is in the :class:`~varsieve.cache.AnnotationCache`
get the cached CSQ payload directly; only the others are sent to the
annotation tool, one chromosome at a time. The two streams are then merged
back in (pos, alt, end) order and the new payloads are added to the cache.
"""

from __future__ import annotations

import gzip
import itertools
import logging
import re
import shutil
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, TextIO

from tqdm import tqdm

from .cache import AnnotationCache
from .errors import ConfigurationError, IncompleteAnnotationError, MalformedRecordError
from .external import cmd_to_str, run_filter
from .merge import merge_sorted
from .vcf import (
    VcfHeader,
    annotated_key,
    info_csq,
    iter_data_lines,
    parse_record,
    read_header,
    variant_signature,
    write_lines,
)
from .validation import check_scratch_dir_absent

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r'time="[^"]+" ')
_CACHE_DIR_RE = re.compile(r'(cache=")[^"]+(/\.vep/)')
_ENSEMBL_RE = re.compile(r"\sensembl\S+")

DBNSFP_FIELDS = "MutationTaster_pred,REVEL_rankscore,CADD_raw_rankscore,MetaRNN_rankscore,MetaRNN_pred"


def vep_command(
    vep_bin: str,
    *,
    genome: str | Path,
    data_dir: Optional[str | Path] = None,
    jobs: int = 1,
    stats_file: Optional[str | Path] = None,
) -> List[str]:
    """VEP command line reading VCF on stdin and writing annotated VCF on stdout.

    Plugins are added for each data set found under ``data_dir``
    (CADD/, dbNSFP/, SpliceAI/, AlphaMissense/).
    """
    cmd = [vep_bin, "--offline", "--format", "vcf", "--vcf", "--force_overwrite"]
    if stats_file is not None:
        cmd += ["--stats_file", str(stats_file)]
    else:
        cmd += ["--no_stats"]
    # --allele_number tells which CSQ annotates which ALT
    cmd += ["--allele_number", "--canonical", "--biotype", "--xref_refseq", "--symbol", "--mane"]
    cmd += ["--numbers", "--total_length", "--variant_class", "--mirna"]
    cmd += ["--distance", "1000", "--shift_3prime", "1"]
    cmd += ["--sift", "b", "--polyphen", "b"]
    cmd += ["--af", "--af_1kg", "--af_gnomade", "--af_gnomadg", "--check_existing"]
    cmd += ["--no_escape", "--fasta", str(genome), "--hgvs"]

    if data_dir is not None:
        d = Path(data_dir)
        cadd = d / "CADD"
        if cadd.is_dir():
            cmd += [
                "--plugin",
                f"CADD,{cadd}/whole_genome_SNVs.tsv.gz,{cadd}/gnomad.genomes.r3.0.indel.tsv.gz",
            ]
        else:
            logger.warning("CADD plugin disabled, %s does not exist", cadd)
        dbnsfp = d / "dbNSFP"
        if dbnsfp.is_dir():
            cmd += ["--plugin", f"dbNSFP,{dbnsfp}/dbNSFP4.3a.gz,transcript_match=1,{DBNSFP_FIELDS}"]
            cmd += ["--plugin", f"dbscSNV,{dbnsfp}/dbscSNV1.1_GRCh38.txt.gz,GRCh38"]
        else:
            logger.warning("dbNSFP and dbscSNV plugins disabled, %s does not exist", dbnsfp)
        spliceai = d / "SpliceAI"
        if spliceai.is_dir():
            cmd += [
                "--plugin",
                f"SpliceAI,snv={spliceai}/spliceai_scores.raw.snv.hg38.vcf.gz,"
                f"indel={spliceai}/spliceai_scores.raw.indel.hg38.vcf.gz",
            ]
        else:
            logger.warning("SpliceAI plugin disabled, %s does not exist", spliceai)
        alpha = d / "AlphaMissense" / "AlphaMissense_hg38.tsv.gz"
        if alpha.is_file():
            cmd += ["--plugin", f"AlphaMissense,file={alpha}"]
        else:
            logger.warning("AlphaMissense plugin disabled, %s does not exist", alpha)

    if jobs > 1:
        cmd += ["--fork", str(jobs)]
    cmd += ["-o", "STDOUT"]
    return cmd


def clean_vep_line(line: str) -> str:
    """Strip the run-specific parts of a ##VEP header line.

    The timestamp, the per-user path in front of ``/.vep/`` and the ensembl*
    tokens (whose order changes between runs) are removed.
    """
    line = _TIME_RE.sub("", line)
    line = _CACHE_DIR_RE.sub(r"\1\2", line)
    return _ENSEMBL_RE.sub("", line)


def annotation_schema(header: VcfHeader) -> str:
    """Schema string identifying the annotator configuration, from its output header."""
    vep: Optional[str] = None
    csq: Optional[str] = None
    for line in header.meta:
        line = line.rstrip("\r\n")
        if line.startswith("##VEP=") and vep is None:
            vep = clean_vep_line(line)
        elif line.startswith("##INFO=<ID=CSQ"):
            csq = line
    if csq is None:
        raise ConfigurationError("the annotation tool output has no ##INFO=<ID=CSQ header line")
    return csq if vep is None else vep + "\n" + csq


def add_csq(info: str, payload: str) -> str:
    if info in ("", "."):
        return f"CSQ={payload}"
    return f"{info};CSQ={payload}"


class _ChromStats:
    def __init__(self) -> None:
        self.records = 0
        self.hits = 0
        self.annotated = 0


def _annotated_records(
    path: Path,
    cache: AnnotationCache,
    pending: Set[str],
    *,
    debug_cache: bool,
    stats: _ChromStats,
) -> Iterator[str]:
    with open(path, "rt", encoding="utf-8") as fh:
        for line in fh:
            if line.startswith("#"):
                continue
            line = line.rstrip("\r\n")
            if not line:
                continue
            rec = parse_record(line)
            csq = info_csq(rec.info)
            if csq is None:
                raise MalformedRecordError(f"cannot grab CSQ in annotated line:\n{line}")
            sig = variant_signature(rec)
            if debug_cache:
                cached = cache.lookup(sig)
                if cached is not None and cached != csq:
                    logger.warning("cache disagrees with annotator for %s:\ncache: %s\nnew:   %s", sig, cached, csq)
            else:
                cache.store(sig, csq)
            pending.discard(sig)
            stats.annotated += 1
            yield line


def _annotate_chrom(
    chrom: str,
    lines: Iterable[str],
    out: TextIO,
    *,
    chrom_line: str,
    annotator: Sequence[str],
    cache: AnnotationCache,
    scratch: Path,
    debug_cache: bool,
) -> _ChromStats:
    stats = _ChromStats()
    hits_path = scratch / f"fromCache_{chrom}.vcf.gz"
    misses_path = scratch / f"toAnnotate_{chrom}.vcf"
    fresh_path = scratch / f"fromAnnotator_{chrom}.vcf"
    pending: Set[str] = set()

    with gzip.open(hits_path, "wt", encoding="utf-8") as hits, open(misses_path, "wt", encoding="utf-8") as misses:
        misses.write(chrom_line)
        for line in lines:
            rec = parse_record(line)
            stats.records += 1
            sig = variant_signature(rec)
            payload = None if debug_cache else cache.lookup(sig)
            if payload is not None:
                hits.write(rec.with_info(add_csq(rec.info, payload)).to_line() + "\n")
                stats.hits += 1
            else:
                misses.write(line + "\n")
                pending.add(sig)

    fresh: Iterable[str] = ()
    if pending:
        logger.info("%s: %d cache hits, annotating %d records", chrom, stats.hits, len(pending))
        run_filter(annotator, stdin_path=misses_path, stdout_path=fresh_path)
        fresh = _annotated_records(fresh_path, cache, pending, debug_cache=debug_cache, stats=stats)
    else:
        logger.info("%s: all %d records found in cache", chrom, stats.hits)

    with gzip.open(hits_path, "rt", encoding="utf-8") as hits:
        write_lines(out, merge_sorted(fresh, iter_data_lines(hits), key=annotated_key))

    if pending:
        missing = sorted(pending)
        raise IncompleteAnnotationError(
            f"{len(missing)} records of {chrom} were sent to the annotator but never came back, "
            f"e.g. {', '.join(missing[:5])}"
        )
    for p in (hits_path, misses_path, fresh_path):
        if p.exists():
            p.unlink()
    return stats


def annotate_vcf(
    infh: Iterable[str],
    out: TextIO,
    *,
    annotator: Sequence[str],
    cache: AnnotationCache,
    tmpdir: str | Path,
    debug_cache: bool = False,
    progress: bool = False,
) -> Dict[str, int]:
    """Annotate a chromosome-grouped VCF from ``infh`` into ``out``.

    Parameters
    ----------
    annotator:
        argv of a command reading VCF on stdin and writing VCF with INFO/CSQ
        on stdout (see :func:`vep_command`).
    cache:
        Loaded cache; updated and persisted once at the end.
    tmpdir:
        Scratch directory; must not exist. Removed on success.
    debug_cache:
        Annotate everything, only report disagreements with the cache and
        leave the cache file untouched. A schema mismatch is only a warning.

    Raises
    ------
    CacheSchemaError
        The annotator's schema differs from the one the cache was built with.
    IncompleteAnnotationError
        Some records sent to the annotator were missing from its output.
    """
    scratch = Path(tmpdir)
    check_scratch_dir_absent(scratch)
    infh = iter(infh)
    header = read_header(infh)
    scratch.mkdir(parents=True)
    logger.info("Annotating with: %s", cmd_to_str(annotator))

    header_in = scratch / "header.vcf"
    header_out = scratch / "header.annotated.vcf"
    header_in.write_text(header.text(), encoding="utf-8")
    run_filter(annotator, stdin_path=header_in, stdout_path=header_out)
    with open(header_out, "rt", encoding="utf-8") as fh:
        out_header = read_header(fh, source="annotator output")
    schema = annotation_schema(out_header)
    if debug_cache:
        if cache.schema is not None and cache.schema != schema:
            logger.warning("annotation schema differs from the one cache %s was built with", cache.path)
    else:
        cache.verify_schema(schema)
    header_in.unlink()
    header_out.unlink()

    out.write(out_header.text())

    totals = {"records": 0, "cache_hits": 0, "annotated": 0, "chromosomes": 0}
    seen: Set[str] = set()
    groups = itertools.groupby(iter_data_lines(infh), key=lambda line: line.split("\t", 1)[0])
    for chrom, lines in tqdm(groups, desc="chromosomes", unit="chrom", disable=not progress):
        if chrom in seen:
            raise MalformedRecordError(f"input is not grouped by chromosome, {chrom} seen twice")
        seen.add(chrom)
        stats = _annotate_chrom(
            chrom,
            lines,
            out,
            chrom_line=header.chrom_line,
            annotator=annotator,
            cache=cache,
            scratch=scratch,
            debug_cache=debug_cache,
        )
        totals["records"] += stats.records
        totals["cache_hits"] += stats.hits
        totals["annotated"] += stats.annotated
        totals["chromosomes"] += 1

    if debug_cache:
        logger.info("Debug mode, cache file %s left untouched", cache.path)
    else:
        cache.persist()
    totals["cache_added"] = cache.added
    shutil.rmtree(scratch)
    logger.info(
        "Annotated %d records on %d chromosomes: %d from cache, %d from the annotator",
        totals["records"],
        totals["chromosomes"],
        totals["cache_hits"],
        totals["annotated"],
    )
    return totals
