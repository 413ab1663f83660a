"""End-to-end run: filter -> collate (optional) -> annotate -> bgzip/tabix + report."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import pysam

from . import __version__
from .annotate import annotate_vcf
from .cache import AnnotationCache
from .config import BATCH_SIZE, JOBS, LOG_FORMAT, POLL_INTERVAL
from .errors import ConfigurationError
from .external import cmd_to_str
from .filtering import filter_vcf
from .merge import collate_files
from .models import FilterParams
from .plotting import plot_af_hist, plot_annotation_sources, plot_call_outcomes
from .report import render_report
from .utils import dataclass_to_jsonable, ensure_outdir, open_textmaybe_gzip, write_json
from .validation import check_cache_writable, check_input_file, check_vcf_index

logger = logging.getLogger(__name__)


@contextmanager
def _step_log(path: Path):
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    try:
        yield
    finally:
        root_logger.removeHandler(handler)
        handler.close()


def run_pipeline(
    *,
    input_path: str | Path,
    outdir: str | Path,
    annotator: Sequence[str],
    cache_file: str | Path,
    secondary: Optional[str | Path] = None,
    params: Optional[FilterParams] = None,
    jobs: int = JOBS,
    batch_size: int = BATCH_SIZE,
    keep_hr: bool = False,
    keep_samples: Optional[Sequence[str]] = None,
    debug_cache: bool = False,
    command_line: str = "",
    poll_interval: float = POLL_INTERVAL,
    progress: bool = False,
) -> Path:
    """Run every step into a fresh ``outdir``.

    Returns
    -------
    Path
        Path to the HTML report.
    """
    t0 = time.time()
    params = params or FilterParams()
    outdir_p = Path(outdir).expanduser().resolve()
    if outdir_p.exists():
        raise ConfigurationError(f"output directory {outdir_p} already exists")
    check_input_file(input_path)
    if secondary is not None:
        check_input_file(secondary)
        check_vcf_index(secondary)
    check_cache_writable(cache_file)
    outdir_p = ensure_outdir(outdir_p)
    logs = outdir_p / "logs"
    runtimes: Dict[str, float] = {}

    # 1) Filter
    filtered = outdir_p / "filtered.vcf"
    t = time.time()
    with _step_log(logs / "filter.log"):
        with open_textmaybe_gzip(input_path) as fin, open(filtered, "wt", encoding="utf-8") as fout:
            filter_summary = filter_vcf(
                fin,
                fout,
                tmpdir=outdir_p / "tmp_filter",
                params=params,
                jobs=jobs,
                batch_size=batch_size,
                keep_hr=keep_hr,
                keep_samples=keep_samples,
                command_line=command_line,
                poll_interval=poll_interval,
                progress=progress,
            )
    runtimes["filter"] = time.time() - t

    # 2) Collate
    to_annotate = filtered
    collate_summary: Optional[Dict[str, int]] = None
    if secondary is not None:
        collated = outdir_p / "collated.vcf"
        t = time.time()
        with _step_log(logs / "collate.log"):
            with open(filtered, "rt", encoding="utf-8") as fin, open(collated, "wt", encoding="utf-8") as fout:
                collate_summary = collate_files(fin, secondary, fout)
        runtimes["collate"] = time.time() - t
        filtered.unlink()
        to_annotate = collated

    # 3) Annotate
    annotated = outdir_p / "annotated.vcf"
    t = time.time()
    with _step_log(logs / "annotate.log"):
        cache = AnnotationCache.load(cache_file)
        with open(to_annotate, "rt", encoding="utf-8") as fin, open(annotated, "wt", encoding="utf-8") as fout:
            annotate_summary = annotate_vcf(
                fin,
                fout,
                annotator=annotator,
                cache=cache,
                tmpdir=outdir_p / "tmp_annotate",
                debug_cache=debug_cache,
                progress=progress,
            )
    runtimes["annotate"] = time.time() - t
    to_annotate.unlink()

    # 4) bgzip + tabix
    annotated_gz = outdir_p / "annotated.vcf.gz"
    pysam.tabix_compress(str(annotated), str(annotated_gz), force=True)
    pysam.tabix_index(str(annotated_gz), preset="vcf", force=True)
    annotated.unlink()

    # 5) Summary, plots, report
    filter_dict = asdict(filter_summary)
    filter_dict["af_counts"] = list(filter_summary.af_counts)
    params_dict = dict(dataclass_to_jsonable(params))
    run: Dict[str, Any] = {
        "input": str(input_path),
        "secondary": str(secondary) if secondary is not None else None,
        "annotator": cmd_to_str(annotator),
        "cache_file": str(cache_file),
        "output": str(annotated_gz),
        "keep_hr": keep_hr,
        "jobs": jobs,
        "batch_size": batch_size,
    }
    runtimes["total"] = time.time() - t0
    write_json(
        outdir_p / "summary.json",
        {
            "version": __version__,
            "run": run,
            "params": params_dict,
            "filter": filter_dict,
            "collate": collate_summary,
            "annotate": annotate_summary,
            "runtime_seconds": runtimes,
        },
    )

    plots_dir = ensure_outdir(outdir_p / "plots")
    plot_call_outcomes(filter_summary=filter_dict, out_png=plots_dir / "call_outcomes.png")
    plot_af_hist(af_counts=filter_summary.af_counts, out_png=plots_dir / "af_hist.png")
    plot_annotation_sources(annotate_summary=annotate_summary, out_png=plots_dir / "annotation_sources.png")

    report_path = render_report(
        outdir=outdir_p,
        version=__version__,
        run=run,
        params=params_dict,
        filter_summary=filter_dict,
        collate_summary=collate_summary,
        annotate_summary=annotate_summary,
        plots={
            "call_outcomes": "plots/call_outcomes.png",
            "af_hist": "plots/af_hist.png",
            "annotation_sources": "plots/annotation_sources.png",
        },
    )
    logger.info("Pipeline complete in %.1f s. Report: %s", runtimes["total"], report_path)
    return report_path
