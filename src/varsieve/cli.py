from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from . import __version__
from .annotate import annotate_vcf, vep_command
from .cache import AnnotationCache
from .config import BATCH_SIZE, JOBS, LOG_FORMAT, POLL_INTERVAL, VEP_BIN, VEP_JOBS, load_filter_params, load_samples
from .doctor import collect_checks
from .errors import ConfigurationError
from .external import ExternalCommandError, cmd_to_str, split_command
from .filtering import filter_vcf
from .merge import collate_files
from .pipeline import run_pipeline
from .toy_data import make_toy_data
from .utils import command_line, open_input, open_output, write_json
from .validation import check_cache_writable, check_genome

_THRESHOLDS = [
    ("--min-dp", "min_dp", int, "Calls with depth below this become ./. (default 10)."),
    ("--min-gq", "min_gq", float, "Calls with max(GQ, GQX) below this become ./. (default 20)."),
    ("--min-af", "min_af", float, "Calls with AF below this become ./. (default 0.15)."),
    ("--min-dp-hv", "min_dp_hv", int, "Minimum depth to fix a 0/x call to x/x (default 20)."),
    ("--min-af-hv", "min_af_hv", float, "Minimum AF to fix a 0/x call to x/x (default 0.85)."),
    ("--min-dp-het", "min_dp_het", int, "Minimum depth to fix an x/x call to 0/x (default 20)."),
    ("--min-af-het", "min_af_het", float, "Minimum AF to fix an x/x call to 0/x (default 0.25)."),
    ("--max-af-het", "max_af_het", float, "Maximum AF to fix an x/x call to 0/x (default 0.75)."),
]


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _positive_int(v: str) -> int:
    try:
        n = int(v)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {v}") from None
    if n < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {n}")
    return n


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, ExternalCommandError):
        msg = str(err)
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_verbose(p: argparse.ArgumentParser) -> None:
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")


def _add_filter_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--jobs", type=_positive_int, default=JOBS, help=f"Worker processes (default {JOBS}).")
    p.add_argument(
        "--batch-size",
        type=_positive_int,
        default=BATCH_SIZE,
        help=f"Approximate number of lines per batch (default {BATCH_SIZE}).",
    )
    p.add_argument(
        "--keep-hr",
        action="store_true",
        help="Keep homozygous-reference calls and non-variant blocks.",
    )
    p.add_argument("--params", type=_path_exists, default=None, help="JSON file with threshold overrides.")
    for flag, dest, typ, text in _THRESHOLDS:
        p.add_argument(flag, dest=dest, type=typ, default=None, help=text)
    p.add_argument("--samples-file", type=_path_exists, default=None, help="Sample IDs to keep, one per line.")
    p.add_argument("--samples", default=None, help="Comma-separated sample IDs to keep.")
    p.add_argument(
        "--poll-interval",
        type=float,
        default=POLL_INTERVAL,
        help=f"Seconds between checks for finished batches (default {POLL_INTERVAL}).",
    )


def _add_annotator_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--cache-file", required=True, help="Annotation cache file (created if missing).")
    p.add_argument(
        "--annotator",
        default=None,
        help="Command reading VCF on stdin and writing annotated VCF on stdout (overrides the VEP options).",
    )
    p.add_argument("--vep", default=VEP_BIN, help=f"VEP executable (default {VEP_BIN}).")
    p.add_argument("--genome", default=None, help="Reference genome FASTA for VEP.")
    p.add_argument("--data-dir", default=None, help="Directory with VEP plugin data (CADD/, dbNSFP/, ...).")
    p.add_argument("--vep-jobs", type=_positive_int, default=VEP_JOBS, help=f"VEP --fork (default {VEP_JOBS}).")
    p.add_argument(
        "--debug-cache",
        action="store_true",
        help="Annotate everything, report disagreements with the cache and leave it untouched.",
    )


def _annotator_argv(args: argparse.Namespace, stats_dir: Path) -> List[str]:
    if args.annotator:
        return split_command(args.annotator)
    if not args.genome:
        raise ConfigurationError("provide --annotator, or --genome to run VEP")
    check_genome(args.genome)
    return vep_command(
        args.vep,
        genome=args.genome,
        data_dir=args.data_dir,
        jobs=int(args.vep_jobs),
        stats_file=stats_dir / "vepStats.html",
    )


def _filter_params(args: argparse.Namespace):
    overrides = {dest: getattr(args, dest) for _, dest, _, _ in _THRESHOLDS}
    return load_filter_params(args.params, overrides)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="varsieve",
        description=(
            "varsieve: batch-parallel genotype filtering of large multi-sample GVCFs, "
            "sorted collation of a secondary VCF, and cached VEP annotation."
        ),
    )
    p.add_argument("--version", action="version", version=f"varsieve {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny GVCF, secondary VCF and sample list for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # filter
    # -----------------
    f = sub.add_parser(
        "filter",
        help="Null out unreliable genotype calls and fix blatant HET/HV errors.",
    )
    f.add_argument("--input", default=None, help="Input GVCF (.vcf/.vcf.gz, default stdin).")
    f.add_argument("--output", default=None, help="Output VCF (default stdout).")
    f.add_argument("--tmpdir", required=True, help="Scratch directory; must not exist, removed on success.")
    f.add_argument("--summary-json", default=None, help="Write the filtering counters to this JSON file.")
    _add_filter_args(f)
    _add_verbose(f)

    # -----------------
    # collate
    # -----------------
    c = sub.add_parser(
        "collate",
        help="Merge a secondary VCF into the main VCF, in (chrom, pos) order.",
    )
    c.add_argument("--input", default=None, help="Main VCF (default stdin).")
    c.add_argument("--secondary", required=True, type=_path_exists, help="Secondary VCF (.vcf/.vcf.gz).")
    c.add_argument("--output", default=None, help="Output VCF (default stdout).")
    _add_verbose(c)

    # -----------------
    # annotate
    # -----------------
    a = sub.add_parser(
        "annotate",
        help="Add VEP CSQ annotations, reusing cached ones.",
    )
    a.add_argument("--input", default=None, help="Input VCF (default stdin).")
    a.add_argument("--output", default=None, help="Output VCF (default stdout).")
    a.add_argument("--tmpdir", required=True, help="Scratch directory; must not exist, removed on success.")
    _add_annotator_args(a)
    _add_verbose(a)

    # -----------------
    # run
    # -----------------
    r = sub.add_parser(
        "run",
        help="Filter, collate (optional) and annotate, with summary and HTML report.",
    )
    r.add_argument("--input", required=True, type=_path_exists, help="Input GVCF (.vcf/.vcf.gz).")
    r.add_argument("--outdir", required=True, help="Output directory (must not exist).")
    r.add_argument("--secondary", default=None, type=_path_exists, help="Optional secondary VCF to collate.")
    _add_filter_args(r)
    _add_annotator_args(r)
    r.add_argument("--dry-run", action="store_true", help="Validate inputs and print the planned annotator command.")
    _add_verbose(r)

    # -----------------
    # doctor
    # -----------------
    d = sub.add_parser(
        "doctor",
        help="Check your environment for the external tools (vep/bgzip/tabix).",
    )
    d.add_argument("--vep", default=VEP_BIN, help=f"VEP executable to check (default {VEP_BIN}).")
    d.add_argument("--dry-run", action="store_true", help="Print checks without exiting nonzero.")
    _add_verbose(d)

    return p


def cmd_quickstart() -> int:
    lines = [
        "varsieve quickstart (copy/paste):",
        "",
        "1) Filter a GVCF (16 workers, keep two samples):",
        "   varsieve filter \\",
        "     --input cohort.g.vcf.gz \\",
        "     --output filtered.vcf \\",
        "     --tmpdir /scratch/varsieve_tmp \\",
        "     --samples S1,S2",
        "",
        "2) Collate CNV calls into the filtered VCF:",
        "   varsieve collate --input filtered.vcf --secondary cnvs.vcf.gz > collated.vcf",
        "",
        "3) Annotate with VEP, reusing a persistent cache:",
        "   varsieve annotate \\",
        "     --input collated.vcf --output annotated.vcf \\",
        "     --tmpdir /scratch/vep_tmp \\",
        "     --cache-file vep_cache.json.gz \\",
        "     --genome GRCh38.fa --data-dir vep_plugins/",
        "",
        "4) Everything at once, with a report:",
        "   varsieve run \\",
        "     --input cohort.g.vcf.gz --secondary cnvs.vcf.gz \\",
        "     --outdir results/ --cache-file vep_cache.json.gz --genome GRCh38.fa",
        "   Outputs: results/annotated.vcf.gz, results/report.html, results/summary.json",
        "",
        "Tip: try it on toy data with --annotator 'python -m varsieve.toy_annotator'.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def cmd_filter(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose)
    logger = logging.getLogger("varsieve")
    logger.info("varsieve %s", __version__)

    try:
        params = _filter_params(args)
        keep_samples = load_samples(args.samples_file, args.samples)
        with open_input(args.input) as fin, open_output(args.output) as fout:
            summary = filter_vcf(
                fin,
                fout,
                tmpdir=args.tmpdir,
                params=params,
                jobs=int(args.jobs),
                batch_size=int(args.batch_size),
                keep_hr=bool(args.keep_hr),
                keep_samples=keep_samples,
                command_line=args.command_line,
                poll_interval=float(args.poll_interval),
                progress=sys.stderr.isatty(),
            )
        if args.summary_json:
            data = asdict(summary)
            data["af_counts"] = list(summary.af_counts)
            write_json(args.summary_json, data)
        return 0
    except Exception as e:
        return _handle_error(e)


def cmd_collate(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose)
    try:
        with open_input(args.input) as fin, open_output(args.output) as fout:
            collate_files(fin, args.secondary, fout)
        return 0
    except Exception as e:
        return _handle_error(e)


def cmd_annotate(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose)
    try:
        check_cache_writable(args.cache_file)
        annotator = _annotator_argv(args, Path(args.tmpdir))
        cache = AnnotationCache.load(args.cache_file)
        with open_input(args.input) as fin, open_output(args.output) as fout:
            annotate_vcf(
                fin,
                fout,
                annotator=annotator,
                cache=cache,
                tmpdir=args.tmpdir,
                debug_cache=bool(args.debug_cache),
                progress=sys.stderr.isatty(),
            )
        return 0
    except Exception as e:
        return _handle_error(e)


def cmd_run(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    _setup_logging(args.verbose)
    logger = logging.getLogger("varsieve")
    logger.info("varsieve %s", __version__)

    try:
        params = _filter_params(args)
        keep_samples = load_samples(args.samples_file, args.samples)
        annotator = _annotator_argv(args, outdir / "tmp_annotate")

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print("Filter params: " + json.dumps(asdict(params), sort_keys=True))
            print("Annotator command:")
            print("  " + cmd_to_str(annotator))
            print("Planned outputs:")
            print(f"  annotated.vcf.gz -> {outdir / 'annotated.vcf.gz'}")
            print(f"  report.html -> {outdir / 'report.html'}")
            print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        report_path = run_pipeline(
            input_path=args.input,
            outdir=outdir,
            annotator=annotator,
            cache_file=args.cache_file,
            secondary=args.secondary,
            params=params,
            jobs=int(args.jobs),
            batch_size=int(args.batch_size),
            keep_hr=bool(args.keep_hr),
            keep_samples=keep_samples,
            debug_cache=bool(args.debug_cache),
            command_line=args.command_line,
            poll_interval=float(args.poll_interval),
            progress=sys.stderr.isatty(),
        )
        print(str(report_path))
        return 0
    except Exception as e:
        log_path = outdir / "logs" if (outdir / "logs").exists() else None
        return _handle_error(e, log_path=log_path)


def cmd_doctor(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    checks = collect_checks(args.vep)

    # Human-readable output
    lines = []
    ok_all = True
    for name, r in checks.items():
        status = "OK" if r.ok else "MISSING"
        lines.append(f"{name:7s} : {status:7s}  {r.detail}")
        if not r.ok:
            ok_all = False

    print("\n".join(lines))

    # Guidance
    for name, r in checks.items():
        if not r.ok and r.howto:
            print("\n---")
            print(f"How to install/fix '{name}':")
            print(r.howto)

    if args.dry_run:
        return 0
    return 0 if ok_all else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.command_line = command_line(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "filter":
        return cmd_filter(args)
    if args.cmd == "collate":
        return cmd_collate(args)
    if args.cmd == "annotate":
        return cmd_annotate(args)
    if args.cmd == "run":
        return cmd_run(args)
    if args.cmd == "doctor":
        return cmd_doctor(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2
