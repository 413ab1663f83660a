import gzip
import json
import shlex
import subprocess
import sys
from pathlib import Path

from varsieve.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "varsieve"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def _toy_annotator() -> str:
    return f"{shlex.quote(sys.executable)} -m varsieve.toy_annotator"


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "varsieve filter" in cp.stdout
    assert "varsieve annotate" in cp.stdout
    assert "varsieve run" in cp.stdout


def test_make_toy_data_dry_run(tmp_path: Path) -> None:
    cp = _run_cli(["make-toy-data", "--outdir", str(tmp_path / "toy"), "--dry-run"])
    assert cp.returncode == 0
    assert "Would write toy data" in cp.stdout
    assert not (tmp_path / "toy").exists()


def test_filter_collate_annotate_commands(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy", n_filler=20)
    filtered = tmp_path / "filtered.vcf"
    cp = _run_cli(
        [
            "filter",
            "--input",
            toy["gvcf"],
            "--output",
            str(filtered),
            "--tmpdir",
            str(tmp_path / "tmp_filter"),
            "--jobs",
            "2",
            "--batch-size",
            "4",
            "--poll-interval",
            "0.01",
            "--samples-file",
            toy["samples"],
            "--summary-json",
            str(tmp_path / "filter.json"),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    text = filtered.read_text()
    assert "##varsieve_filter=<commandLine=\"varsieve filter" in text
    summary = json.loads((tmp_path / "filter.json").read_text())
    assert summary["fixed_to_hv"] >= 1
    assert summary["fixed_to_het"] >= 1

    collated = tmp_path / "collated.vcf"
    cp = _run_cli(["collate", "--input", str(filtered), "--secondary", toy["secondary_vcf"], "--output", str(collated)])
    assert cp.returncode == 0, cp.stderr
    assert "chr1\t250\t" in collated.read_text()

    annotated = tmp_path / "annotated.vcf"
    cp = _run_cli(
        [
            "annotate",
            "--input",
            str(collated),
            "--output",
            str(annotated),
            "--tmpdir",
            str(tmp_path / "tmp_annotate"),
            "--cache-file",
            str(tmp_path / "cache.json.gz"),
            "--annotator",
            _toy_annotator(),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    data = [line for line in annotated.read_text().splitlines() if not line.startswith("#")]
    assert data and all("CSQ=" in line for line in data)
    with gzip.open(tmp_path / "cache.json.gz", "rt") as f:
        assert "__schema__" in json.load(f)


def test_existing_tmpdir_is_a_clean_error(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy", n_filler=5)
    (tmp_path / "tmp_filter").mkdir()
    cp = _run_cli(
        ["filter", "--input", toy["gvcf"], "--output", str(tmp_path / "out.vcf"), "--tmpdir", str(tmp_path / "tmp_filter")]
    )
    assert cp.returncode == 2
    assert "already exists" in cp.stderr
    assert "Traceback" not in cp.stderr


def test_run_end_to_end(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy", n_filler=30)
    outdir = tmp_path / "results"
    cp = _run_cli(
        [
            "run",
            "--input",
            toy["gvcf"],
            "--secondary",
            toy["secondary_vcf"],
            "--outdir",
            str(outdir),
            "--cache-file",
            str(tmp_path / "cache.json.gz"),
            "--annotator",
            _toy_annotator(),
            "--jobs",
            "2",
            "--batch-size",
            "8",
            "--poll-interval",
            "0.01",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "annotated.vcf.gz").exists()
    assert (outdir / "annotated.vcf.gz.tbi").exists()
    assert (outdir / "report.html").exists()
    assert (outdir / "plots" / "af_hist.png").exists()
    assert not (outdir / "tmp_filter").exists()
    assert not (outdir / "tmp_annotate").exists()
    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["collate"]["secondary"] == 4
    assert summary["annotate"]["records"] == summary["annotate"]["annotated"]

    # same input again: everything comes from the cache
    cp = _run_cli(
        [
            "run",
            "--input",
            toy["gvcf"],
            "--secondary",
            toy["secondary_vcf"],
            "--outdir",
            str(tmp_path / "results2"),
            "--cache-file",
            str(tmp_path / "cache.json.gz"),
            "--annotator",
            _toy_annotator(),
            "--poll-interval",
            "0.01",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    summary = json.loads((tmp_path / "results2" / "summary.json").read_text())
    assert summary["annotate"]["annotated"] == 0
    assert summary["annotate"]["cache_hits"] == summary["annotate"]["records"]


def test_run_dry_run_prints_annotator(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy", n_filler=5)
    cp = _run_cli(
        [
            "run",
            "--input",
            toy["gvcf"],
            "--outdir",
            str(tmp_path / "results"),
            "--cache-file",
            str(tmp_path / "cache.json.gz"),
            "--annotator",
            _toy_annotator(),
            "--dry-run",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert "varsieve.toy_annotator" in cp.stdout
    assert not (tmp_path / "results").exists()


def test_annotate_needs_annotator_or_genome(tmp_path: Path) -> None:
    cp = _run_cli(
        [
            "annotate",
            "--tmpdir",
            str(tmp_path / "tmp"),
            "--cache-file",
            str(tmp_path / "cache.json.gz"),
        ]
    )
    assert cp.returncode == 2
    assert "--genome" in cp.stderr


def test_doctor_dry_run() -> None:
    cp = _run_cli(["doctor", "--dry-run", "--vep", "definitely-not-a-vep-binary"])
    assert cp.returncode == 0
    assert "vep" in cp.stdout
    assert "MISSING" in cp.stdout
