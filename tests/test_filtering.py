import io

import pytest

from varsieve.batching import process_batch
from varsieve.errors import ConfigurationError, MalformedRecordError, WorkerFailedError
from varsieve.filtering import filter_vcf
from varsieve.models import FilterParams
from varsieve.toy_data import write_toy_gvcf


def _data_lines(text: str):
    return [line for line in text.splitlines() if not line.startswith("#")]


def _sequential(lines, keep_hr):
    out = io.StringIO()
    data = [line for line in lines if not line.startswith("#")]
    process_batch(data, FilterParams(), [], keep_hr, out)
    return out.getvalue().splitlines()


@pytest.mark.parametrize("keep_hr", [False, True])
def test_output_independent_of_batching(tmp_path, keep_hr):
    gvcf = write_toy_gvcf(tmp_path / "toy.g.vcf", n_filler=150)
    lines = gvcf.read_text().splitlines(keepends=True)
    expected = _sequential(lines, keep_hr)
    assert expected

    for batch_size in (1, 7, 10_000):
        out = io.StringIO()
        summary = filter_vcf(
            lines,
            out,
            tmpdir=tmp_path / f"scratch_{batch_size}",
            jobs=3,
            batch_size=batch_size,
            keep_hr=keep_hr,
            poll_interval=0.01,
        )
        assert _data_lines(out.getvalue()) == expected
        assert summary.lines_out == len(expected)
        assert not (tmp_path / f"scratch_{batch_size}").exists()


def test_header_records_command_and_kept_samples(tmp_path):
    gvcf = write_toy_gvcf(tmp_path / "toy.g.vcf", n_filler=5)
    out = io.StringIO()
    with open(gvcf) as fin:
        filter_vcf(
            fin,
            out,
            tmpdir=tmp_path / "scratch",
            jobs=1,
            keep_samples=["S1", "S3"],
            command_line="varsieve filter --samples S1,S3",
            poll_interval=0.01,
        )
    text = out.getvalue()
    assert '##varsieve_filter=<commandLine="varsieve filter --samples S1,S3">' in text
    chrom = [line for line in text.splitlines() if line.startswith("#CHROM")][0]
    assert chrom.split("\t")[9:] == ["S1", "S3"]
    for line in _data_lines(text):
        assert len(line.split("\t")) == 11


def test_existing_scratch_dir_is_rejected(tmp_path):
    gvcf = write_toy_gvcf(tmp_path / "toy.g.vcf", n_filler=5)
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    with open(gvcf) as fin:
        with pytest.raises(ConfigurationError):
            filter_vcf(fin, io.StringIO(), tmpdir=scratch, jobs=1)


def test_empty_input(tmp_path):
    lines = [
        "##fileformat=VCFv4.2\n",
        "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tS1\n",
    ]
    out = io.StringIO()
    summary = filter_vcf(lines, out, tmpdir=tmp_path / "scratch", jobs=2, poll_interval=0.01)
    assert _data_lines(out.getvalue()) == []
    assert summary.lines_in == 0
    assert not (tmp_path / "scratch").exists()


def test_worker_failure_aborts_and_keeps_scratch(tmp_path):
    gvcf = write_toy_gvcf(tmp_path / "toy.g.vcf", n_filler=40)
    lines = gvcf.read_text().splitlines(keepends=True)
    lines.insert(len(lines) // 2, "chr3\t99999\t.\tA\tC\n")
    scratch = tmp_path / "scratch"
    with pytest.raises(WorkerFailedError) as ei:
        filter_vcf(lines, io.StringIO(), tmpdir=scratch, jobs=2, batch_size=5, poll_interval=0.01)
    assert isinstance(ei.value.__cause__, MalformedRecordError)
    assert scratch.exists()
