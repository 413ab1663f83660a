import io

import pytest

from varsieve.batching import (
    excluded_columns,
    filter_header,
    is_cut_point,
    process_batch,
    run_batch,
    split_batches,
)
from varsieve.errors import ConfigurationError, MalformedRecordError
from varsieve.models import Batch, FilterParams
from varsieve.vcf import read_header

HEADER = [
    "##fileformat=VCFv4.2\n",
    "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tS1\tS2\tS3\n",
]


def _line(*cols: str) -> str:
    return "\t".join(cols)


def _run(lines, keep_hr=False, skipped=()):
    out = io.StringIO()
    summary = process_batch(lines, FilterParams(), list(skipped), keep_hr, out)
    return out.getvalue().splitlines(), summary


BLOCK_TO_150 = _line("chr1", "100", ".", "A", ".", ".", ".", "END=150", "GT:GQ:DP", "0/0:60:30")
INDEL_150 = _line("chr1", "150", ".", "AT", "A", "50", ".", "DP=30", "GT:GQ:DP:AD", "0/1:99:30:15,15")


def test_cut_points():
    assert is_cut_point(_line("chr1", "100", ".", "A", "C", ".", ".", ".", "GT", "0/1"))
    assert not is_cut_point(_line("chr1", "100", ".", "AT", "A", ".", ".", ".", "GT", "0/1"))
    assert not is_cut_point(_line("chr1", "100", ".", "A", "C,<NON_REF>", ".", ".", ".", "GT", "0/1"))


def test_batches_never_start_at_an_indel():
    lines = [
        _line("chr1", "100", ".", "A", "C", ".", ".", ".", "GT", "0/1"),
        _line("chr1", "150", ".", "AT", "A", ".", ".", ".", "GT", "0/1"),
        _line("chr1", "200", ".", "C", "T", ".", ".", ".", "GT", "0/1"),
        _line("chr1", "300", ".", "G", "A", ".", ".", ".", "GT", "0/1"),
        _line("chr1", "301", ".", "GA", "G", ".", ".", ".", "GT", "0/1"),
        "",
    ]
    batches = list(split_batches(lines, 1))
    assert [b.number for b in batches] == [1, 2, 3]
    assert [len(b.lines) for b in batches] == [2, 1, 2]
    assert sum(len(b.lines) for b in batches) == 5


def test_batches_not_cut_inside_a_block():
    lines = [
        _line("chr1", "100", ".", "A", ".", ".", ".", "END=200", "GT", "0/0"),
        _line("chr1", "200", ".", "C", "T", ".", ".", ".", "GT", "0/1"),
        _line("chr1", "200", ".", "C", "G", ".", ".", ".", "GT", "0/1"),
        _line("chr1", "250", ".", "C", "G", ".", ".", ".", "GT", "0/1"),
    ]
    batches = list(split_batches(lines, 1))
    assert [len(b.lines) for b in batches] == [3, 1]


def test_split_empty_input():
    assert list(split_batches([], 10)) == []
    with pytest.raises(ValueError):
        list(split_batches([], 0))


def test_block_end_is_shortened_before_indel():
    out, _ = _run([BLOCK_TO_150, INDEL_150], keep_hr=True)
    assert out == [
        _line("chr1", "100", ".", "A", ".", ".", ".", "END=149", "GT:AF:GQ:DP", "0/0:.:60:30"),
        _line("chr1", "150", ".", "AT", "A", ".", ".", ".", "GT:AF:GQ:DP:AD", "0/1:0.50:99:30:15,15"),
    ]


def test_hr_blocks_dropped_without_keep_hr():
    out, summary = _run([BLOCK_TO_150, INDEL_150])
    assert len(out) == 1
    assert out[0].startswith("chr1\t150\t")
    assert summary.lines_in == 2
    assert summary.lines_out == 1


def test_single_base_hr_before_variant_is_discarded():
    lines = [
        _line("chr1", "400", ".", "G", ".", ".", ".", "END=400", "GT:GQ:DP", "0/0:40:40"),
        _line("chr1", "400", ".", "G", "C", "60", ".", ".", "GT:GQ:DP:AD", "0/1:99:40:20,20"),
    ]
    out, _ = _run(lines, keep_hr=True)
    assert out == [_line("chr1", "400", ".", "G", "C", ".", ".", ".", "GT:AF:GQ:DP:AD", "0/1:0.50:99:40:20,20")]


def test_two_pending_blocks_are_fatal():
    lines = [
        BLOCK_TO_150,
        _line("chr1", "120", ".", "A", ".", ".", ".", "END=150", "GT:GQ:DP", "0/0:60:30"),
        INDEL_150,
    ]
    with pytest.raises(MalformedRecordError):
        _run(lines, keep_hr=True)


def test_lines_with_only_hom_ref_calls_are_dropped():
    line = _line("chr1", "500", ".", "A", "G", "30", ".", ".", "GT:GQ:DP:AD", "0/0:99:30:30,0", "./.")
    assert _run([line])[0] == []
    assert _run([line], keep_hr=True)[0] == [
        _line("chr1", "500", ".", "A", "G", ".", ".", ".", "GT:AF:GQ:DP:AD", "0/0:.:99:30:30,0", "./.")
    ]


def test_lines_without_depth_are_skipped():
    line = _line("chr1", "500", ".", "A", "G", "30", ".", ".", "GT:GQ:AD", "0/1:99:15,15")
    out, summary = _run([line])
    assert out == []
    assert summary.calls_seen == 0


def test_short_line_is_fatal():
    with pytest.raises(MalformedRecordError):
        _run([_line("chr1", "500", ".", "A", "G")])


def test_summary_counts_outcomes():
    line = _line(
        "chr1", "200", "rs1", "C", "T", "80.1", "PASS", "DP=90", "GT:GQ:DP:AD",
        "0/1:99:30:2,28", "0/0:5:30:30,0", "1/1:99:30:12,18",
    )
    out, summary = _run([line])
    assert out == [
        _line(
            "chr1", "200", "rs1", "C", "T", ".", "PASS", ".", "GT:AF:GQ:DP:AD",
            "1/1:0.93:99:30:2,28", "./.", "0/1:0.60:99:30:12,18",
        )
    ]
    assert summary.calls_seen == 3
    assert summary.calls_nocalled == 1
    assert summary.fixed_to_hv == 1
    assert summary.fixed_to_het == 1
    assert sum(summary.af_counts) == 2


def test_excluded_columns_and_header():
    header = read_header(iter(HEADER))
    assert excluded_columns(header, None) == []
    skipped = excluded_columns(header, ["S1", "S3", "S9"])
    assert skipped == [10]
    text = filter_header(header, skipped, "varsieve filter --samples S1,S3")
    lines = text.splitlines()
    assert lines[-2] == "##varsieve_filter=<commandLine=\"varsieve filter --samples S1,S3\">"
    assert lines[-1].split("\t")[9:] == ["S1", "S3"]
    with pytest.raises(ConfigurationError):
        excluded_columns(header, ["S9"])

    line = _line("chr1", "500", ".", "A", "G", "30", ".", ".", "GT:GQ:DP:AD", "0/1:99:30:15,15", "1/1:99:30:0,30", "./.")
    out, _ = _run([line], skipped=skipped)
    assert out[0].split("\t")[9:] == ["0/1:0.50:99:30:15,15", "./."]


def test_run_batch_writes_output_then_marker(tmp_path):
    batch = Batch(number=4, lines=(INDEL_150,))
    summary = run_batch(batch, str(tmp_path), FilterParams(), [], False)
    assert summary.batch == 4
    assert (tmp_path / "batch-4.vcf").read_text().startswith("chr1\t150\t")
    assert (tmp_path / "batch-4.done").read_text().strip() == "4"
