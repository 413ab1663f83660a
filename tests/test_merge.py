import io

import pytest

from varsieve.errors import MalformedRecordError
from varsieve.merge import collate_files, collate_vcfs, merge_sorted
from varsieve.toy_data import write_toy_secondary
from varsieve.vcf import chrom_key, position_key

MAIN_HEADER = [
    "##fileformat=VCFv4.2\n",
    "##source=filter\n",
    "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tS1\tS2\tS3\n",
]
SEC_HEADER = [
    "##fileformat=VCFv4.2\n",
    "##source=cnv_caller\n",
    "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tS2\tEXTRA\tS1\n",
]


def _line(*cols: str) -> str:
    return "\t".join(cols) + "\n"


def test_merge_sorted_is_total_and_primary_first():
    primary = [(1, "p"), (3, "p"), (5, "p")]
    secondary = [(1, "s"), (2, "s"), (6, "s"), (7, "s")]
    merged = list(merge_sorted(primary, secondary, key=lambda x: x[0]))
    assert merged == [(1, "p"), (1, "s"), (2, "s"), (3, "p"), (5, "p"), (6, "s"), (7, "s")]
    assert list(merge_sorted([], secondary, key=lambda x: x[0])) == secondary
    assert list(merge_sorted(primary, [], key=lambda x: x[0])) == primary


def test_chrom_order():
    names = ["chrM", "chrX", "chr10", "chr2", "chrY", "chr1"]
    assert sorted(names, key=chrom_key) == ["chr1", "chr2", "chr10", "chrX", "chrY", "chrM"]
    assert chrom_key("MT") == chrom_key("chrM")
    with pytest.raises(MalformedRecordError):
        chrom_key("chrUn_KI270302v1")
    with pytest.raises(MalformedRecordError):
        position_key("chr1\tabc\t.")


def test_collate_remaps_secondary_samples():
    main = MAIN_HEADER + [
        _line("chr1", "100", ".", "A", "C", ".", ".", ".", "GT:AF", "0/1:0.50", "./.", "1/1:1.00"),
        _line("chr2", "50", ".", "G", "T", ".", ".", ".", "GT:AF", "./.", "0/1:0.40", "./."),
    ]
    secondary = SEC_HEADER + [
        _line("chr1", "100", ".", "N", "<DUP>", ".", ".", "END=300", "GT", "0/1", "1/1", "0/0"),
        _line("chr1", "150", ".", "N", "<DEL>", ".", ".", "END=500", "GT", "1/1", "0/1", "0/1"),
    ]
    out = io.StringIO()
    counts = collate_vcfs(main, secondary, out)
    lines = out.getvalue().splitlines()

    assert counts == {"primary": 2, "secondary": 2}
    assert lines[:3] == [line.rstrip("\n") for line in MAIN_HEADER]
    assert "##source=cnv_caller" not in lines
    data = lines[3:]
    assert [line.split("\t")[4] for line in data] == ["C", "<DUP>", "<DEL>", "T"]
    assert data[1].split("\t")[9:] == ["0/0", "0/1", "./."]
    assert data[2].split("\t")[9:] == ["0/1", "1/1", "./."]


def test_collate_orders_sex_and_mito_contigs_last():
    main = MAIN_HEADER + [
        _line("chr2", "50", ".", "G", "T", ".", ".", ".", "GT", "0/1", "0/1", "0/1"),
        _line("chrX", "10", ".", "G", "T", ".", ".", ".", "GT", "0/1", "0/1", "0/1"),
    ]
    secondary = SEC_HEADER + [
        _line("chr10", "5", ".", "N", "<DEL>", ".", ".", "END=50", "GT", "0/1", "0/1", "0/1"),
        _line("chrM", "5", ".", "N", "<DEL>", ".", ".", "END=50", "GT", "0/1", "0/1", "0/1"),
    ]
    out = io.StringIO()
    collate_vcfs(main, secondary, out)
    chroms = [line.split("\t")[0] for line in out.getvalue().splitlines() if not line.startswith("#")]
    assert chroms == ["chr2", "chr10", "chrX", "chrM"]


def test_collate_unknown_contig_is_fatal():
    main = MAIN_HEADER + [_line("chr1", "50", ".", "G", "T", ".", ".", ".", "GT", "0/1", "0/1", "0/1")]
    secondary = SEC_HEADER + [_line("chrUn_x", "5", ".", "N", "<DEL>", ".", ".", "END=50", "GT", "0/1", "0/1", "0/1")]
    with pytest.raises(MalformedRecordError):
        collate_vcfs(main, secondary, io.StringIO())


def test_collate_bgzipped_secondary(tmp_path):
    sec = write_toy_secondary(tmp_path / "secondary.vcf.gz")
    main = MAIN_HEADER + [
        _line("chr1", "200", ".", "C", "T", ".", ".", ".", "GT", "0/1", "0/1", "0/1"),
        _line("chr1", "300", ".", "C", "T", ".", ".", ".", "GT", "0/1", "0/1", "0/1"),
    ]
    out = io.StringIO()
    counts = collate_files(iter(main), sec, out)
    data = [line for line in out.getvalue().splitlines() if not line.startswith("#")]
    assert counts == {"primary": 2, "secondary": 4}
    assert [line.split("\t")[1] for line in data[:3]] == ["200", "250", "300"]
    assert data[1].split("\t")[9:] == ["0/0", "0/1", "./."]


def test_keys_are_checked_after_the_other_stream_ends():
    main = MAIN_HEADER + [
        _line("chr1", "100", ".", "A", "C", ".", ".", ".", "GT", "0/1", "0/1", "0/1"),
        _line("chr1", "abc", ".", "A", "C", ".", ".", ".", "GT", "0/1", "0/1", "0/1"),
        _line("chrUn_KI1", "5", ".", "A", "C", ".", ".", ".", "GT", "0/1", "0/1", "0/1"),
    ]
    secondary = SEC_HEADER + [_line("chr1", "50", ".", "N", "<DEL>", ".", ".", "END=80", "GT", "0/1", "0/1", "0/1")]
    with pytest.raises(MalformedRecordError):
        collate_vcfs(main, secondary, io.StringIO())

    def key(x):
        if x < 0:
            raise MalformedRecordError(f"bad item {x}")
        return x

    with pytest.raises(MalformedRecordError):
        list(merge_sorted([1, 2], [3, 4, -1], key=key))
    with pytest.raises(MalformedRecordError):
        list(merge_sorted([5, -1], [], key=key))
