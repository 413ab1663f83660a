import io

import pytest

from varsieve.errors import MalformedRecordError
from varsieve.vcf import parse_record, read_header, variant_signature, write_lines


def test_parse_record_and_back():
    line = "chr1\t100\trs1\tA\tC,G\t50\tPASS\tDP=30;DB\tGT:AD\t0/1:10,20,0\t./."
    rec = parse_record(line)
    assert rec.chrom == "chr1"
    assert rec.pos == 100
    assert rec.format_keys == ("GT", "AD")
    assert rec.samples == (("0/1", "10,20,0"), ("./.",))
    assert rec.info_fields == {"DP": "30", "DB": None}
    assert rec.end is None
    assert rec.to_line() == line


def test_sites_only_record():
    line = "chr2\t5\t.\tN\t<DEL>\t.\t.\tEND=900;SVLEN=-895"
    rec = parse_record(line)
    assert rec.format_keys == ()
    assert rec.samples == ()
    assert rec.end == 900
    assert rec.to_line() == line
    assert rec.with_info("END=900;CSQ=x").to_line() == "chr2\t5\t.\tN\t<DEL>\t.\t.\tEND=900;CSQ=x"


def test_malformed_records():
    with pytest.raises(MalformedRecordError):
        parse_record("chr1\t100\t.\tA\tC")
    with pytest.raises(MalformedRecordError):
        parse_record("chr1\tx\t.\tA\tC\t.\t.\t.")
    with pytest.raises(MalformedRecordError):
        parse_record("chr1\t1\t.\tN\t<DEL>\t.\t.\tEND=abc").end


def test_variant_signature():
    assert variant_signature(parse_record("chr1\t100\t.\tA\tC\t.\t.\t.")) == "chr1:100:A:C"
    assert variant_signature(parse_record("chr1\t100\t.\tN\t<DUP>\t.\t.\tEND=500")) == "chr1:100:N:<DUP>:500"
    with pytest.raises(MalformedRecordError):
        variant_signature(parse_record("chr1\t100\t.\tN\t<DEL>\t.\t.\t."))


def test_read_header_and_write_lines():
    fh = iter(["##fileformat=VCFv4.2\n", "#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\tFORMAT\tS1\n", "chr1\t1\n"])
    header = read_header(fh)
    assert header.samples == ["S1"]
    assert next(fh) == "chr1\t1\n"
    with pytest.raises(MalformedRecordError):
        read_header(iter(["chr1\t1\n"]))
    out = io.StringIO()
    assert write_lines(out, ["a", "b"]) == 2
    assert out.getvalue() == "a\nb\n"
