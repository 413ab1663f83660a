from __future__ import annotations

import random
from pathlib import Path
from typing import Dict, List, Tuple

import pysam

from .utils import ensure_outdir, write_json

SAMPLES = ["S1", "S2", "S3"]
SECONDARY_SAMPLES = ["S2", "EXTRA", "S1"]

_CONTIGS = [("chr1", 10_000), ("chr2", 10_000), ("chr3", 100_000), ("chrX", 10_000)]

_GVCF_META = [
    "##fileformat=VCFv4.2",
    '##FORMAT=<ID=GT,Number=1,Type=String,Description="Genotype">',
    '##FORMAT=<ID=GQ,Number=1,Type=Integer,Description="Genotype Quality">',
    '##FORMAT=<ID=GQX,Number=1,Type=Integer,Description="Empirically calibrated genotype quality">',
    '##FORMAT=<ID=DP,Number=1,Type=Integer,Description="Approximate read depth">',
    '##FORMAT=<ID=DPI,Number=1,Type=Integer,Description="Read depth associated with indel">',
    '##FORMAT=<ID=AD,Number=R,Type=Integer,Description="Allelic depths">',
    '##INFO=<ID=END,Number=1,Type=Integer,Description="End position of the variant described in this record">',
    '##ALT=<ID=NON_REF,Description="Represents any possible alternative allele at this location">',
]

# Hand-written records exercising each filtering rule (see the comments).
_GVCF_RECORDS: List[Tuple[str, ...]] = [
    # non-variant block whose END is the position of the following indel
    ("chr1", "100", ".", "A", "<NON_REF>", ".", ".", "END=150", "GT:GQ:DP", "0/0:60:30", "0/0:60:32", "0/0:45:28"),
    ("chr1", "150", ".", "AT", "A,<NON_REF>", "50.2", ".", "DP=90", "GT:GQ:DP:AD", "0/1:99:30:15,15,0", "0/0:80:30:30,0,0", "1/1:70:30:0,30,0"),
    # S1 0/1 at AF 0.93 -> 1/1, S2 GQ too low -> ./., S3 1/1 at AF 0.60 -> 0/1
    ("chr1", "200", "rs1", "C", "T,<NON_REF>", "80.1", "PASS", "DP=90;MQ=60", "GT:GQ:DP:AD", "0/1:99:30:2,28,0", "0/0:5:30:30,0,0", "1/1:99:30:12,18,0"),
    # nothing survives: low depth, no call and HR
    ("chr1", "300", ".", "G", "A,<NON_REF>", "12.0", ".", ".", "GT:GQ:DP:AD", "0/1:40:5:3,2,0", "./.:.:.:.", "0/0:50:25:25,0,0"),
    # single-base HR block at the position of the next variant: discarded
    ("chr1", "400", ".", "G", ".", ".", ".", "END=400", "GT:GQ:DP", "0/0:40:40", "0/0:40:40", "0/0:40:40"),
    ("chr1", "400", ".", "G", "C,<NON_REF>", "60.0", ".", ".", "GT:GQ:DP:AD", "0/1:99:40:20,20,0", "0/0:90:40:40,0,0", "0/1:99:40:22,18,0"),
    # spanning deletion allele: 1/2 is */T -> T/T, then corrected to 0/2 at AF 0.50
    ("chr2", "1000", ".", "A", "*,T,<NON_REF>", "33.0", ".", ".", "GT:GQ:DP:AD", "1/2:99:30:5,10,15,0", "0/0:99:30:30,0,0,0", "1/1:30:30:0,30,0,0"),
    # phased call and a low AF call
    ("chr2", "1500", ".", "C", "G,<NON_REF>", "45.0", ".", ".", "GT:GQ:DP:AD", "0|1:99:40:20,20,0", "0/1:99:40:37,3,0", "./.:.:.:."),
    # hemizygous strelka-style call using GQX and DPI
    ("chrX", "5000", ".", "T", "C", "70.0", "PASS", ".", "GT:GQX:DP:DPI:AD", "1:60:25:.:0,25", "0:60:25:.:25,0", "."),
]


def _gvcf_lines(n_filler: int, seed: int) -> List[str]:
    rng = random.Random(seed)
    lines = ["\t".join(r) for r in _GVCF_RECORDS if r[0] != "chrX"]
    pos = 1000
    for i in range(n_filler):
        pos += rng.randint(5, 200)
        ref = rng.choice("ACGT")
        alt = rng.choice([b for b in "ACGT" if b != ref])
        if i % 7 == 3:
            # an indel, batches must not be cut in front of it
            alt = ref + rng.choice("ACGT")
        calls = []
        for _ in SAMPLES:
            dp = rng.randint(4, 60)
            alt_reads = rng.randint(0, dp)
            gt = "0/0" if alt_reads < dp * 0.1 else ("1/1" if alt_reads > dp * 0.9 else "0/1")
            calls.append(f"{gt}:{rng.randint(10, 99)}:{dp}:{dp - alt_reads},{alt_reads}")
        lines.append("\t".join(["chr3", str(pos), ".", ref, alt, "30.0", ".", ".", "GT:GQ:DP:AD"] + calls))
    lines.extend("\t".join(r) for r in _GVCF_RECORDS if r[0] == "chrX")
    return lines


def write_toy_gvcf(path: str | Path, *, n_filler: int = 60, seed: int = 7) -> Path:
    """Write a small multi-sample GVCF as plain text."""
    path = Path(path)
    header = list(_GVCF_META)
    header.extend(f"##contig=<ID={c},length={n}>" for c, n in _CONTIGS)
    header.append("\t".join(["#CHROM", "POS", "ID", "REF", "ALT", "QUAL", "FILTER", "INFO", "FORMAT"] + SAMPLES))
    path.write_text("\n".join(header + _gvcf_lines(n_filler, seed)) + "\n", encoding="utf-8")
    return path


def write_toy_secondary(path: str | Path) -> Path:
    """Write a bgzipped, tabix-indexed VCF with differently ordered samples.

    ``path`` must end with ``.vcf.gz``.
    """
    path = Path(path)
    plain = path.with_suffix("")  # .vcf

    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    for c, n in _CONTIGS:
        header.contigs.add(c, length=n)
    header.formats.add("GT", number=1, type="String", description="Genotype")
    for s in SECONDARY_SAMPLES:
        header.add_sample(s)

    records = [
        ("chr1", 250, "G", "GTT", {"S2": (0, 1), "EXTRA": (1, 1), "S1": (0, 0)}),
        ("chr1", 400, "G", "A", {"S2": (0, 1), "EXTRA": (0, 1), "S1": (0, 1)}),
        ("chr2", 1200, "CAA", "C", {"S2": (1, 1), "EXTRA": (0, 0), "S1": (0, 1)}),
        ("chrX", 6000, "A", "T", {"S2": (0, 1), "EXTRA": (0, 1), "S1": (1, 1)}),
    ]
    with pysam.VariantFile(str(plain), "w", header=header) as vcf:
        for contig, pos, ref, alt, gts in records:
            rec = vcf.new_record(
                contig=contig,
                start=pos - 1,
                stop=pos - 1 + len(ref),
                alleles=(ref, alt),
                qual=50,
                filter="PASS",
            )
            for s, gt in gts.items():
                rec.samples[s]["GT"] = gt
            vcf.write(rec)

    pysam.tabix_compress(str(plain), str(path), force=True)
    pysam.tabix_index(str(path), preset="vcf", force=True)
    plain.unlink()
    return path


def make_toy_data(*, outdir: str | Path, n_filler: int = 60) -> Dict[str, str]:
    """Create a tiny GVCF, a secondary VCF and a sample list for demos/tests.

    The outputs include:
    - toy.g.vcf (three samples S1, S2, S3)
    - secondary.vcf.gz (+ .tbi), samples S2, EXTRA, S1
    - samples.txt (S1 and S3)

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    gvcf = write_toy_gvcf(outdir_p / "toy.g.vcf", n_filler=n_filler)
    secondary = write_toy_secondary(outdir_p / "secondary.vcf.gz")
    samples = outdir_p / "samples.txt"
    samples.write_text("# samples to keep\nS1\nS3\n", encoding="utf-8")

    summary = {
        "gvcf": str(gvcf),
        "secondary_vcf": str(secondary),
        "samples": str(samples),
        "outdir": str(outdir_p),
    }
    write_json(outdir_p / "toy_summary.json", summary)
    return summary
