"""A tiny VEP stand-in for demos and tests.

Reads VCF on stdin and writes it to stdout with a ``##VEP`` line, a
``##INFO=<ID=CSQ`` declaration and a deterministic CSQ payload per record::

    python -m varsieve.toy_annotator [--log counts.txt] < in.vcf > out.vcf
"""

from __future__ import annotations

import argparse
import datetime as _dt
import sys
from typing import List, Optional, TextIO

CSQ_FORMAT = "Allele|Consequence|IMPACT|SYMBOL"
TOY_VERSION = "110"


def _vep_line() -> str:
    now = _dt.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    return (
        f'##VEP="v{TOY_VERSION}" time="{now}" cache="/home/toy/.vep/homo_sapiens/{TOY_VERSION}_GRCh38" '
        f'ensembl-variation={TOY_VERSION}.0 ensembl={TOY_VERSION}.0 assembly="GRCh38"\n'
    )


def _csq_info_line() -> str:
    return (
        '##INFO=<ID=CSQ,Number=.,Type=String,Description="Consequence annotations from '
        f'toy annotator. Format: {CSQ_FORMAT}">\n'
    )


def consequence(ref: str, alt: str) -> str:
    if alt in ("<DEL>", "<DUP>"):
        return "copy_number_variation"
    if alt == "*":
        return "spanning_deletion"
    if len(ref) == len(alt):
        return "missense_variant" if len(ref) == 1 else "substitution"
    return "frameshift_variant" if abs(len(ref) - len(alt)) % 3 else "inframe_indel"


def annotate_line(line: str) -> str:
    f = line.rstrip("\r\n").split("\t")
    ref = f[3]
    parts = []
    for alt in f[4].split(","):
        cons = consequence(ref, alt)
        impact = "HIGH" if cons == "frameshift_variant" else "MODERATE"
        parts.append(f"{alt}|{cons}|{impact}|GENE{f[0].replace('chr', '')}")
    csq = "CSQ=" + ",".join(parts)
    f[7] = csq if f[7] in ("", ".") else f"{f[7]};{csq}"
    return "\t".join(f)


def run(fin: TextIO, fout: TextIO, *, drop_first: bool = False) -> int:
    """Annotate ``fin`` into ``fout``; return the number of data records annotated."""
    n = 0
    dropped = not drop_first
    for line in fin:
        if line.startswith("#CHROM"):
            fout.write(_vep_line())
            fout.write(_csq_info_line())
            fout.write(line)
        elif line.startswith("#"):
            fout.write(line)
        elif line.strip():
            if not dropped:
                dropped = True
                continue
            fout.write(annotate_line(line) + "\n")
            n += 1
    return n


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(prog="toy_annotator", description="VEP stand-in: VCF on stdin, annotated VCF on stdout.")
    p.add_argument("--log", default=None, help="Append the number of annotated records to this file.")
    p.add_argument("--drop-first", action="store_true", help="Silently lose the first data record.")
    args = p.parse_args(argv)

    n = run(sys.stdin, sys.stdout, drop_first=args.drop_first)
    sys.stdout.flush()
    if args.log:
        with open(args.log, "at", encoding="utf-8") as f:
            f.write(f"{n}\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
