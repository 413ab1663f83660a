from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Sequence

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def plot_af_hist(
    *,
    af_counts: Sequence[int],
    out_png: str | Path,
    title: str = "Allele fraction of kept calls",
) -> None:
    """Bar plot of the AF histogram (equal-width bins on [0, 1])."""
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    n = len(af_counts)
    width = 1.0 / n
    centers = [width * (i + 0.5) for i in range(n)]

    plt.figure()
    plt.bar(centers, list(af_counts), width=width, align="center")
    plt.xlabel("Allele fraction (AF)")
    plt.ylabel("Call count")
    plt.xlim(0.0, 1.0)
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_call_outcomes(
    *,
    filter_summary: Dict[str, int],
    out_png: str | Path,
    title: str = "Genotype calls",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    seen = int(filter_summary.get("calls_seen", 0))
    nocalled = int(filter_summary.get("calls_nocalled", 0))
    to_hv = int(filter_summary.get("fixed_to_hv", 0))
    to_het = int(filter_summary.get("fixed_to_het", 0))
    labels = ["Kept as called", "Nulled (./.)", "Fixed to HV", "Fixed to HET"]
    values = [max(0, seen - nocalled - to_hv - to_het), nocalled, to_hv, to_het]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Call count")
    plt.title(title)
    plt.xticks(rotation=15, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_annotation_sources(
    *,
    annotate_summary: Dict[str, int],
    out_png: str | Path,
    title: str = "Annotation sources",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["From cache", "From annotator"]
    values = [int(annotate_summary.get("cache_hits", 0)), int(annotate_summary.get("annotated", 0))]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Record count")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
