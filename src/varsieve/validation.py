"""Up-front checks that turn late failures into early, actionable errors."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


def check_scratch_dir_absent(path: str | Path) -> None:
    """Scratch directories are created by the run and must not pre-exist."""
    p = Path(path)
    if p.exists():
        raise ConfigurationError(
            f"scratch directory {p} already exists. Run: rm -r {p}  (or choose another --tmpdir)"
        )


def check_input_file(path: str | Path) -> None:
    p = Path(path)
    if not p.is_file():
        raise ConfigurationError(f"input file {p} does not exist or is not a file")


def check_cache_writable(path: str | Path) -> None:
    """The cache file must be writable, or creatable if it does not exist yet."""
    p = Path(path)
    if p.exists():
        if not os.access(p, os.W_OK):
            raise ConfigurationError(f"cache file {p} exists but is not writable")
        return
    parent = p.parent if str(p.parent) else Path(".")
    if not parent.is_dir() or not os.access(parent, os.W_OK):
        raise ConfigurationError(f"cache file {p} does not exist and cannot be created in {parent}")


def check_vcf_index(vcf_path: str | Path) -> None:
    """Warn when a .vcf.gz lacks its tabix index."""
    vcf = Path(vcf_path)
    if vcf.suffixes[-2:] == [".vcf", ".gz"]:
        tbi = vcf.with_suffix(vcf.suffix + ".tbi")
        if not tbi.exists():
            logger.warning("%s is not tabix indexed. Run: tabix -p vcf %s", vcf, vcf)


def check_genome(path: str | Path) -> None:
    p = Path(path)
    if not p.is_file():
        raise ConfigurationError(f"reference genome fasta {p} does not exist")
