"""Environment self-checks.

This module powers the ``varsieve doctor`` CLI command. Filtering and
collation are pure Python; annotation needs VEP, and the ``run`` command's
bgzip/tabix output is readable by the htslib command line tools.
"""

from __future__ import annotations

import logging
import platform
import shutil
from dataclasses import dataclass
from typing import Dict, Optional

import pysam

from .config import VEP_BIN
from .external import run_command

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    howto: Optional[str] = None


def _which(name: str) -> Optional[str]:
    return shutil.which(name)


def check_python() -> CheckResult:
    v = platform.python_version()
    return CheckResult(name="python", ok=True, detail=f"Python {v}")


def check_pysam() -> CheckResult:
    return CheckResult(name="pysam", ok=True, detail=f"pysam {pysam.__version__}")


def check_executable(name: str, *, howto: Optional[str] = None) -> CheckResult:
    p = _which(name)
    if p is None:
        return CheckResult(name=name, ok=False, detail="not found in PATH", howto=howto)
    return CheckResult(name=name, ok=True, detail=p)


def check_vep(vep_bin: str = VEP_BIN) -> CheckResult:
    howto = (
        "Conda/mamba: mamba install -c bioconda ensembl-vep\n"
        "Then install an offline cache: vep_install -a cf -s homo_sapiens -y GRCh38\n"
        "Or pass --annotator to use another command."
    )
    p = _which(vep_bin)
    if p is None:
        return CheckResult(name="vep", ok=False, detail=f"{vep_bin} not found in PATH", howto=howto)
    try:
        # vep prints its versions in the --help banner
        cp = run_command([vep_bin, "--help"], check=False)
    except OSError as e:
        return CheckResult(name="vep", ok=False, detail=f"{p} present but not runnable: {e}", howto=howto)
    for line in (cp.stdout or "").splitlines():
        if "ensembl-vep" in line:
            return CheckResult(name="vep", ok=True, detail=f"{p} ({line.strip()})")
    return CheckResult(name="vep", ok=True, detail=p)


def collect_checks(vep_bin: str = VEP_BIN) -> Dict[str, CheckResult]:
    """Run all checks and return a mapping name->result."""
    checks: Dict[str, CheckResult] = {}

    checks["python"] = check_python()
    checks["pysam"] = check_pysam()
    checks["vep"] = check_vep(vep_bin)
    checks["bgzip"] = check_executable(
        "bgzip",
        howto=(
            "Ubuntu: sudo apt-get install -y tabix\n"
            "Conda/mamba: mamba install -c bioconda htslib"
        ),
    )
    checks["tabix"] = check_executable(
        "tabix",
        howto=(
            "Ubuntu: sudo apt-get install -y tabix\n"
            "Conda/mamba: mamba install -c bioconda htslib"
        ),
    )
    return checks
