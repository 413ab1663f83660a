"""varsieve: parallel quality filtering, collation and cached annotation of multi-sample GVCFs.

Public API is intentionally small; most users should use the CLI:

    varsieve run --input cohort.g.vcf.gz --outdir results/ --cache-file vep_cache.json.gz ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
