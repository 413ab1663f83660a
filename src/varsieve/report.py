from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>varsieve report</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>varsieve report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>GVCF</th><td><code>{{ run.input }}</code></td></tr>
      {% if run.secondary %}
      <tr><th>Secondary VCF</th><td><code>{{ run.secondary }}</code></td></tr>
      {% endif %}
      <tr><th>Annotator</th><td><code>{{ run.annotator }}</code></td></tr>
      <tr><th>Cache file</th><td><code>{{ run.cache_file }}</code></td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Thresholds</h3>
    <table>
      {% for name, value in params.items() %}
      <tr><th>{{ name }}</th><td>{{ value }}</td></tr>
      {% endfor %}
      <tr><th>keep_hr</th><td>{{ run.keep_hr }}</td></tr>
    </table>
  </div>
</div>

<h2>Filtering</h2>
<table>
  <tr><th>Batches</th><td>{{ filter.batch }}</td></tr>
  <tr><th>Data lines in</th><td>{{ filter.lines_in }}</td></tr>
  <tr><th>Data lines out</th><td>{{ filter.lines_out }}</td></tr>
  <tr><th>Calls seen</th><td>{{ filter.calls_seen }}</td></tr>
  <tr><th>Calls nulled</th><td>{{ filter.calls_nocalled }}</td></tr>
  <tr><th>Fixed to HV</th><td>{{ filter.fixed_to_hv }}</td></tr>
  <tr><th>Fixed to HET</th><td>{{ filter.fixed_to_het }}</td></tr>
</table>

{% if collate %}
<h2>Collation</h2>
<table>
  <tr><th>Primary records</th><td>{{ collate.primary }}</td></tr>
  <tr><th>Secondary records</th><td>{{ collate.secondary }}</td></tr>
</table>
{% endif %}

<h2>Annotation</h2>
<table>
  <tr><th>Records</th><td>{{ annotate.records }}</td></tr>
  <tr><th>Chromosomes</th><td>{{ annotate.chromosomes }}</td></tr>
  <tr><th>From cache</th><td>{{ annotate.cache_hits }}</td></tr>
  <tr><th>From annotator</th><td>{{ annotate.annotated }}</td></tr>
  <tr><th>New cache entries</th><td>{{ annotate.cache_added }}</td></tr>
</table>

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Genotype calls</h3>
    <img src="{{ plots.call_outcomes }}" alt="call outcomes">
  </div>
  <div class="card">
    <h3>Allele fractions</h3>
    <img src="{{ plots.af_hist }}" alt="AF histogram">
  </div>
</div>
<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Annotation sources</h3>
    <img src="{{ plots.annotation_sources }}" alt="annotation sources">
  </div>
</div>

<h2>Outputs</h2>
<ul>
  <li><code>{{ run.output }}</code> (annotated VCF)</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
  <li><code>logs/</code> (one log file per step)</li>
</ul>

<hr>
<p class="small">varsieve {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    params: Dict[str, Any],
    filter_summary: Dict[str, Any],
    annotate_summary: Dict[str, Any],
    plots: Dict[str, str],
    collate_summary: Optional[Dict[str, Any]] = None,
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        run=run,
        params=params,
        filter=filter_summary,
        collate=collate_summary,
        annotate=annotate_summary,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    logger.info("Report written: %s", out_path)
    return out_path
