from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>SegCall Report</title>
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

<h1>SegCall Report</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>Segments file</th><td><code>{{ input_path }}</code></td></tr>
      <tr><th>Mode</th><td>{{ summary.mode }}</td></tr>
      <tr><th>Seed</th><td>{{ summary.config.seed }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Thresholds</h3>
    <table>
      <tr><th>Normal minor allele fraction threshold</th><td>{{ summary.config.normal_minor_allele_fraction_threshold }}</td></tr>
      <tr><th>Copy ratio peak min weight</th><td>{{ summary.config.copy_ratio_peak_min_weight }}</td></tr>
      <tr><th>Min fraction of points in normal AF region</th><td>{{ summary.config.min_fraction_of_points_in_normal_allele_fraction_region }}</td></tr>
      <tr><th>Min weight of first CR peak (CR only)</th><td>{{ summary.config.min_weight_first_cr_peak_cr_data_only }}</td></tr>
      <tr><th>Classification confidence</th><td>{{ summary.config.classification_confidence }}</td></tr>
    </table>
  </div>
</div>

<h2>Normal peak</h2>
{% if summary.normal_peak %}
<table>
  <tr><th>Tier</th><td>{{ summary.normal_tier }}</td></tr>
  <tr><th>Peak</th><td>#{{ summary.normal_peak.index }}</td></tr>
  <tr><th>Mean</th><td>{{ summary.normal_peak.mean | map('round', 4) | join(', ') }} ({{ summary.normal_peak.dims | join(', ') }})</td></tr>
  <tr><th>Weight</th><td>{{ summary.normal_peak.weight | round(4) }}</td></tr>
  {% if summary.normal_copy_ratio_range %}
  <tr><th>Normal copy ratio range</th><td>{{ summary.normal_copy_ratio_range | map('round', 4) | join(' - ') }}</td></tr>
  {% endif %}
</table>
{% else %}
<p>No normal peak was found; all segments are indeterminate.</p>
{% endif %}

<h2>Calls</h2>
<table>
  <tr><th>Segments</th><td>{{ summary.counts.segments_total }}</td></tr>
  <tr><th>Sampled points</th><td>{{ summary.counts.points_sampled }}</td></tr>
  <tr><th>Peaks fitted / usable</th><td>{{ summary.counts.peaks_fitted }} / {{ summary.counts.peaks_usable }}</td></tr>
  <tr><th>Normal</th><td>{{ summary.counts.class_NORMAL }}</td></tr>
  <tr><th>Not normal</th><td>{{ summary.counts.class_NOT_NORMAL }}</td></tr>
  <tr><th>Indeterminate</th><td>{{ summary.counts.class_INDETERMINATE }}</td></tr>
</table>

{% if plots %}
<h2>Plots</h2>
<div class="grid">
  {% for name, src in plots.items() %}
  <div class="card">
    <h3>{{ name | replace('_', ' ') | capitalize }}</h3>
    <img src="{{ src }}" alt="{{ name }}">
  </div>
  {% endfor %}
</div>
{% endif %}

<h2>Outputs</h2>
<ul>
  <li><code>{{ calls_path }}</code> (called segments)</li>
  <li><code>summary.json</code> (machine-readable summary)</li>
</ul>

<hr>
<p class="small">SegCall {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    summary: Dict[str, Any],
    input_path: str,
    calls_path: str,
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        summary=summary,
        input_path=input_path,
        calls_path=calls_path,
        plots=plots,
    )

    out_path = outdir / "report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
