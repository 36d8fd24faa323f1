"""
Report generation module for fragment_normalizer.
Writes the per-sample summary TSV and an interactive HTML yield report.
"""

import plotly.graph_objects as go
from jinja2 import Environment, FileSystemLoader
from pathlib import Path
from typing import List, Dict, Any, Optional
import logging
import pandas as pd

from src.fragment_normalizer.core.models import BatchStatistics, QCStatus, RunStatus, Sample

logger = logging.getLogger(__name__)


def sample_metrics(s: Sample) -> Dict[str, Any]:
    return {
        'sample': s.identity,
        'path': str(s.path),
        'raw_count': s.raw_count,
        'z_score': round(s.z_score, 4) if s.z_score is not None else None,
        'qc_status': s.qc_status.value,
        'run_status': s.run_status.value,
        'target_depth': s.target_depth,
        'downsampled_count': s.downsampled_count,
        'track_path': str(s.track_path) if s.track_path else None,
        'exclusion_reason': s.exclusion_reason,
        'failure_reason': s.failure_reason
    }


def write_summary(samples: List[Sample], output_dir: Path) -> pd.DataFrame:
    """
    Write summary_report.tsv with one row per sample.

    :return: The summary as a DataFrame.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame([sample_metrics(s) for s in samples])
    df.to_csv(output_dir / 'summary_report.tsv', sep='\t', index=False, encoding='utf-8')
    return df


def log_summary(samples: List[Sample]):
    """
    Final per-sample summary plus aggregate counts.
    """
    for s in samples:
        if s.qc_status == QCStatus.EXCLUDED:
            logger.info(f"  {s.identity}: {s.raw_count} fragments, EXCLUDED ({s.exclusion_reason})")
        elif s.run_status == RunStatus.DONE:
            logger.info(f"  {s.identity}: {s.raw_count} -> {s.downsampled_count} fragments, track {s.track_path}")
        elif s.run_status == RunStatus.FAILED:
            logger.info(f"  {s.identity}: FAILED ({s.failure_reason})")
        else:
            logger.info(f"  {s.identity}: {s.run_status.value}")

    n_done = sum(1 for s in samples if s.run_status == RunStatus.DONE)
    n_failed = sum(1 for s in samples if s.run_status == RunStatus.FAILED)
    n_excluded = sum(1 for s in samples if s.qc_status == QCStatus.EXCLUDED)
    logger.info(f"Samples: {len(samples)} total, {n_done} done, {n_excluded} excluded, {n_failed} failed")


def generate_report(
    samples: List[Sample],
    stats: Optional[BatchStatistics],
    target_depth: Optional[int],
    output_dir: Path,
    run_parameters: Dict[str, Any] = None
):
    """
    Write summary_report.tsv and report.html.

    :param samples: Final list of samples.
    :param stats: Batch yield statistics (None when counting never completed).
    :param target_depth: Common downsampling depth.
    :param output_dir: Directory to save outputs.
    :param run_parameters: Dictionary of parameters used for the run.
    """
    write_summary(samples, output_dir)

    status_colors = {
        QCStatus.RETAINED: 'steelblue',
        QCStatus.EXCLUDED: 'red',
        QCStatus.PENDING: 'gray'
    }

    counted = [s for s in samples if s.raw_count is not None]
    fig = go.Figure()
    for status in QCStatus:
        group = [s for s in counted if s.qc_status == status]
        if not group:
            continue
        fig.add_trace(go.Bar(
            x=[s.identity for s in group],
            y=[s.raw_count for s in group],
            name=status.value,
            marker=dict(color=status_colors[status])
        ))
    if stats is not None:
        fig.add_hline(y=stats.cutoff, line_width=2, line_dash="dash", line_color="red",
                      annotation_text=f"Cutoff: {stats.cutoff:.1f}")
    if target_depth is not None:
        fig.add_hline(y=target_depth, line_width=2, line_dash="dot", line_color="green",
                      annotation_text=f"Target depth: {target_depth}")
    fig.update_layout(title="Fragment Yield per Sample", xaxis_title="Sample", yaxis_title="Fragments")
    yield_plot_json = fig.to_json()

    template_dir = Path(__file__).parent / 'templates'
    env = Environment(loader=FileSystemLoader(str(template_dir)), autoescape=True)
    template = env.get_template('report.html')

    html_content = template.render(
        stats=stats,
        target_depth=target_depth,
        rows=[sample_metrics(s) for s in samples],
        yield_plot_json=yield_plot_json,
        run_parameters=run_parameters if run_parameters else {}
    )

    with open(output_dir / 'report.html', 'w', encoding='utf-8') as f:
        f.write(html_content)
