"""
Yield QC for fragment_normalizer.
One-sided z-score exclusion of low-yield samples and selection of the common
target depth for the retained batch.
"""

import logging
from typing import List

from src.fragment_normalizer.core.errors import QCError
from src.fragment_normalizer.core.models import BatchStatistics, QCStatus, RunStatus, Sample
from src.fragment_normalizer.utils.stats import calculate_yield_stats, calculate_z_scores

logger = logging.getLogger(__name__)


def compute_batch_statistics(counts: List[int], threshold: float = 1.5) -> BatchStatistics:
    """
    Summarise the yield distribution of the full batch before any sample is excluded.

    :param counts: Raw fragment counts of every counted sample.
    :param threshold: Number of standard deviations below the mean that triggers exclusion.
    :return: BatchStatistics for the batch.
    """
    mean, std = calculate_yield_stats(counts)
    cutoff = max(mean - threshold * std, 0.0)
    return BatchStatistics(
        mean=mean,
        std=std,
        threshold=threshold,
        cutoff=cutoff,
        n_samples=len(counts),
        z_scores=calculate_z_scores(counts)
    )


def is_low_yield(z_score: float, std: float, threshold: float) -> bool:
    """
    The exclusion rule: only abnormally low yield excludes, and never in a batch without spread.
    """
    if std == 0:
        return False
    return z_score < -threshold


def apply_qc_filter(samples: List[Sample], threshold: float = 1.5) -> BatchStatistics:
    """
    Mark every counted sample RETAINED or EXCLUDED.
    Samples that failed counting take no part in the statistics.

    :param samples: All samples of the batch.
    :param threshold: Exclusion threshold in standard deviations.
    :return: The batch statistics used for the decision.
    :raises QCError: If no sample is retained.
    """
    counted = [s for s in samples if s.run_status == RunStatus.COUNTED]
    stats = compute_batch_statistics([s.raw_count for s in counted], threshold)
    logger.info(f"QC: Mean={stats.mean:.2f}, SD={stats.std:.2f}, cutoff={stats.cutoff:.2f} "
                f"(threshold {threshold} SD)")

    for sample, z in zip(counted, stats.z_scores):
        sample.z_score = z
        if is_low_yield(z, stats.std, threshold):
            sample.set_qc(QCStatus.EXCLUDED, f"z-score {z:.3f} < -{threshold} (count {sample.raw_count} < cutoff {stats.cutoff:.2f})")
        else:
            sample.set_qc(QCStatus.RETAINED)

    excluded = [s for s in counted if s.qc_status == QCStatus.EXCLUDED]
    if excluded:
        logger.info("Excluded samples with low fragment counts:")
        for s in excluded:
            logger.info(f"  {s.identity} => {s.raw_count}")

    if not any(s.qc_status == QCStatus.RETAINED for s in counted):
        raise QCError(f"No samples pass the QC cutoff ({len(counted)} counted, {len(excluded)} excluded)")

    return stats


def select_target_depth(samples: List[Sample]) -> int:
    """
    Fix the target depth as the smallest yield among retained samples and move
    those samples to FILTERED.

    :param samples: All samples of the batch, after apply_qc_filter.
    :return: The target depth.
    :raises QCError: If no sample is retained.
    """
    retained = [s for s in samples if s.qc_status == QCStatus.RETAINED]
    if not retained:
        raise QCError("Cannot select a target depth without retained samples")

    target = min(s.raw_count for s in retained)
    for s in retained:
        s.target_depth = target
        s.advance(RunStatus.FILTERED)

    logger.info(f"Target depth: {target} fragments across {len(retained)} retained samples")
    return target
