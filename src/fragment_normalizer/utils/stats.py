"""
Yield distribution statistics.
Population mean, standard deviation and z-scores over fragment counts.
"""

import numpy as np
from scipy.stats import zscore
from typing import List, Tuple


def calculate_yield_stats(counts: List[int]) -> Tuple[float, float]:
    """
    Calculate mean and population standard deviation (ddof=0) of fragment counts.

    :param counts: Fragment counts of every counted sample.
    :return: Tuple (mean, std).
    """
    if not counts:
        return 0.0, 0.0
    data = np.asarray(counts, dtype=float)
    return float(np.mean(data)), float(np.std(data, ddof=0))


def calculate_z_scores(counts: List[int]) -> List[float]:
    """
    Z-score of every count against the batch. A batch with zero spread scores 0 everywhere.

    :param counts: Fragment counts of every counted sample.
    :return: List of z-scores in input order.
    """
    if not counts:
        return []
    data = np.asarray(counts, dtype=float)
    if np.std(data, ddof=0) == 0:
        return [0.0] * len(counts)
    return zscore(data, ddof=0).tolist()
