import pytest
import numpy as np
from pathlib import Path

from src.fragment_normalizer.core.errors import QCError
from src.fragment_normalizer.core.models import QCStatus, RunStatus, Sample, SourceKind, StateTransitionError
from src.fragment_normalizer.core.qc import (
    apply_qc_filter,
    compute_batch_statistics,
    is_low_yield,
    select_target_depth
)


def make_batch(counts):
    samples = []
    for i, c in enumerate(counts):
        s = Sample(identity=f"S{i}", path=Path(f"S{i}.bed"), source_kind=SourceKind.COORDINATE)
        s.set_count(c)
        samples.append(s)
    return samples


def test_scenario_low_yield_sample_excluded():
    samples = make_batch([100, 102, 98, 10])
    stats = apply_qc_filter(samples, threshold=1.5)

    assert stats.mean == 77.5
    assert stats.std == pytest.approx(39.0, abs=0.01)
    assert samples[3].z_score == pytest.approx(-1.73, abs=0.01)

    assert [s.qc_status for s in samples] == [QCStatus.RETAINED] * 3 + [QCStatus.EXCLUDED]
    assert "z-score" in samples[3].exclusion_reason

    target = select_target_depth(samples)
    assert target == 98
    assert all(s.target_depth == 98 and s.run_status == RunStatus.FILTERED for s in samples[:3])
    # Excluded samples stop at COUNTED and get no target
    assert samples[3].run_status == RunStatus.COUNTED
    assert samples[3].target_depth is None
    assert samples[3].is_terminal


def test_equal_counts_never_excluded():
    samples = make_batch([50, 50, 50])
    stats = apply_qc_filter(samples, threshold=0.0)
    assert stats.std == 0
    assert all(s.qc_status == QCStatus.RETAINED for s in samples)
    assert select_target_depth(samples) == 50


def test_single_sample_batch():
    samples = make_batch([0])
    apply_qc_filter(samples)
    assert samples[0].qc_status == QCStatus.RETAINED
    assert select_target_depth(samples) == 0


def test_all_excluded_raises_qc_error():
    samples = make_batch([10, 9, 11])
    with pytest.raises(QCError):
        apply_qc_filter(samples, threshold=-5.0)
    assert all(s.qc_status == QCStatus.EXCLUDED for s in samples)
    assert not any(s.run_status == RunStatus.FILTERED for s in samples)


def test_high_yield_is_never_excluded():
    samples = make_batch([10, 10, 10, 100])
    apply_qc_filter(samples, threshold=1.5)
    assert samples[3].z_score > 1.5
    assert all(s.qc_status == QCStatus.RETAINED for s in samples)
    assert select_target_depth(samples) == 10


@pytest.mark.parametrize("counts,threshold", [
    ([100, 102, 98, 10], 1.5),
    ([5, 500, 480, 510, 495, 20], 1.0),
    ([1000, 0, 990, 1010], 1.2),
    ([7, 8, 9, 10, 11, 12, 13], 0.6),
])
def test_exclusion_matches_z_score_rule(counts, threshold):
    samples = make_batch(counts)
    apply_qc_filter(samples, threshold)

    data = np.array(counts, dtype=float)
    mu, sigma = data.mean(), data.std()
    for s, c in zip(samples, counts):
        expected = sigma > 0 and (c - mu) / sigma < -threshold
        assert (s.qc_status == QCStatus.EXCLUDED) == expected

    target = select_target_depth(samples)
    assert target == min(s.raw_count for s in samples if s.qc_status == QCStatus.RETAINED)


def test_failed_counts_take_no_part():
    samples = make_batch([100, 100])
    broken = Sample(identity="broken", path=Path("broken.bed"), source_kind=SourceKind.COORDINATE)
    broken.fail("Counting: unreadable")
    stats = apply_qc_filter(samples + [broken])
    assert stats.n_samples == 2
    assert broken.qc_status == QCStatus.PENDING


def test_compute_batch_statistics_cutoff_floor():
    stats = compute_batch_statistics([0, 0, 0, 1000], threshold=3.0)
    assert stats.cutoff == 0.0
    assert len(stats.z_scores) == 4


def test_is_low_yield_zero_spread():
    assert not is_low_yield(-10.0, 0.0, 1.5)
    assert is_low_yield(-1.6, 1.0, 1.5)
    assert not is_low_yield(-1.5, 1.0, 1.5)


def test_qc_status_is_set_once():
    samples = make_batch([10, 20])
    apply_qc_filter(samples)
    with pytest.raises(StateTransitionError):
        samples[0].set_qc(QCStatus.EXCLUDED)
