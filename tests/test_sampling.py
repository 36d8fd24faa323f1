import pytest

from src.fragment_normalizer.core.sampling import RandomSelector, selector_for_sample


def test_choose_k_exact_and_distinct():
    universe = [f"frag{i}" for i in range(1000)]
    picks = RandomSelector(seed=1).choose_k(universe, 250)
    assert len(picks) == 250
    assert len(set(picks)) == 250
    assert set(picks) <= set(universe)


def test_choose_k_keeps_universe_order():
    universe = list(range(100))
    picks = RandomSelector(seed=3).choose_k(universe, 10)
    assert picks == sorted(picks)


def test_choose_all_is_identity():
    universe = ['a', 'b', 'c']
    assert RandomSelector().choose_k(universe, 3) == universe


def test_choose_zero():
    assert RandomSelector().choose_k([1, 2, 3], 0) == []


def test_choose_more_than_universe():
    with pytest.raises(ValueError):
        RandomSelector().choose_k([1, 2], 3)


def test_seeded_selection_is_reproducible():
    universe = list(range(500))
    assert RandomSelector(seed=42).choose_k(universe, 50) == RandomSelector(seed=42).choose_k(universe, 50)


def test_sample_selector_depends_on_seed_and_identity():
    universe = list(range(10000))
    a = selector_for_sample("sampleA", seed=7).choose_k(universe, 100)
    again = selector_for_sample("sampleA", seed=7).choose_k(universe, 100)
    other = selector_for_sample("sampleB", seed=7).choose_k(universe, 100)
    assert a == again
    assert a != other


def test_every_item_can_be_selected():
    universe = list(range(20))
    selector = RandomSelector(seed=11)
    seen = set()
    for _ in range(200):
        seen.update(selector.choose_k(universe, 5))
    assert seen == set(universe)
