"""
Uniform random selection without replacement.
Selectors are injectable so that tests can substitute a deterministic one.
"""

import zlib
import numpy as np
from typing import List, Optional, Protocol, Sequence, TypeVar

T = TypeVar("T")


class Selector(Protocol):
    def choose_k(self, universe: Sequence[T], k: int) -> List[T]:
        ...


class RandomSelector:
    """
    Draws k distinct items uniformly at random. Selected items keep their universe order.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def choose_k(self, universe: Sequence[T], k: int) -> List[T]:
        n = len(universe)
        if k < 0 or k > n:
            raise ValueError(f"Cannot choose {k} items from a universe of {n}")
        if k == n:
            return list(universe)
        indices = np.sort(self.rng.choice(n, size=k, replace=False))
        return [universe[i] for i in indices]


def selector_for_sample(identity: str, seed: Optional[int] = None) -> RandomSelector:
    """
    Build the selector for one sample. With a run seed, each sample gets its own
    reproducible stream independent of scheduling order.
    """
    if seed is None:
        return RandomSelector()
    return RandomSelector(np.random.SeedSequence([seed, zlib.crc32(identity.encode("utf-8"))]))
