import random
from typing import Optional, Sequence

# Relative traffic per hour before midnight: index 0 is 00:00, index 1 is 23:00
# and so on, giving a morning and an evening peak once reversed.
HOUR_WEIGHTS = list(reversed([1, 1, 1, 2, 2, 3, 3, 5, 8, 9, 6, 5, 10, 12, 7, 4, 5, 7, 10, 12, 14, 10, 8, 3]))


def pick_weighted(weights: Sequence[int], rng: Optional[random.Random] = None) -> int:
    """Return an index into `weights` with probability proportional to its weight.

    Zero weights are never returned. Raises ValueError when there is nothing to
    pick from (empty sequence or all weights zero).
    """
    total = sum(int(w) for w in weights)
    if total <= 0:
        raise ValueError("pick_weighted needs at least one positive weight")
    rng = rng or random
    remaining = rng.randint(1, total)
    for index, weight in enumerate(weights):
        remaining -= int(weight)
        if remaining <= 0:
            return index
    # unreachable while the weights sum to `total`
    raise ValueError("weights changed while sampling")
