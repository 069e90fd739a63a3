from itertools import combinations

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit


def _simulate(strengths, n_judges=5, n_records=40, seed=0, source="students_withsolutions"):
    """Bradley-Terry comparisons on items 1..len(strengths); the first records cover every pair."""
    rng = np.random.default_rng(seed)
    strengths = np.asarray(strengths, dtype=float)
    pairs = list(combinations(range(len(strengths)), 2))

    rows = []
    for r in range(n_records):
        if r < len(pairs):
            a, b = pairs[r]
        else:
            a, b = rng.choice(len(strengths), size=2, replace=False)
        if rng.random() < expit(strengths[a] - strengths[b]):
            winner, loser = a, b
        else:
            winner, loser = b, a
        rows.append(
            {
                "source": source,
                "judge": f"j{r % n_judges}",
                "winner": int(winner) + 1,
                "loser": int(loser) + 1,
            }
        )
    return pd.DataFrame(rows)


@pytest.fixture
def simulate():
    return _simulate


@pytest.fixture
def strengths():
    return np.linspace(-7.0, 7.0, 8)
