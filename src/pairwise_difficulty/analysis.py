"""
Comparison of perceived difficulty against IRT reference difficulty.

This module derives a reference difficulty per item from IRT expected-score
curves, joins it with the Bradley-Terry estimates of each cohort, and
computes rank correlations between them.
"""

import numpy as np
import pandas as pd
from loguru import logger
from scipy import stats

from pairwise_difficulty.errors import ConfigurationError
from pairwise_difficulty.metadata import Cohort
from pairwise_difficulty.models import BradleyTerryResult

DEFAULT_MAX_SCORE = 5.0
REFERENCE_COLUMN = "reference_difficulty"


def resolve_reference_difficulty(
    expected_scores: pd.DataFrame,
    item_map: dict[str, int],
    max_score: float | dict[str, float] = DEFAULT_MAX_SCORE,
) -> pd.DataFrame:
    """
    Locate, per item, the ability level where the expected score is closest
    to half the maximum attainable score.

    Ability levels are searched in ascending order and the first level with
    the smallest absolute distance wins, so when two levels are equally close
    the lower ability is returned. Items missing from ``item_map`` are dropped.

    Args:
        expected_scores (pd.DataFrame): Columns item, theta, expected_score.
        item_map (dict[str, int]): Expected-score item id to canonical item number.
        max_score (float | dict[str, float]): Maximum attainable score, either
            shared by all items or keyed by expected-score item id (default: 5.0).

    Returns:
        pd.DataFrame: Columns item, source_item, reference_difficulty,
            expected_score and target, sorted by item.
    """
    rows = []
    dropped = []
    for source_item, curve in expected_scores.groupby("item", sort=True):
        if source_item not in item_map:
            dropped.append(source_item)
            continue

        if isinstance(max_score, dict):
            if source_item not in max_score:
                raise ConfigurationError(
                    f"No maximum score configured for item '{source_item}'"
                )
            target = max_score[source_item] / 2
        else:
            target = max_score / 2

        curve = curve.dropna(subset=["theta", "expected_score"]).sort_values(
            "theta", kind="mergesort"
        )
        if curve.empty:
            logger.warning(f"Item '{source_item}' has no expected-score samples")
            continue

        distance = np.abs(curve["expected_score"].to_numpy() - target)
        closest = int(np.argmin(distance))
        rows.append(
            {
                "item": item_map[source_item],
                "source_item": source_item,
                REFERENCE_COLUMN: float(curve["theta"].iloc[closest]),
                "expected_score": float(curve["expected_score"].iloc[closest]),
                "target": target,
            }
        )

    if dropped:
        logger.info(
            f"Dropped {len(dropped)} expected-score items without a mapping: {dropped}"
        )

    reference = pd.DataFrame(
        rows,
        columns=["item", "source_item", REFERENCE_COLUMN, "expected_score", "target"],
    )
    logger.info(f"Resolved reference difficulty for {len(reference)} items")
    return reference.sort_values("item", kind="mergesort").reset_index(drop=True)


def join_difficulties(
    results: dict[str, BradleyTerryResult], reference: pd.DataFrame
) -> tuple[pd.DataFrame, list]:
    """
    Inner-join cohort estimates with the reference difficulty.

    Args:
        results (dict[str, BradleyTerryResult]): Fitted cohorts keyed by name.
        reference (pd.DataFrame): Output of ``resolve_reference_difficulty``.

    Returns:
        tuple[pd.DataFrame, list]:
            Joined table with ``<cohort>_theta`` and ``<cohort>_se`` columns,
            the reference difficulty and, when both cohorts are present, the
            perception gap (student theta minus expert theta),
            List of estimated items without a reference difficulty
    """
    if not results:
        raise ConfigurationError("No cohort estimates to join")

    estimates = None
    for name, result in results.items():
        table = result.items[["item", "theta", "se"]].rename(
            columns={"theta": f"{name}_theta", "se": f"{name}_se"}
        )
        estimates = table if estimates is None else estimates.merge(
            table, on="item", how="outer"
        )

    joined = estimates.merge(
        reference[["item", REFERENCE_COLUMN]], on="item", how="inner"
    )
    join_misses = sorted(set(estimates["item"]) - set(joined["item"]), key=str)
    if join_misses:
        logger.warning(
            f"{len(join_misses)} of {len(estimates)} items have no reference "
            f"difficulty and are excluded: {join_misses}"
        )

    student, expert = Cohort.STUDENT.value, Cohort.EXPERT.value
    if student in results and expert in results:
        joined["perception_gap"] = joined[f"{student}_theta"] - joined[f"{expert}_theta"]

    joined = joined.sort_values("item", kind="mergesort").reset_index(drop=True)
    return joined, join_misses


def rank_correlation(x, y, confidence: float = 0.95) -> dict[str, float]:
    """
    Spearman rank correlation with a Fisher-z confidence interval.

    The interval uses the Bonett-Wright standard error
    sqrt((1 + r**2 / 2) / (n - 3)) and is undefined for fewer than four pairs.

    Args:
        x (array-like): First variable.
        y (array-like): Second variable.
        confidence (float): Confidence level of the interval (default: 0.95).

    Returns:
        dict[str, float]: coefficient, p_value, ci_lower, ci_upper and n.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    mask = ~(np.isnan(x) | np.isnan(y))
    x, y = x[mask], y[mask]
    n = len(x)

    if n < 3:
        logger.warning(f"Spearman correlation needs at least 3 pairs, got {n}")
        return {
            "coefficient": np.nan,
            "p_value": np.nan,
            "ci_lower": np.nan,
            "ci_upper": np.nan,
            "n": n,
        }

    coefficient, p_value = stats.spearmanr(x, y)
    ci_lower = ci_upper = np.nan
    if n > 3 and not np.isnan(coefficient):
        r = np.clip(coefficient, -1 + 1e-12, 1 - 1e-12)
        se = np.sqrt((1 + r**2 / 2) / (n - 3))
        z_crit = stats.norm.ppf(0.5 + confidence / 2)
        ci_lower = float(np.tanh(np.arctanh(r) - z_crit * se))
        ci_upper = float(np.tanh(np.arctanh(r) + z_crit * se))

    return {
        "coefficient": float(coefficient),
        "p_value": float(p_value),
        "ci_lower": ci_lower,
        "ci_upper": ci_upper,
        "n": n,
    }


def correlation_report(
    joined: pd.DataFrame,
    cohorts: list[str] | None = None,
    confidence: float = 0.95,
) -> pd.DataFrame:
    """
    Args:
        joined (pd.DataFrame): Output of ``join_difficulties``.
        cohorts (list[str] | None): Cohorts to correlate; defaults to every
            ``<cohort>_theta`` column in ``joined``.
        confidence (float): Confidence level of the intervals.

    Returns:
        pd.DataFrame: One row per pairing: each cohort against the reference
            difficulty, plus student against expert when both are present.
    """
    if cohorts is None:
        cohorts = [c[: -len("_theta")] for c in joined.columns if c.endswith("_theta")]

    pairings = [(f"{cohort}_theta", REFERENCE_COLUMN) for cohort in cohorts]
    student, expert = Cohort.STUDENT.value, Cohort.EXPERT.value
    if student in cohorts and expert in cohorts:
        pairings.append((f"{student}_theta", f"{expert}_theta"))

    rows = []
    for first, second in pairings:
        result = rank_correlation(joined[first], joined[second], confidence)
        logger.info(
            f"Spearman {first} vs {second}: rho = {result['coefficient']:.3f}, "
            f"p = {result['p_value']:.4f}, n = {result['n']}"
        )
        rows.append({"x": first, "y": second, **result})
    return pd.DataFrame(rows)


def judge_completeness(records: pd.DataFrame) -> pd.DataFrame:
    """
    Compare each judge's number of comparisons with the count the source expects.

    Args:
        records (pd.DataFrame): Normalized comparison records.

    Returns:
        pd.DataFrame: Columns cohort, source, judge, comparisons,
            expected_comparisons and complete.
    """
    summary = (
        records.groupby(["cohort", "source", "judge"], sort=True)
        .agg(
            comparisons=("winner", "size"),
            expected_comparisons=("expected_comparisons", "first"),
        )
        .reset_index()
    )
    summary["complete"] = summary["comparisons"] == summary["expected_comparisons"]

    incomplete = int((~summary["complete"]).sum())
    if incomplete:
        logger.warning(
            f"{incomplete} of {len(summary)} judges did not make the expected "
            f"number of comparisons"
        )
    return summary
