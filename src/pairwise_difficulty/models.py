"""
Paired-comparison model implementations for perceived difficulty.

This module fits a Bradley-Terry model with judge effects to pairwise
difficulty judgements. The probability that judge k picks item i as more
difficult than item j is

    P(i > j | k) = sigmoid(gamma_k * (theta_i - theta_j)),

where theta are the item difficulties and gamma_k = exp(alpha_k) scales
how consistently a judge separates items. Item difficulties are centered
to mean zero and judge log-scales are centered to mean zero, so the model
is identified.
"""

import time
from dataclasses import dataclass

import numpy as np
import pandas as pd
from loguru import logger
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from scipy.special import expit, log_expit

from pairwise_difficulty.errors import DataIntegrityError
from pairwise_difficulty.metadata import Cohort

MAX_ITER = 400
CONVERGENCE_THRESHOLD = 1e-4
EPS_ADJUSTMENT = 0.3
JUDGE_PRIOR_SD = 1.0
MAX_STEP = 1.0


@dataclass(frozen=True)
class BradleyTerryResult:
    """
    Output of one cohort's Bradley-Terry fit.

    Parameters
    ----------
    cohort : str
        Name of the cohort the model was fitted to
    items : pd.DataFrame
        One row per item: item, theta, se, wins, comparisons
    judges : pd.DataFrame
        One row per judge: judge, gamma, comparisons
    sep_g : float
        Separation statistic of the item difficulties
    reliability : float
        Separation reliability, sep_g**2 / (1 + sep_g**2)
    converged : bool
        False if the iteration cap was reached first
    iterations : int
        Number of iterations run
    max_change : float
        Largest absolute parameter change in the last iteration
    log_likelihood : float
        Log-likelihood of the observed comparisons at the solution
    """
    cohort: str
    items: pd.DataFrame
    judges: pd.DataFrame
    sep_g: float
    reliability: float
    converged: bool
    iterations: int
    max_change: float
    log_likelihood: float

    @property
    def theta(self) -> pd.Series:
        return self.items.set_index("item")["theta"]

    @property
    def se(self) -> pd.Series:
        return self.items.set_index("item")["se"]


def separation_statistic(theta: np.ndarray, se: np.ndarray) -> float:
    """
    Separation of item estimates relative to their measurement error.

    Args:
        theta (np.ndarray): Item difficulty estimates.
        se (np.ndarray): Standard errors of the estimates.

    Returns:
        float: sqrt(true variance / error variance), where the true variance
            is the observed variance of theta minus the mean squared error,
            floored at zero.
    """
    theta = np.asarray(theta, dtype=float)
    error_variance = np.mean(np.asarray(se, dtype=float) ** 2)
    if len(theta) < 2 or error_variance <= 0:
        return 0.0
    true_variance = max(np.var(theta, ddof=1) - error_variance, 0.0)
    return float(np.sqrt(true_variance / error_variance))


def separation_reliability(sep_g: float) -> float:
    """Reliability ratio sep_g**2 / (1 + sep_g**2), in [0, 1)."""
    if sep_g < 0:
        raise ValueError(f"Separation statistic must be non-negative, got {sep_g}")
    return sep_g**2 / (1.0 + sep_g**2)


def check_connectivity(
    winners: np.ndarray, losers: np.ndarray, items: list, cohort: str | None = None
) -> None:
    """
    Ensure every item takes part in a comparison and all items are linked.

    Args:
        winners (np.ndarray): Item index of each record's winner.
        losers (np.ndarray): Item index of each record's loser.
        items (list): Item identifiers, positionally matching the indices.
        cohort (str | None): Cohort name used in error messages.

    Raises:
        DataIntegrityError: if an item was never compared, or the comparison
            graph falls apart into several components.
    """
    n_items = len(items)
    counts = np.bincount(winners, minlength=n_items) + np.bincount(
        losers, minlength=n_items
    )
    never_compared = [items[i] for i in np.flatnonzero(counts == 0)]
    if never_compared:
        raise DataIntegrityError(
            f"Items {never_compared} were never compared", cohort, never_compared
        )

    graph = coo_matrix(
        (np.ones(len(winners)), (winners, losers)), shape=(n_items, n_items)
    )
    n_components, labels = connected_components(graph, directed=False)
    if n_components > 1:
        components = [
            [items[i] for i in np.flatnonzero(labels == c)]
            for c in range(n_components)
        ]
        raise DataIntegrityError(
            f"Comparison graph is disconnected into {n_components} components: "
            f"{components}",
            cohort,
            [item for component in components[1:] for item in component],
        )


def _laplacian(a: np.ndarray, b: np.ndarray, weights: np.ndarray, n: int) -> np.ndarray:
    """Weighted graph Laplacian of the edges (a, b)."""
    matrix = np.zeros((n, n))
    np.add.at(matrix, (a, a), weights)
    np.add.at(matrix, (b, b), weights)
    np.add.at(matrix, (a, b), -weights)
    np.add.at(matrix, (b, a), -weights)
    return matrix


def _theta_information(theta, gamma, winners, losers, judges, pair_a, pair_b, eps):
    """Observed information matrix of theta, including the epsilon pseudo-counts."""
    n = len(theta)
    g = gamma[judges]
    p = expit(g * (theta[winners] - theta[losers]))
    q = expit(theta[pair_a] - theta[pair_b])
    return _laplacian(winners, losers, g**2 * p * (1 - p), n) + _laplacian(
        pair_a, pair_b, eps * q * (1 - q), n
    )


def _sources(records: pd.DataFrame) -> list:
    if "source" not in records.columns:
        return []
    return sorted(records["source"].astype(str).unique().tolist())


def _validate_records(comparisons: pd.DataFrame, items: list, cohort: str | None) -> None:
    self_compared = comparisons[comparisons["winner"] == comparisons["loser"]]
    if not self_compared.empty:
        offenders = sorted(self_compared["winner"].unique().tolist(), key=str)
        sources = _sources(self_compared)
        raise DataIntegrityError(
            f"{len(self_compared)} records compare an item with itself "
            f"(items {offenders}, sources {sources})",
            cohort,
            offenders,
        )

    known = set(items)
    for column in ("winner", "loser"):
        unknown = comparisons[~comparisons[column].isin(known)]
        if not unknown.empty:
            offenders = sorted(unknown[column].unique().tolist(), key=str)
            raise DataIntegrityError(
                f"Records reference unknown items {offenders} as {column} "
                f"(sources {_sources(unknown)})",
                cohort,
                offenders,
            )


def fit_bradley_terry(
    comparisons: pd.DataFrame,
    items: list | None = None,
    cohort: str | None = None,
    max_iter: int = MAX_ITER,
    conv: float = CONVERGENCE_THRESHOLD,
    eps: float = EPS_ADJUSTMENT,
    judge_effects: bool = True,
    judge_sd: float = JUDGE_PRIOR_SD,
) -> BradleyTerryResult:
    """
    Fit a Bradley-Terry model with judge effects by penalized maximum likelihood.

    Each iteration takes a damped Newton step for the item difficulties,
    followed by a Fisher scoring step for the judge log-scales. Every
    observed item pair receives ``eps / 2`` virtual wins in both directions
    so items that always win or always lose keep finite estimates. The fit
    stops once the largest parameter change drops below ``conv`` or after
    ``max_iter`` iterations, whichever comes first.

    Args:
        comparisons (pd.DataFrame): Records with columns winner, loser and judge.
        items (list | None): Known item set. Defaults to all items in the records.
        cohort (str | None): Cohort name, used for logging and error messages.
        max_iter (int): Iteration cap (default: 400).
        conv (float): Convergence threshold on the maximum parameter change.
        eps (float): Epsilon adjustment added per observed item pair.
        judge_effects (bool): Estimate a scale per judge; if False all judges share gamma = 1.
        judge_sd (float): Standard deviation of the normal prior on judge log-scales.

    Returns:
        BradleyTerryResult: Item and judge estimates with fit diagnostics.

    Raises:
        DataIntegrityError: if there are no records, a record compares an item with
            itself, references an unknown item, or the comparison graph is not connected.
    """
    label = cohort or "all"
    if comparisons.empty:
        raise DataIntegrityError("No comparison records to fit", label)

    if items is None:
        items = sorted(
            pd.unique(comparisons[["winner", "loser"]].to_numpy().ravel()).tolist()
        )
    items = list(items)
    _validate_records(comparisons, items, label)

    logger.info(
        f"Fitting Bradley-Terry model for cohort '{label}': "
        f"{len(comparisons)} comparisons, {len(items)} items"
    )
    start_time = time.time()

    item_index = {item: i for i, item in enumerate(items)}
    winners = comparisons["winner"].map(item_index).to_numpy(dtype=int)
    losers = comparisons["loser"].map(item_index).to_numpy(dtype=int)
    check_connectivity(winners, losers, items, label)

    if "judge" in comparisons.columns:
        judges, judge_ids = pd.factorize(comparisons["judge"].astype(str), sort=True)
    else:
        judges, judge_ids = np.zeros(len(comparisons), dtype=int), pd.Index(["all"])
    n_items, n_judges = len(items), len(judge_ids)

    pairs = np.unique(np.sort(np.column_stack([winners, losers]), axis=1), axis=0)
    pair_a, pair_b = pairs[:, 0], pairs[:, 1]

    theta = np.zeros(n_items)
    alpha = np.zeros(n_judges)
    centering = np.ones((n_items, n_items)) / n_items
    converged = False
    max_change = np.inf
    iteration = 0

    for iteration in range(1, max_iter + 1):
        old_theta = theta.copy()
        old_alpha = alpha.copy()

        # Step 1: item difficulties given judge scales
        gamma = np.exp(alpha)
        g = gamma[judges]
        p = expit(g * (theta[winners] - theta[losers]))
        r = g * (1 - p)
        grad = np.bincount(winners, r, n_items) - np.bincount(losers, r, n_items)

        q = expit(theta[pair_a] - theta[pair_b])
        s = eps / 2 * (1 - 2 * q)
        grad += np.bincount(pair_a, s, n_items) - np.bincount(pair_b, s, n_items)

        info = _theta_information(
            theta, gamma, winners, losers, judges, pair_a, pair_b, eps
        )
        step = np.linalg.solve(info + centering, grad)
        largest = np.max(np.abs(step))
        if largest > MAX_STEP:
            step *= MAX_STEP / largest
        theta = theta + step
        theta -= theta.mean()

        # Step 2: judge scales given item difficulties
        if judge_effects:
            z = g * (theta[winners] - theta[losers])
            p = expit(z)
            grad_a = np.bincount(judges, (1 - p) * z, n_judges) - alpha / judge_sd**2
            info_a = np.bincount(judges, p * (1 - p) * z**2, n_judges) + 1 / judge_sd**2
            alpha = alpha + np.clip(grad_a / info_a, -MAX_STEP, MAX_STEP)
            alpha -= alpha.mean()

        max_change = max(
            np.max(np.abs(theta - old_theta)), np.max(np.abs(alpha - old_alpha))
        )
        logger.debug(f"Iteration {iteration}: max parameter change = {max_change:.6f}")

        if max_change < conv:
            converged = True
            break

    if converged:
        logger.info(f"Converged after {iteration} iterations")
    else:
        logger.warning(
            f"Cohort '{label}' reached the iteration cap of {max_iter} without "
            f"converging (max parameter change {max_change:.6f})"
        )

    gamma = np.exp(alpha)
    info = _theta_information(theta, gamma, winners, losers, judges, pair_a, pair_b, eps)
    se = np.sqrt(np.clip(np.diag(np.linalg.pinv(info)), 0.0, None))

    sep_g = separation_statistic(theta, se)
    reliability = separation_reliability(sep_g)
    log_likelihood = float(
        np.sum(log_expit(gamma[judges] * (theta[winners] - theta[losers])))
    )

    item_table = pd.DataFrame(
        {
            "item": items,
            "theta": theta,
            "se": se,
            "wins": np.bincount(winners, minlength=n_items),
            "comparisons": np.bincount(winners, minlength=n_items)
            + np.bincount(losers, minlength=n_items),
        }
    )
    judge_table = pd.DataFrame(
        {
            "judge": list(judge_ids),
            "gamma": gamma,
            "comparisons": np.bincount(judges, minlength=n_judges),
        }
    )

    logger.info(
        f"Bradley-Terry fit for cohort '{label}' completed in "
        f"{time.time() - start_time:.2f} seconds (sepG = {sep_g:.3f}, "
        f"reliability = {reliability:.3f})"
    )

    return BradleyTerryResult(
        cohort=label,
        items=item_table,
        judges=judge_table,
        sep_g=sep_g,
        reliability=reliability,
        converged=converged,
        iterations=iteration,
        max_change=float(max_change),
        log_likelihood=log_likelihood,
    )


def fit_cohorts(
    records: pd.DataFrame,
    cohorts: list | None = None,
    items: list | None = None,
    **fit_kwargs,
) -> dict[str, BradleyTerryResult]:
    """
    Fit one Bradley-Terry model per judge cohort.

    Args:
        records (pd.DataFrame): Normalized comparison records.
        cohorts (list | None): Cohorts to fit (default: student then expert).
        items (list | None): Known item set shared by all cohorts.
        **fit_kwargs: Passed on to ``fit_bradley_terry``.

    Returns:
        dict[str, BradleyTerryResult]: Results keyed by cohort name.
    """
    if cohorts is None:
        cohorts = list(Cohort)

    results = {}
    for cohort in cohorts:
        name = Cohort.parse(cohort).value
        subset = records[records["cohort"] == name]
        results[name] = fit_bradley_terry(subset, items=items, cohort=name, **fit_kwargs)
    return results


def reliability_report(results: dict[str, BradleyTerryResult]) -> pd.DataFrame:
    """
    Args:
        results (dict[str, BradleyTerryResult]): Fitted cohorts.

    Returns:
        pd.DataFrame: One row per cohort with separation, reliability and
            convergence diagnostics.
    """
    return pd.DataFrame(
        [
            {
                "cohort": name,
                "sep_g": result.sep_g,
                "reliability": result.reliability,
                "converged": result.converged,
                "iterations": result.iterations,
                "n_items": len(result.items),
                "n_judges": len(result.judges),
                "n_comparisons": int(result.judges["comparisons"].sum()),
            }
            for name, result in results.items()
        ]
    )
