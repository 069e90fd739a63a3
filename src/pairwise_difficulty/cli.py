#!/usr/bin/env python
"""
Difficulty Comparison CLI

This script compares perceived item difficulty, estimated from pairwise
comparison judgements of students and experts, with the empirical
difficulty of an IRT model. It loads the comparison tables, fits one
Bradley-Terry model per cohort, resolves the IRT reference difficulty and
writes difficulty, reliability and correlation tables.


Examples:
    # Run with default parameters
    pairwise-difficulty --input_dir=../data/comparisons --expected_scores=../data/expected_scores.csv \
        --item_map=../data/item_map.json --output_path=../results/

    # Fit without judge effects and a tighter convergence threshold
    pairwise-difficulty --judge_effects=False --conv=1e-6

    # Show help information
    pairwise-difficulty --help
"""

import os
import sys
import time

import fire
from loguru import logger

from pairwise_difficulty.analysis import (
    correlation_report,
    join_difficulties,
    judge_completeness,
    resolve_reference_difficulty,
)
from pairwise_difficulty.data import (
    load_expected_scores,
    load_item_map,
    normalize_records,
    read_comparison_tables,
)
from pairwise_difficulty.metadata import N_ITEMS
from pairwise_difficulty.models import fit_cohorts, reliability_report
from pairwise_difficulty.utils import add_log_file, enable_logging

OUTPUT_FILES = (
    "judge_completeness.csv",
    "reliability.csv",
    "reference_difficulty.csv",
    "comparison_table.csv",
    "correlations.csv",
)


class DifficultyComparison:
    """
    Perceived versus empirical difficulty CLI.

    This class provides methods to fit paired-comparison models per judge
    cohort and compare the estimates with IRT reference difficulties.
    """

    def run(
        self,
        input_dir="../data/comparisons",
        expected_scores="../data/expected_scores.csv",
        item_map="../data/item_map.json",
        output_path="../results/",
        n_items=N_ITEMS,
        max_iter=400,
        conv=1e-4,
        eps=0.3,
        judge_effects=True,
        max_score=5.0,
        confidence=0.95,
        check_existing=False,
        force=False,
        log_file=None,
    ):
        """
        Run the difficulty comparison.

        Args:
            input_dir (str): Directory with one comparison CSV per source tag.
            expected_scores (str): CSV with columns item, theta, expected_score.
            item_map (str): JSON file mapping expected-score item ids to item numbers.
            output_path (str): Path to save results.
            n_items (int): Size of the canonical item set 1..n_items (default: 20).
                Records naming any other item abort the fit of their cohort.
            max_iter (int): Iteration cap of the Bradley-Terry fit.
            conv (float): Convergence threshold of the Bradley-Terry fit.
            eps (float): Epsilon adjustment per observed item pair.
            judge_effects (bool): Estimate a scale parameter per judge.
            max_score (float): Maximum attainable score per item.
            confidence (float): Confidence level of the correlation intervals.
            check_existing (bool): Check for existing output files and ask before overwriting.
            force (bool): Force overwrite existing output files.
            log_file (str | None): Also write a DEBUG log, including iteration traces, to this file.

        Returns:
            dict: Summary of the run.
        """
        start_time = time.time()
        sink_id = add_log_file(log_file) if log_file else None
        logger.info(
            f"Starting difficulty comparison with judge_effects={judge_effects}, "
            f"max_iter={max_iter}"
        )

        os.makedirs(output_path, exist_ok=True)

        if check_existing and not self._check_output_files(output_path, force):
            sys.exit(0)

        logger.info(f"Loading comparison tables from {input_dir}")
        records = normalize_records(read_comparison_tables(input_dir))
        judge_completeness(records).to_csv(
            os.path.join(output_path, "judge_completeness.csv"), index=False
        )

        items = list(range(1, int(n_items) + 1))
        results = fit_cohorts(
            records,
            items=items,
            max_iter=max_iter,
            conv=conv,
            eps=eps,
            judge_effects=judge_effects,
        )
        for name, result in results.items():
            result.items.to_csv(
                os.path.join(output_path, f"difficulty_{name}.csv"), index=False
            )
            result.judges.to_csv(
                os.path.join(output_path, f"judges_{name}.csv"), index=False
            )

        reliability = reliability_report(results)
        reliability.to_csv(os.path.join(output_path, "reliability.csv"), index=False)

        logger.info(f"Resolving reference difficulty from {expected_scores}")
        reference = resolve_reference_difficulty(
            load_expected_scores(expected_scores), load_item_map(item_map), max_score
        )
        reference.to_csv(
            os.path.join(output_path, "reference_difficulty.csv"), index=False
        )

        joined, join_misses = join_difficulties(results, reference)
        joined.to_csv(os.path.join(output_path, "comparison_table.csv"), index=False)

        correlations = correlation_report(
            joined, cohorts=list(results), confidence=confidence
        )
        correlations.to_csv(os.path.join(output_path, "correlations.csv"), index=False)

        elapsed_time = time.time() - start_time
        logger.info(f"Analysis complete! Total time: {elapsed_time:.2f} seconds")
        if sink_id is not None:
            logger.remove(sink_id)

        return {
            "records_analyzed": len(records),
            "cohorts": {
                name: {
                    "reliability": result.reliability,
                    "converged": result.converged,
                }
                for name, result in results.items()
            },
            "items_joined": len(joined),
            "join_misses": len(join_misses),
            "elapsed_time": elapsed_time,
        }

    def _check_output_files(self, output_path, force=False):
        """
        Check if output files already exist and ask for confirmation before overwriting.

        Args:
            output_path (str): Path to the output directory
            force (bool): Force overwrite existing output files

        Returns:
            bool: True if it's safe to proceed with analysis, False otherwise
        """
        expected_files = [os.path.join(output_path, f) for f in OUTPUT_FILES]
        existing_files = [f for f in expected_files if os.path.exists(f)]

        if existing_files and not force:
            logger.warning("The following output files already exist:")
            for f in existing_files:
                logger.warning(f"  - {f}")

            while True:
                response = input("\nOverwrite these files? [y/N]: ").lower()
                if response in ["y", "yes"]:
                    return True
                elif response in ["", "n", "no"]:
                    logger.info(
                        "Analysis aborted. Use --force to overwrite files without prompting."
                    )
                    return False
                else:
                    print("Please answer 'y' or 'n'.")

        return True


def main():
    """Main function to create and run the Difficulty Comparison CLI."""
    enable_logging()
    fire.Fire(DifficultyComparison().run, name="pairwise-difficulty")


if __name__ == "__main__":
    main()
