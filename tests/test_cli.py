import json

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from pairwise_difficulty.cli import DifficultyComparison
from pairwise_difficulty.errors import DataIntegrityError


def _write_inputs(tmp_path, simulate, strengths):
    comparisons = tmp_path / "comparisons"
    comparisons.mkdir()
    for seed, source in enumerate(["students_withsolutions", "experts_withsolutions"]):
        table = simulate(strengths, seed=seed + 20, source=source)
        table.rename(
            columns={"winner": "candidate_chosen", "loser": "candidate_not_chosen"}
        ).drop(columns="source").to_csv(comparisons / f"{source}.csv", index=False)

    grid = np.linspace(-8, 8, 161)
    curves = pd.concat(
        [
            pd.DataFrame(
                {
                    "item": f"S{i + 1:02d}",
                    "theta": grid,
                    "expected_score": 5 * expit(grid - b),
                }
            )
            for i, b in enumerate(strengths)
        ]
    )
    curves.to_csv(tmp_path / "expected_scores.csv", index=False)

    # S08 has no counterpart among the compared items
    item_map = {f"S{i:02d}": i for i in range(1, 8)}
    (tmp_path / "item_map.json").write_text(json.dumps(item_map))
    return comparisons


def test_run_writes_all_tables(tmp_path, simulate, strengths):
    comparisons = _write_inputs(tmp_path, simulate, strengths)
    output = tmp_path / "results"

    summary = DifficultyComparison().run(
        input_dir=str(comparisons),
        expected_scores=str(tmp_path / "expected_scores.csv"),
        item_map=str(tmp_path / "item_map.json"),
        output_path=str(output),
        n_items=8,
    )

    assert summary["records_analyzed"] == 80
    assert summary["items_joined"] == 7
    assert summary["join_misses"] == 1
    assert set(summary["cohorts"]) == {"student", "expert"}

    for name in (
        "difficulty_student.csv",
        "difficulty_expert.csv",
        "judges_student.csv",
        "judges_expert.csv",
        "judge_completeness.csv",
        "reliability.csv",
        "reference_difficulty.csv",
        "comparison_table.csv",
        "correlations.csv",
    ):
        assert (output / name).exists(), name

    table = pd.read_csv(output / "comparison_table.csv")
    assert table["item"].tolist() == list(range(1, 8))
    assert table["reference_difficulty"].notna().all()

    reference = pd.read_csv(output / "reference_difficulty.csv")
    np.testing.assert_allclose(reference["reference_difficulty"], strengths[:7], atol=0.05)

    correlations = pd.read_csv(output / "correlations.csv")
    assert len(correlations) == 3
    against_reference = correlations[correlations["y"] == "reference_difficulty"]
    assert len(against_reference) == 2
    assert (against_reference["coefficient"] > 0.8).all()
    agreement = correlations[correlations["y"] == "expert_theta"]
    assert agreement["coefficient"].iloc[0] > 0.5


def test_run_is_idempotent(tmp_path, simulate, strengths):
    comparisons = _write_inputs(tmp_path, simulate, strengths)
    kwargs = dict(
        input_dir=str(comparisons),
        expected_scores=str(tmp_path / "expected_scores.csv"),
        item_map=str(tmp_path / "item_map.json"),
        n_items=8,
    )

    DifficultyComparison().run(output_path=str(tmp_path / "first"), **kwargs)
    DifficultyComparison().run(output_path=str(tmp_path / "second"), **kwargs)

    for name in ("difficulty_student.csv", "difficulty_expert.csv", "correlations.csv"):
        first = (tmp_path / "first" / name).read_bytes()
        second = (tmp_path / "second" / name).read_bytes()
        assert first == second, name


def test_run_log_file_captures_iterations(tmp_path, simulate, strengths):
    comparisons = _write_inputs(tmp_path, simulate, strengths)
    log_file = tmp_path / "run.log"

    DifficultyComparison().run(
        input_dir=str(comparisons),
        expected_scores=str(tmp_path / "expected_scores.csv"),
        item_map=str(tmp_path / "item_map.json"),
        output_path=str(tmp_path / "results"),
        n_items=8,
        log_file=str(log_file),
    )

    text = log_file.read_text()
    assert "Iteration 1: max parameter change" in text
    assert "Analysis complete" in text


def test_check_output_files(tmp_path, monkeypatch):
    cli = DifficultyComparison()
    assert cli._check_output_files(str(tmp_path))

    (tmp_path / "correlations.csv").write_text("x,y\n")
    assert cli._check_output_files(str(tmp_path), force=True)

    monkeypatch.setattr("builtins.input", lambda prompt: "n")
    assert not cli._check_output_files(str(tmp_path))

    monkeypatch.setattr("builtins.input", lambda prompt: "yes")
    assert cli._check_output_files(str(tmp_path))


def test_run_rejects_items_outside_the_canonical_set(tmp_path, simulate, strengths):
    comparisons = _write_inputs(tmp_path, simulate, strengths)
    for path in comparisons.glob("*.csv"):
        table = pd.read_csv(path)
        extra = pd.DataFrame(
            [["j0", 99, 1]], columns=["judge", "candidate_chosen", "candidate_not_chosen"]
        )
        pd.concat([table, extra], ignore_index=True).to_csv(path, index=False)

    with pytest.raises(DataIntegrityError, match="99") as excinfo:
        DifficultyComparison().run(
            input_dir=str(comparisons),
            expected_scores=str(tmp_path / "expected_scores.csv"),
            item_map=str(tmp_path / "item_map.json"),
            output_path=str(tmp_path / "results"),
        )

    assert excinfo.value.cohort == "student"
    assert excinfo.value.items == [99]
    assert "students_withsolutions" in str(excinfo.value)


def test_run_reports_items_never_compared(tmp_path, simulate, strengths):
    comparisons = _write_inputs(tmp_path, simulate, strengths)

    with pytest.raises(DataIntegrityError, match="never compared") as excinfo:
        DifficultyComparison().run(
            input_dir=str(comparisons),
            expected_scores=str(tmp_path / "expected_scores.csv"),
            item_map=str(tmp_path / "item_map.json"),
            output_path=str(tmp_path / "results"),
            n_items=10,
        )

    assert excinfo.value.items == [9, 10]
