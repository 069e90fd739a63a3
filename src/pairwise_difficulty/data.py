"""
Data loading utilities for pairwise difficulty analysis.

This module provides functions to load pairwise comparison tables,
normalize them to the winner/loser schema, and read the IRT expected-score
table and the item identifier remapping used as the reference.
"""

import json
from pathlib import Path

import pandas as pd
from loguru import logger

from pairwise_difficulty.errors import ConfigurationError
from pairwise_difficulty.metadata import SourceMetadata

SOURCE_COLUMN = "source"
JUDGE_COLUMN = "judge"
CHOSEN_COLUMN = "candidate_chosen"
NOT_CHOSEN_COLUMN = "candidate_not_chosen"

RAW_COLUMNS = (JUDGE_COLUMN, CHOSEN_COLUMN, NOT_CHOSEN_COLUMN)
NORMALIZED_COLUMNS = (
    SOURCE_COLUMN,
    JUDGE_COLUMN,
    "winner",
    "loser",
    "cohort",
    "subset",
    "solutions_shown",
    "expected_comparisons",
)
EXPECTED_SCORE_COLUMNS = ("item", "theta", "expected_score")


def concat_comparison_tables(tables: dict[str, pd.DataFrame]) -> pd.DataFrame:
    """
    Args:
        tables (dict[str, pd.DataFrame]): comparison tables keyed by source tag

    Returns:
        pd.DataFrame: all records in one table, with a ``source`` column
            naming the table each record came from

    Raises:
        ConfigurationError: if no tables are given or the column sets differ
    """
    if not tables:
        raise ConfigurationError("No comparison tables to load")

    reference_source, reference = next(iter(tables.items()))
    reference_columns = set(reference.columns)

    frames = []
    for source, table in tables.items():
        columns = set(table.columns)
        if columns != reference_columns:
            missing = sorted(reference_columns - columns)
            extra = sorted(columns - reference_columns)
            raise ConfigurationError(
                f"Columns of source '{source}' do not match source "
                f"'{reference_source}': missing {missing}, unexpected {extra}"
            )
        if SOURCE_COLUMN in table.columns:
            raise ConfigurationError(
                f"Table of source '{source}' already has a '{SOURCE_COLUMN}' column"
            )
        frame = table[list(reference.columns)].copy()
        frame.insert(0, SOURCE_COLUMN, source)
        frames.append(frame)

    combined = pd.concat(frames, ignore_index=True)
    logger.info(
        f"Loaded {len(combined)} comparison records from {len(tables)} sources"
    )
    return combined


def read_comparison_tables(input_dir: str, pattern: str = "*.csv") -> pd.DataFrame:
    """
    Args:
        input_dir (str): directory holding one CSV file per source tag
        pattern (str, optional): glob pattern for comparison files (default: '*.csv')

    Returns:
        pd.DataFrame: concatenated comparison records, see ``concat_comparison_tables``
    """
    paths = sorted(Path(input_dir).glob(pattern))
    if not paths:
        raise ConfigurationError(f"No files matching '{pattern}' in {input_dir}")

    tables = {}
    origins = {}
    for path in paths:
        try:
            table = pd.read_csv(path, dtype={JUDGE_COLUMN: str})
        except (FileNotFoundError, IOError) as e:
            logger.error(f"Error loading comparison table from {path}: {e}")
            raise
        source = _source_tag(path, table)
        if source in tables:
            raise ConfigurationError(
                f"Source tag '{source}' appears in both {origins[source]} and {path}"
            )
        tables[source] = table
        origins[source] = path

    return concat_comparison_tables(tables)


def _source_tag(path: Path, table: pd.DataFrame) -> str:
    """The table's ``study`` column if it holds a single value, else the file stem."""
    if "study" in table.columns:
        studies = table["study"].dropna().unique()
        if len(studies) == 1:
            return str(studies[0])
        if len(studies) > 1:
            raise ConfigurationError(
                f"File {path} mixes several study tags: {sorted(map(str, studies))}"
            )
    return path.stem


def normalize_records(records: pd.DataFrame) -> pd.DataFrame:
    """
    Rename chosen/not-chosen to winner/loser and attach source tag metadata.

    Every input record yields exactly one output record.

    Args:
        records (pd.DataFrame): output of ``concat_comparison_tables``

    Returns:
        pd.DataFrame: records with the columns in ``NORMALIZED_COLUMNS``
    """
    required = (SOURCE_COLUMN,) + RAW_COLUMNS
    missing = [c for c in required if c not in records.columns]
    if missing:
        raise ConfigurationError(
            f"Comparison records lack required columns {missing}. "
            f"Available: {list(records.columns)}"
        )

    normalized = records.rename(
        columns={CHOSEN_COLUMN: "winner", NOT_CHOSEN_COLUMN: "loser"}
    )
    normalized[JUDGE_COLUMN] = normalized[JUDGE_COLUMN].astype(str)

    sources = normalized[SOURCE_COLUMN].astype(str)
    metadata = pd.DataFrame(
        [SourceMetadata.from_tag(s).as_dict() for s in sources.unique()],
        index=sources.unique(),
        columns=list(NORMALIZED_COLUMNS[4:]),
    )
    derived = metadata.loc[sources.to_numpy()].reset_index(drop=True)
    derived.index = normalized.index

    for column in derived.columns:
        normalized[column] = derived[column]

    cohort_counts = normalized["cohort"].value_counts().to_dict()
    logger.info(f"Normalized {len(normalized)} records: {cohort_counts}")
    return normalized[list(NORMALIZED_COLUMNS)]


def load_expected_scores(file_path: str) -> pd.DataFrame:
    """
    Args:
        file_path (str): CSV file with columns item, theta, expected_score

    Returns:
        pd.DataFrame: expected-score curve samples, one row per item and ability level
    """
    try:
        table = pd.read_csv(file_path, dtype={"item": str})
    except (FileNotFoundError, IOError) as e:
        logger.error(f"Error loading expected scores from {file_path}: {e}")
        raise

    missing = [c for c in EXPECTED_SCORE_COLUMNS if c not in table.columns]
    if missing:
        raise ConfigurationError(
            f"Expected-score table {file_path} lacks columns {missing}"
        )
    return table[list(EXPECTED_SCORE_COLUMNS)]


def load_item_map(file_path: str) -> dict[str, int]:
    """
    Args:
        file_path (str): JSON object mapping expected-score item ids to item numbers

    Returns:
        dict[str, int]: the remapping table
    """
    data = load_json_data(file_path)
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Item map {file_path} must be a JSON object, got {type(data).__name__}"
        )

    item_map = {}
    for key, value in data.items():
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(
                f"Item map {file_path}: '{key}' maps to {value!r}, expected an integer"
            )
        item_map[str(key)] = value

    duplicates = pd.Series(list(item_map.values())).loc[lambda s: s.duplicated()]
    if not duplicates.empty:
        raise ConfigurationError(
            f"Item map {file_path} assigns items {sorted(set(duplicates))} more than once"
        )
    logger.info(f"Loaded item map with {len(item_map)} entries from {file_path}")
    return item_map


def load_json_data(file_path: str):
    """
    Args:
        file_path (str): Path to the JSON file

    Returns:
        the decoded JSON document
    """
    try:
        with open(file_path, "r") as f:
            data = json.load(f)
        return data
    except (FileNotFoundError, IOError) as e:
        logger.error(f"Error loading JSON data from {file_path}: {e}")
        raise
    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from {file_path}: {e}")
        raise
