"""
Source tag metadata for pairwise comparison studies.

Every comparison table carries a source tag (for example
``students_even_withsolutions``) that encodes which judge cohort produced
it, which item subset was shown and under which condition. This module
derives that metadata from the tag alone.
"""

from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from pairwise_difficulty.errors import ConfigurationError


class Cohort(Enum):
    """
    Enum for the judge populations fitted independently.

    Attributes
    ----------
    STUDENT : str
        Students judging item difficulty
    EXPERT : str
        Subject experts judging item difficulty
    """
    STUDENT = 'student'
    EXPERT = 'expert'

    @classmethod
    def parse(cls, value: "str | Cohort") -> "Cohort":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ConfigurationError(
                f"Unknown cohort '{value}', expected one of {[c.value for c in cls]}"
            ) from None


class Subset(Enum):
    """Which half of the item pool a source shows to its judges."""
    EVEN = 'even'
    ODD = 'odd'
    ALL = 'all'


EXPERT_MARKER = 'experts'
WITHOUT_SOLUTIONS_MARKER = 'withoutsolutions'
DOUBLE_ROUND_MARKER = 'withsolutions2'

N_ITEMS = 20

DEFAULT_COMPARISON_COUNT = 20
DOUBLE_ROUND_COMPARISON_COUNT = 40


@dataclass(frozen=True)
class SourceMetadata:
    """
    Metadata derived from a comparison table's source tag.

    Matching is case-sensitive substring matching. Where several rules of
    one field match, the first rule wins and the field name is recorded
    in ``ambiguous_fields``.

    Parameters
    ----------
    source : str
        The raw source tag
    cohort : Cohort
        ``EXPERT`` if the tag contains "experts", else ``STUDENT``
    subset : Subset
        ``EVEN`` if the tag contains "even", ``ODD`` if it contains "odd",
        else ``ALL``
    solutions_shown : bool
        False if and only if the tag contains "withoutsolutions"
    expected_comparisons : int
        40 if the tag contains "withsolutions2", else 20
    ambiguous_fields : tuple of str
        Fields where more than one rule matched
    """
    source: str
    cohort: Cohort
    subset: Subset
    solutions_shown: bool
    expected_comparisons: int
    ambiguous_fields: tuple = field(default=())

    @classmethod
    def from_tag(cls, source: str) -> "SourceMetadata":
        """
        Derive metadata from a source tag.

        Parameters
        ----------
        source : str
            Source tag of a comparison table

        Returns
        -------
        SourceMetadata
            Metadata for the tag
        """
        ambiguous = []

        cohort = Cohort.EXPERT if EXPERT_MARKER in source else Cohort.STUDENT

        has_even = Subset.EVEN.value in source
        has_odd = Subset.ODD.value in source
        if has_even:
            subset = Subset.EVEN
        elif has_odd:
            subset = Subset.ODD
        else:
            subset = Subset.ALL
        if has_even and has_odd:
            ambiguous.append('subset')

        solutions_shown = WITHOUT_SOLUTIONS_MARKER not in source
        if DOUBLE_ROUND_MARKER in source:
            expected = DOUBLE_ROUND_COMPARISON_COUNT
        else:
            expected = DEFAULT_COMPARISON_COUNT

        if ambiguous:
            logger.warning(
                f"Source tag '{source}' matches several rules for {ambiguous}; "
                f"using the first matching rule"
            )

        return cls(
            source=source,
            cohort=cohort,
            subset=subset,
            solutions_shown=solutions_shown,
            expected_comparisons=expected,
            ambiguous_fields=tuple(ambiguous),
        )

    def as_dict(self) -> dict:
        return {
            'cohort': self.cohort.value,
            'subset': self.subset.value,
            'solutions_shown': self.solutions_shown,
            'expected_comparisons': self.expected_comparisons,
        }
