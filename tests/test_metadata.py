import pytest

from pairwise_difficulty.errors import ConfigurationError
from pairwise_difficulty.metadata import Cohort, SourceMetadata, Subset


@pytest.mark.parametrize(
    "tag, cohort, subset, solutions_shown, expected",
    [
        ("students_even_withsolutions", Cohort.STUDENT, Subset.EVEN, True, 20),
        ("students_odd_withoutsolutions", Cohort.STUDENT, Subset.ODD, False, 20),
        ("students_withsolutions2", Cohort.STUDENT, Subset.ALL, True, 40),
        ("experts_withoutsolutions", Cohort.EXPERT, Subset.ALL, False, 20),
        ("experts_even_withsolutions2", Cohort.EXPERT, Subset.EVEN, True, 40),
    ],
)
def test_metadata_from_tag(tag, cohort, subset, solutions_shown, expected):
    meta = SourceMetadata.from_tag(tag)

    assert meta.source == tag
    assert meta.cohort is cohort
    assert meta.subset is subset
    assert meta.solutions_shown is solutions_shown
    assert meta.expected_comparisons == expected
    assert meta.ambiguous_fields == ()


def test_tag_matching_is_case_sensitive():
    meta = SourceMetadata.from_tag("Experts_EVEN_WithoutSolutions")

    assert meta.cohort is Cohort.STUDENT
    assert meta.subset is Subset.ALL
    assert meta.solutions_shown is True


def test_ambiguous_subset_uses_first_rule_and_is_flagged():
    meta = SourceMetadata.from_tag("students_even_odd_withsolutions")

    assert meta.subset is Subset.EVEN
    assert meta.ambiguous_fields == ("subset",)


def test_metadata_is_deterministic():
    tags = ["experts_withsolutions", "students_odd_withsolutions2"]
    assert [SourceMetadata.from_tag(t) for t in tags] == [
        SourceMetadata.from_tag(t) for t in tags
    ]


def test_cohort_parse():
    assert Cohort.parse("Expert") is Cohort.EXPERT
    assert Cohort.parse(Cohort.STUDENT) is Cohort.STUDENT
    with pytest.raises(ConfigurationError, match="parents"):
        Cohort.parse("parents")
