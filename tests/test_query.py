"""
Tests for snapshot text search.

Run with: pytest tests/test_query.py -v
"""
import pytest

from tabpilot.snapshot.query import (
    format_search_results,
    is_structural_line,
    match_glob,
    parse_search_query,
    search_snapshot_text,
)

SNAPSHOT_TEXT = "\n".join([
    ' uid=r RootWebArea "Page"',
    '  uid=a button "Alpha"',
    '  uid=x StaticText "filler one"',
    '  generic',
    '  uid=y StaticText "filler two"',
    '  uid=z StaticText "filler three"',
    '  uid=w StaticText "filler four"',
    '  uid=b link "Beta"',
    '  uid=c StaticText "after beta"',
])


# =============================================================================
# Test search_snapshot_text
# =============================================================================

class TestSearch:
    """Tests for matching and context collection."""

    def test_or_terms_each_get_context(self):
        result = search_snapshot_text(SNAPSHOT_TEXT, "Alpha|Beta", case_sensitive=True)

        assert result.matched_lines == [1, 7]
        assert result.total_matches == 2
        assert result.context_lines == [0, 1, 2, 6, 7, 8]

    def test_overlapping_context_has_no_duplicates(self):
        result = search_snapshot_text(SNAPSHOT_TEXT, "Alpha|filler one")

        assert result.matched_lines == [1, 2]
        assert result.context_lines == sorted(set(result.context_lines))
        assert result.context_lines == [0, 1, 2, 4]

    def test_structural_lines_are_not_context(self):
        result = search_snapshot_text(SNAPSHOT_TEXT, "filler two", context_levels=1)

        assert result.context_lines == [2, 4, 5]

    def test_context_levels(self):
        assert search_snapshot_text(SNAPSHOT_TEXT, "filler three", context_levels=0).context_lines == [5]
        assert search_snapshot_text(SNAPSHOT_TEXT, "filler three", context_levels=2).context_lines == [
            2, 4, 5, 6, 7,
        ]

    def test_case_insensitive_by_default(self):
        assert search_snapshot_text(SNAPSHOT_TEXT, "alpha").total_matches == 1
        assert search_snapshot_text(SNAPSHOT_TEXT, "alpha", case_sensitive=True).total_matches == 0

    def test_beta_matches_both_lines_case_insensitively(self):
        assert search_snapshot_text(SNAPSHOT_TEXT, "beta").matched_lines == [7, 8]

    def test_blank_query(self):
        result = search_snapshot_text(SNAPSHOT_TEXT, " | ")

        assert result.total_matches == 0
        assert result.context_lines == []

    def test_negative_context_rejected(self):
        with pytest.raises(ValueError):
            search_snapshot_text(SNAPSHOT_TEXT, "Alpha", context_levels=-1)


class TestGlobSearch:
    """Tests for glob patterns."""

    def test_glob_auto_detected(self):
        assert search_snapshot_text(SNAPSHOT_TEXT, "button*Alpha").matched_lines == [1]
        assert search_snapshot_text(SNAPSHOT_TEXT, '"Bet?"').matched_lines == [7]

    def test_brace_alternatives(self):
        assert search_snapshot_text(SNAPSHOT_TEXT, "{Alpha,Beta}", case_sensitive=True).matched_lines == [1, 7]

    def test_literal_mode_forced(self):
        assert search_snapshot_text(SNAPSHOT_TEXT, "button*Alpha", use_glob=False).total_matches == 0

    def test_match_glob(self):
        assert match_glob("Submit order", "sub*order")
        assert not match_glob("Submit order", "sub*order", case_sensitive=True)
        assert match_glob("file1.txt", "file[0-9].txt")
        assert match_glob("Xlpha", "[!A]lpha", case_sensitive=True)
        assert not match_glob("Alpha", "[!A]lpha", case_sensitive=True)
        assert match_glob("save draft", "{save,load} d?aft")

    def test_leading_caret_in_class_is_literal(self):
        assert match_glob("x^y", "x[^a]y")
        assert match_glob("xay", "x[^a]y")
        assert not match_glob("xby", "x[^a]y")

    def test_invalid_glob_never_matches(self):
        assert not match_glob("abc", "[z-a]")


class TestHelpers:
    """Tests for query parsing and line classification."""

    def test_parse_search_query(self):
        assert parse_search_query(" Alpha | | Beta ") == ["Alpha", "Beta"]

    def test_is_structural_line(self):
        assert is_structural_line("    generic")
        assert is_structural_line("  navigation")
        assert not is_structural_line('  uid=a button "Alpha"')


# =============================================================================
# Test format_search_results
# =============================================================================

class TestFormatSearchResults:
    """Tests for grouped, marked output."""

    def test_groups_and_marks(self):
        result = search_snapshot_text(SNAPSHOT_TEXT, "Alpha|Beta", case_sensitive=True)

        output = format_search_results(SNAPSHOT_TEXT, result, "Alpha|Beta")

        assert output == "\n".join([
            ' uid=r RootWebArea "Page"',
            '  ✓uid=a button "Alpha"',
            '  uid=x StaticText "filler one"',
            '----',
            '  uid=w StaticText "filler four"',
            '  ✓uid=b link "Beta"',
            '  uid=c StaticText "after beta"',
        ])

    def test_close_matches_share_a_group(self):
        result = search_snapshot_text(SNAPSHOT_TEXT, "filler one|filler two", context_levels=0)

        output = format_search_results(SNAPSHOT_TEXT, result, "filler one|filler two")

        assert "----" not in output
        assert output.count("✓") == 2

    def test_no_matches(self):
        result = search_snapshot_text(SNAPSHOT_TEXT, "Gamma")

        assert format_search_results(SNAPSHOT_TEXT, result, "Gamma") == "No matches found for: Gamma"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
