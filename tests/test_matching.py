"""Tests for Levenshtein distance and zone name suggestions."""

from portalmap.matching import FuzzyMatcher, levenshtein_distance, suggest_zone_names


def test_levenshtein_basic_distances():
    assert levenshtein_distance("", "") == 0
    assert levenshtein_distance("", "ABC") == 3
    assert levenshtein_distance("ABC", "") == 3
    assert levenshtein_distance("ZONE A", "ZONE A") == 0
    assert levenshtein_distance("ZOME A", "ZONE A") == 1
    assert levenshtein_distance("KITTEN", "SITTING") == 3


def test_levenshtein_counts_transposition_as_two_edits():
    assert levenshtein_distance("AB", "BA") == 2


def test_levenshtein_is_symmetric():
    assert levenshtein_distance("XASES", "XASOS-A") == levenshtein_distance("XASOS-A", "XASES")


def test_exact_match_is_valid_with_single_suggestion():
    result = suggest_zone_names("ZONE A", ["ZONE A", "ZONE B"])
    assert result.is_valid is True
    assert result.suggestions == ["ZONE A"]


def test_exact_match_is_case_insensitive():
    result = suggest_zone_names("zone b", ["ZONE A", "ZONE B"])
    assert result.is_valid is True
    assert result.suggestions == ["ZONE B"]


def test_surrounding_whitespace_is_not_an_exact_match():
    result = suggest_zone_names(" Martlock ", ["MARTLOCK"])
    assert result.is_valid is False
    assert result.suggestions == ["MARTLOCK"]


def test_near_match_is_invalid_with_suggestion():
    result = suggest_zone_names("ZOME A", ["ZONE A"])
    assert result.is_valid is False
    assert "ZONE A" in result.suggestions


def test_no_match_passes_original_text_through():
    result = suggest_zone_names("XQZPLV", ["ZONE A"])
    assert result.is_valid is False
    assert result.suggestions == ["XQZPLV"]

    # The pass-through is the text as typed, not the uppercased form
    result = suggest_zone_names("xqzplv", ["ZONE A"])
    assert result.suggestions == ["xqzplv"]


def test_empty_candidate_is_invalid_without_suggestions():
    assert suggest_zone_names(None, ["ZONE A"]).suggestions == []
    assert suggest_zone_names("", ["ZONE A"]).is_valid is False


def test_suggestions_sorted_by_distance_with_vocabulary_order_tiebreak():
    vocabulary = ["ZONE C", "ZONE B", "ZONX AB", "ZONE A"]
    result = suggest_zone_names("ZONE Q", vocabulary)
    # ZONE C, ZONE B, ZONE A are distance 1 (in vocabulary order); ZONX AB is 3
    assert result.suggestions == ["ZONE C", "ZONE B", "ZONE A", "ZONX AB"]


def test_suggestions_capped_at_five_and_threshold_three():
    vocabulary = [f"ZONE {letter}" for letter in "ABCDEFG"] + ["FAR AWAY ZONE"]
    result = suggest_zone_names("ZONE Z", vocabulary)
    assert result.suggestions == ["ZONE A", "ZONE B", "ZONE C", "ZONE D", "ZONE E"]
    assert "FAR AWAY ZONE" not in result.suggestions


def test_fuzzy_matcher_binds_vocabulary():
    matcher = FuzzyMatcher(["XASES-ATRAGLOS", "SLEOS-OLUGHAM"], limit=1)
    result = matcher.suggest("XASES-ATRAGL0S")
    assert result.is_valid is False
    assert result.suggestions == ["XASES-ATRAGLOS"]
    assert matcher.suggest("sleos-olugham").is_valid is True
