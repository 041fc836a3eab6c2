"""Tests for TF-IDF relevance scoring."""

import math

from cortex.memory.relevance import (
    best_match,
    inverse_document_frequency,
    rank,
    score_candidates,
    tokenize,
    top_k,
)

CANDIDATES = [
    "I love python",
    "java is verbose",
    "python programming tips",
    "",
    "the weather today is sunny",
]


def test_tokenize_strips_punctuation_and_stop_words():
    assert tokenize("Hello, World! This is MY test.") == ["hello", "world", "test"]


def test_idf_goes_negative_for_ubiquitous_terms():
    idf = inverse_document_frequency([["sky"], ["sky"]])
    assert idf["sky"] == math.log(2 / 3)
    assert idf["sky"] < 0


def test_best_match_finds_paraphrased_memory():
    result = best_match("remember my favorite color is blue", ["user's favorite color is blue"])
    assert result.match == "user's favorite color is blue"
    assert result.score > 0.15


def test_best_match_reports_score_without_match():
    result = best_match("python", ["I love python", "java rules", "go rules"], threshold=0.99)
    assert result.match is None
    assert 0 < result.score < 0.99


def test_scores_in_unit_interval():
    for query in ("python programming", "sunny weather", "verbose java python tips"):
        for score in score_candidates(query, CANDIDATES):
            assert 0.0 <= score <= 1.0


def test_top_k_sorted_subset_above_threshold():
    result = rank("python programming", CANDIDATES, threshold=0.05, k=5)
    scores = [c.score for c in result.ranked]
    assert scores == sorted(scores, reverse=True)
    assert all(s >= 0.05 for s in scores)
    assert set(result.texts) <= set(CANDIDATES)
    assert result.texts == ["python programming tips", "I love python"]


def test_top_k_threshold_drops_weak_matches():
    assert top_k("python programming", CANDIDATES) == ["python programming tips", "I love python"]
    assert top_k("python programming", CANDIDATES, threshold=0.3) == ["python programming tips"]


def test_top_k_respects_k():
    candidates = ["apple pie", "apple tart", "apple cake", "apple crumble"]
    assert len(top_k("apple", candidates, threshold=0.0, k=2)) == 2


def test_ties_keep_candidate_order():
    candidates = ["red apple", "green pear", "red apple", "blue sky", "yellow sun"]
    result = rank("red apple", candidates, threshold=0.1, k=3)
    assert [c.index for c in result.ranked] == [0, 2]


def test_zero_token_candidate_scores_zero_but_is_kept():
    scores = score_candidates("python", ["", "python rocks"])
    assert len(scores) == 2
    assert scores[0] == 0.0


def test_empty_inputs_return_empty():
    assert top_k("anything", []) == []
    assert top_k("the and of", ["python"]) == []
    assert score_candidates("", ["python"]) == []
    empty = best_match("the", ["python"])
    assert empty.match is None
    assert empty.score == 0.0
