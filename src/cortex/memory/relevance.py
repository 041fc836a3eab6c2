"""Lexical relevance scoring: TF-IDF vectors compared by cosine similarity.

The corpus for every query is the candidate list plus the query itself, so
scores are only comparable within one call.  IDF uses the smoothed form
``ln(N / (1 + df))``, which goes negative for a term present in every
document, so ubiquitous terms carry a small negative weight.  Both vectors
use the same IDF for a shared term, so their products stay non-negative and
cosine stays in ``[0, 1]``.

A candidate that tokenizes to nothing keeps a zero vector and scores 0; it
is never removed, so indices in :class:`RelevanceResult` always line up with
the caller's candidate list.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass, field

STOP_WORDS: frozenset[str] = frozenset({
    "i", "me", "my", "myself", "we", "our", "ours", "ourselves", "you", "your",
    "yours", "yourself", "yourselves", "he", "him", "his", "himself", "she", "her",
    "hers", "herself", "it", "its", "itself", "they", "them", "their", "theirs",
    "themselves", "what", "which", "who", "whom", "this", "that", "these", "those",
    "am", "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
    "having", "do", "does", "did", "doing", "a", "an", "the", "and", "but", "if",
    "or", "because", "as", "until", "while", "of", "at", "by", "for", "with",
    "about", "against", "between", "into", "through", "during", "before", "after",
    "above", "below", "to", "from", "up", "down", "in", "out", "on", "off", "over",
    "under", "again", "further", "then", "once", "here", "there", "when", "where",
    "why", "how", "all", "any", "both", "each", "few", "more", "most", "other",
    "some", "such", "no", "nor", "not", "only", "own", "same", "so", "than", "too",
    "very", "s", "t", "can", "will", "just", "don", "should", "now",
})

DEFAULT_MATCH_THRESHOLD = 0.15
DEFAULT_TOP_THRESHOLD = 0.1
DEFAULT_TOP_K = 3

_PUNCTUATION = re.compile(r"[^\w\s]")


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation, split on whitespace, drop stop words."""
    if not isinstance(text, str):
        return []
    cleaned = _PUNCTUATION.sub("", text.lower())
    return [word for word in cleaned.split() if word not in STOP_WORDS]


def inverse_document_frequency(corpus: list[list[str]]) -> dict[str, float]:
    doc_count = len(corpus)
    doc_freq: Counter[str] = Counter()
    for tokens in corpus:
        doc_freq.update(set(tokens))
    return {term: math.log(doc_count / (1 + df)) for term, df in doc_freq.items()}


def tfidf_vector(tokens: list[str], idf: dict[str, float]) -> dict[str, float]:
    """Sparse TF-IDF vector; absent terms are implicitly zero."""
    if not tokens:
        return {}
    length = len(tokens)
    return {term: (count / length) * idf.get(term, 0.0) for term, count in Counter(tokens).items()}


def cosine_similarity(a: dict[str, float], b: dict[str, float]) -> float:
    """Cosine of two sparse vectors, or 0 when either has zero magnitude."""
    mag_a = math.sqrt(sum(v * v for v in a.values()))
    mag_b = math.sqrt(sum(v * v for v in b.values()))
    if mag_a == 0 or mag_b == 0:
        return 0.0
    if len(b) < len(a):
        a, b = b, a
    dot = sum(v * b.get(term, 0.0) for term, v in a.items())
    return max(0.0, min(1.0, dot / (mag_a * mag_b)))


@dataclass(frozen=True, slots=True)
class ScoredCandidate:
    text: str
    score: float
    index: int


@dataclass(frozen=True)
class RelevanceResult:
    """Per-candidate scores plus the thresholded, ranked subset.

    Attributes:
        scores: One score per input candidate, in input order.  Empty when
            the query or candidate list was empty.
        ranked: Candidates scoring at or above the threshold, best first,
            ties in input order, truncated to the requested size.
    """

    scores: list[float] = field(default_factory=list)
    ranked: list[ScoredCandidate] = field(default_factory=list)

    @property
    def texts(self) -> list[str]:
        return [c.text for c in self.ranked]


@dataclass(frozen=True, slots=True)
class BestMatch:
    """Outcome of :func:`best_match`.

    ``match`` is ``None`` when nothing cleared the threshold; ``score`` is
    the best score observed either way.
    """

    match: str | None
    score: float


def score_candidates(query: str, candidates: list[str]) -> list[float]:
    """Score every candidate against *query*.  Empty list on empty input."""
    if not candidates:
        return []
    query_tokens = tokenize(query)
    if not query_tokens:
        return []

    corpus = [tokenize(doc) for doc in candidates]
    idf = inverse_document_frequency([*corpus, query_tokens])
    query_vec = tfidf_vector(query_tokens, idf)
    return [cosine_similarity(query_vec, tfidf_vector(tokens, idf)) for tokens in corpus]


def rank(
    query: str,
    candidates: list[str],
    threshold: float = DEFAULT_TOP_THRESHOLD,
    k: int | None = DEFAULT_TOP_K,
) -> RelevanceResult:
    scores = score_candidates(query, candidates)
    passing = [
        ScoredCandidate(text=candidates[i], score=s, index=i)
        for i, s in enumerate(scores)
        if s >= threshold
    ]
    # sorted() is stable, so equal scores keep candidate order.
    passing = sorted(passing, key=lambda c: -c.score)
    if k is not None:
        passing = passing[:max(0, k)]
    return RelevanceResult(scores=scores, ranked=passing)


def top_k(
    query: str,
    candidates: list[str],
    threshold: float = DEFAULT_TOP_THRESHOLD,
    k: int = DEFAULT_TOP_K,
) -> list[str]:
    """Up to *k* candidates scoring at least *threshold*, best first."""
    return rank(query, candidates, threshold, k).texts


def best_match(
    query: str,
    candidates: list[str],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> BestMatch:
    """The single highest-scoring candidate if it reaches *threshold*."""
    scores = score_candidates(query, candidates)
    if not scores:
        return BestMatch(match=None, score=0.0)

    best_index = max(range(len(scores)), key=lambda i: (scores[i], -i))
    best_score = scores[best_index]
    if best_score >= threshold:
        return BestMatch(match=candidates[best_index], score=best_score)
    return BestMatch(match=None, score=best_score)
