"""
Text similarity scoring for entity alignment.

All scores are in [0, 1] and deterministic. The combined score blends set
overlap (Jaccard), term-frequency cosine and a character-level ratio from
``difflib.SequenceMatcher``:

    combined = 0.4 * jaccard + 0.4 * cosine + 0.2 * edit
"""

import math
import re
from collections import Counter
from difflib import SequenceMatcher
from typing import List, Optional, Sequence, Tuple

STOPWORDS = frozenset({
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'from', 'as', 'is', 'was', 'are', 'were', 'been',
    'be', 'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'should',
    'could', 'may', 'might', 'must', 'can', 'this', 'that', 'these', 'those',
})

JACCARD_WEIGHT = 0.4
COSINE_WEIGHT = 0.4
EDIT_WEIGHT = 0.2


# =============================================================================
# Normalization
# =============================================================================

def normalize_text(text: Optional[str]) -> str:
    """Lowercase, replace punctuation with spaces, collapse whitespace."""
    if not text:
        return ''
    text = text.lower()
    text = re.sub(r'[^\w\s]', ' ', text)
    return ' '.join(text.split())


def tokenize(text: Optional[str]) -> List[str]:
    """Normalized words with stopwords removed."""
    return [w for w in normalize_text(text).split() if w not in STOPWORDS]


# =============================================================================
# Scores
# =============================================================================

def jaccard_similarity(text1: Optional[str], text2: Optional[str]) -> float:
    words1 = set(tokenize(text1))
    words2 = set(tokenize(text2))
    if not words1 and not words2:
        return 1.0 if normalize_text(text1) == normalize_text(text2) else 0.0
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def cosine_similarity(text1: Optional[str], text2: Optional[str]) -> float:
    freq1 = Counter(tokenize(text1))
    freq2 = Counter(tokenize(text2))
    if not freq1 or not freq2:
        return jaccard_similarity(text1, text2)
    dot = sum(freq1[w] * freq2[w] for w in freq1.keys() & freq2.keys())
    norm1 = math.sqrt(sum(c * c for c in freq1.values()))
    norm2 = math.sqrt(sum(c * c for c in freq2.values()))
    return dot / (norm1 * norm2)


def edit_similarity(text1: Optional[str], text2: Optional[str]) -> float:
    """Character-level similarity ratio of the normalized strings."""
    norm1 = ' '.join(tokenize(text1))
    norm2 = ' '.join(tokenize(text2))
    if not norm1 and not norm2:
        return 1.0 if normalize_text(text1) == normalize_text(text2) else 0.0
    if not norm1 or not norm2:
        return 0.0
    return SequenceMatcher(None, norm1, norm2).ratio()


def combined_similarity(text1: Optional[str], text2: Optional[str]) -> float:
    """Weighted blend of Jaccard, cosine and edit similarity, rounded to 4 places."""
    if not normalize_text(text1) or not normalize_text(text2):
        return 0.0
    if normalize_text(text1) == normalize_text(text2):
        return 1.0
    score = (
        JACCARD_WEIGHT * jaccard_similarity(text1, text2)
        + COSINE_WEIGHT * cosine_similarity(text1, text2)
        + EDIT_WEIGHT * edit_similarity(text1, text2)
    )
    return round(min(max(score, 0.0), 1.0), 4)


def are_similar(text1: Optional[str], text2: Optional[str], threshold: float = 0.7) -> bool:
    return combined_similarity(text1, text2) >= threshold


def word_overlap(text1: Optional[str], text2: Optional[str]) -> float:
    """Share of the first text's words that also occur in the second."""
    words1 = set(tokenize(text1))
    words2 = set(tokenize(text2))
    if not words1:
        return 0.0
    return len(words1 & words2) / len(words1)


def find_best_match(query: str, candidates: Sequence[str],
                    threshold: float = 0.0) -> Optional[Tuple[int, float]]:
    """
    Index and score of the most similar candidate.

    The first candidate wins on ties. Returns None when no candidate reaches
    ``threshold`` (or there are no candidates).
    """
    best: Optional[Tuple[int, float]] = None
    for idx, candidate in enumerate(candidates):
        score = combined_similarity(query, candidate)
        if score >= threshold and (best is None or score > best[1]):
            best = (idx, score)
    return best
