"""
Similarity Filter Module

Suppresses near-duplicate stories. Texts are reduced to their key terms
(lowercase words longer than three characters, URLs and punctuation removed)
and compared with the Jaccard ratio of those term sets.
"""

import re
from typing import Iterable, Optional, Set

from config import settings
from utils.helpers import URL_PATTERN
from utils.logger import get_logger

logger = get_logger(__name__)

NON_WORD_PATTERN = re.compile(r'[^\w\s]')


def key_terms(text: str, min_length: int = settings.MIN_KEYWORD_LENGTH) -> Set[str]:
    """
    Reduce a text to the words that carry its meaning.

    Args:
        text: Any text.
        min_length: Words must be longer than this to count.

    Returns:
        Set[str]: Lowercase key terms.
    """
    if not text:
        return set()
    cleaned = URL_PATTERN.sub(' ', text.lower())
    cleaned = NON_WORD_PATTERN.sub(' ', cleaned)
    return {word for word in cleaned.split() if len(word) > min_length}


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def normalize(text: str) -> str:
    return ' '.join(URL_PATTERN.sub(' ', (text or '').lower()).split())


class SimilarityFilter:
    """Compares candidate text with a corpus of existing content."""

    def __init__(self, threshold: float = settings.SIMILARITY_THRESHOLD,
                 min_terms: int = settings.MIN_KEY_TERMS):
        self.threshold = threshold
        self.min_terms = min_terms

    def similarity(self, a: str, b: str) -> float:
        return jaccard(key_terms(a), key_terms(b))

    def find_similar(self, candidate: str, corpus: Iterable[str]) -> Optional[str]:
        """
        Return the first corpus entry that tells the same story, or None.

        Exact duplicates (ignoring case, whitespace and URLs) always match.
        Texts with fewer than ``min_terms`` key terms only match exactly.
        """
        candidate_norm = normalize(candidate)
        candidate_terms = key_terms(candidate)

        for existing in corpus:
            if not existing:
                continue
            if candidate_norm and candidate_norm == normalize(existing):
                return existing
            if len(candidate_terms) < self.min_terms:
                continue
            existing_terms = key_terms(existing)
            if len(existing_terms) < self.min_terms:
                continue
            ratio = jaccard(candidate_terms, existing_terms)
            if ratio >= self.threshold:
                logger.debug(f"Similarity {ratio:.2f} with: {existing[:60]}")
                return existing
        return None

    def is_similar(self, candidate: str, corpus: Iterable[str]) -> bool:
        """Whether the candidate is a near-duplicate of anything in the corpus."""
        return self.find_similar(candidate, corpus) is not None
