"""Deterministic keyword helpers for summaries, enrichment and extraction.

Purely lexical: results are reproducible word for word.
"""

import re
from collections import Counter

_PUNCTUATION = re.compile(r"[^\w\s]")

STOP_WORDS = frozenset(
    {
        "a", "about", "above", "after", "again", "against", "all", "also", "am",
        "an", "and", "any", "are", "as", "at", "be", "because", "been", "before",
        "being", "below", "between", "both", "but", "by", "can", "could", "did",
        "do", "does", "doing", "down", "during", "each", "few", "for", "from",
        "further", "had", "has", "have", "having", "he", "her", "here", "hers",
        "herself", "him", "himself", "his", "how", "i", "if", "in", "into", "is",
        "it", "its", "itself", "just", "like", "me", "more", "most", "my",
        "myself", "no", "nor", "not", "now", "of", "off", "on", "once", "only",
        "or", "other", "our", "ours", "ourselves", "out", "over", "own", "same",
        "she", "should", "so", "some", "such", "than", "that", "the", "their",
        "theirs", "them", "themselves", "then", "there", "these", "they", "this",
        "those", "through", "to", "too", "under", "until", "up", "very", "was",
        "we", "were", "what", "when", "where", "which", "while", "who", "whom",
        "why", "will", "with", "would", "you", "your", "yours", "yourself",
        "yourselves", "please", "thanks", "thank", "want", "need", "know",
        "think", "make", "really", "okay", "yeah", "sure",
    }
)

CODE_KEYWORDS = frozenset(
    {
        "code", "function", "functions", "class", "classes", "method", "methods",
        "variable", "variables", "module", "modules", "import", "api", "syntax",
        "compile", "refactor", "algorithm", "script", "library", "parameter",
        "return", "loop", "implement", "implementation", "python", "javascript",
    }
)

ERROR_KEYWORDS = frozenset(
    {
        "error", "errors", "bug", "bugs", "exception", "exceptions", "crash",
        "crashes", "fail", "fails", "failed", "failure", "broken", "traceback",
        "issue", "issues", "fix", "debug", "problem", "wrong",
    }
)

CODE_PATTERNS = "code_patterns"
TROUBLESHOOTING = "troubleshooting"


def normalize_words(text: str) -> list[str]:
    """Lower-case, strip punctuation, split on whitespace."""
    return _PUNCTUATION.sub("", text.lower()).split()


def query_keywords(text: str, min_length: int = 4) -> list[str]:
    """Words of at least min_length characters, in query order, repeats kept."""
    return [word for word in normalize_words(text) if len(word) >= min_length]


def topic_words(texts: list[str], limit: int = 5) -> list[str]:
    """Most frequent non-stop-words longer than 3 characters.

    Ties keep first-seen order (Counter preserves insertion order).
    """
    counter: Counter[str] = Counter()
    for text in texts:
        counter.update(
            word
            for word in normalize_words(text)
            if len(word) > 3 and word not in STOP_WORDS
        )
    return [word for word, _ in counter.most_common(limit)]


def classify(text: str) -> list[str]:
    """Knowledge buckets a piece of text belongs to; may be empty or both."""
    words = set(normalize_words(text))
    buckets = []
    if words & ERROR_KEYWORDS:
        buckets.append(TROUBLESHOOTING)
    if words & CODE_KEYWORDS:
        buckets.append(CODE_PATTERNS)
    return buckets
