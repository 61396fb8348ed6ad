"""Word and bigram frequency analysis for trending terms."""

from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional, Tuple

from mediawatch.core.logging import get_logger

logger = get_logger(__name__)

Ranking = List[Tuple[str, int]]


def letters_only(text: str) -> str:
    """Drop every character that is neither a letter nor whitespace (numerals of any script included)."""
    return "".join(ch for ch in text if ch.isalpha() or ch.isspace())


@dataclass(frozen=True)
class StopWords:
    """Immutable stop-word configuration, built once and passed to analyzers."""
    words: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, words: Iterable[str]) -> "StopWords":
        return cls(frozenset(w.strip().lower() for w in words if w and w.strip()))

    def __contains__(self, token: str) -> bool:
        return token in self.words

    def __len__(self) -> int:
        return len(self.words)


def load_stop_words(path: Optional[str]) -> StopWords:
    """
    Load stop words from a text file, one word per line.

    Lines starting with '#' are comments. A missing path yields an empty set.

    Args:
        path: File path

    Returns:
        StopWords
    """
    if not path:
        return StopWords()

    file_path = Path(path)
    if not file_path.exists():
        logger.warning(f"Stop words file not found: {path}")
        return StopWords()

    with open(file_path, "r", encoding="utf-8") as f:
        words = [line for line in f.read().splitlines() if not line.lstrip().startswith("#")]

    stop_words = StopWords.of(words)
    logger.info(f"Loaded {len(stop_words)} stop words from {path}")
    return stop_words


@dataclass(frozen=True)
class TextAnalysis:
    words: Ranking
    bigrams: Ranking

    def to_dict(self) -> dict:
        return {
            "words": [[term, count] for term, count in self.words],
            "bigrams": [[term, count] for term, count in self.bigrams],
        }


class TextAnalyzer:
    """Ranks unigrams and bigrams across a corpus.

    Unigrams are counted over all documents combined; bigrams are formed from
    adjacent surviving tokens inside each document only. Terms are kept when
    their count is strictly greater than the threshold, ranked by count
    (equal counts keep first-seen order).
    """

    def __init__(self, stop_words: Optional[StopWords] = None, min_length: int = 3,
                 word_threshold: int = 5, bigram_threshold: int = 2,
                 word_limit: int = 50, bigram_limit: int = 30):
        self.stop_words = stop_words or StopWords()
        self.min_length = min_length
        self.word_threshold = word_threshold
        self.bigram_threshold = bigram_threshold
        self.word_limit = word_limit
        self.bigram_limit = bigram_limit

    def tokenize(self, text: Optional[str], stop_words: Optional[StopWords] = None) -> List[str]:
        """Lower-cased tokens surviving the letter, length and stop-word filters, in order."""
        if not text:
            return []
        stop_words = self.stop_words if stop_words is None else stop_words

        tokens = []
        for token in letters_only(text).lower().split():
            if len(token) < self.min_length or token in stop_words:
                continue
            tokens.append(token)
        return tokens

    @staticmethod
    def _rank(counter: Counter, threshold: int, limit: int) -> Ranking:
        kept = [(term, count) for term, count in counter.items() if count > threshold]
        kept.sort(key=lambda item: item[1], reverse=True)
        return kept[:limit]

    def analyze(self, documents: Iterable[Optional[str]],
                stop_words: Optional[StopWords] = None) -> TextAnalysis:
        """
        Count words and bigrams across documents.

        Args:
            documents: Texts to analyze; the caller bounds the sample size
            stop_words: Overrides the analyzer's stop words for this call

        Returns:
            TextAnalysis with ranked (term, count) pairs
        """
        words: Counter = Counter()
        bigrams: Counter = Counter()

        for document in documents:
            tokens = self.tokenize(document, stop_words)
            words.update(tokens)
            bigrams.update(f"{a} {b}" for a, b in zip(tokens, tokens[1:]))

        return TextAnalysis(
            words=self._rank(words, self.word_threshold, self.word_limit),
            bigrams=self._rank(bigrams, self.bigram_threshold, self.bigram_limit),
        )
