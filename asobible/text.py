"""
Text Analyzer — Tokens, Noise and Readability

Pure, deterministic analysis of a single listing string.
No I/O, no configuration lookups: the caller passes the
stopword set it wants applied.

Normalization rules (identical input always yields identical tokens):
  - Lowercased
  - Apostrophes removed ("don't" -> "dont")
  - Every other non-word character is a separator (| - : & / ...)
  - Whitespace collapsed

Readability uses the Flesch reading-ease formula with a vowel-group
syllable heuristic. It is an approximation and makes no attempt at
dictionary-exact syllable counts.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional


# ============================================================
# CONSTANTS
# ============================================================

STOPWORDS: frozenset[str] = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "from",
    "has", "he", "in", "is", "it", "its", "of", "on", "or", "that", "the",
    "this", "to", "was", "were", "will", "with", "you", "your", "our",
    "we", "my", "me", "all", "so", "if", "into", "over", "&",
})

# Tokens shorter than this count as noise even when not stopwords
MIN_KEYWORD_LENGTH = 3

_APOSTROPHES = re.compile(r"['’‘`]")
_SEPARATORS = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")
_SENTENCE_SPLIT = re.compile(r"[.!?\n]+")
_VOWEL_GROUPS = re.compile(r"[aeiouy]+")
_NON_LETTERS = re.compile(r"[^a-z]")


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass(frozen=True)
class SentenceStats:
    """Sentence-level statistics for readability scoring."""
    sentence_count: int = 0
    word_count: int = 0
    syllable_count: int = 0
    words_per_sentence: float = 0.0
    syllables_per_word: float = 0.0
    reading_ease: float = 0.0
    first_sentence: str = ""


@dataclass(frozen=True)
class TextAnalysis:
    """Everything the scorers need to know about one string."""
    text: str
    char_count: int
    tokens: tuple[str, ...]
    keywords: tuple[str, ...]       # tokens that are not noise
    stopword_count: int
    noise_count: int                # stopwords + too-short tokens
    sentence_stats: SentenceStats = field(default_factory=SentenceStats)

    @property
    def noise_ratio(self) -> float:
        if not self.tokens:
            return 0.0
        return self.noise_count / len(self.tokens)

    @property
    def is_empty(self) -> bool:
        return not self.tokens


EMPTY_ANALYSIS = TextAnalysis(
    text="", char_count=0, tokens=(), keywords=(),
    stopword_count=0, noise_count=0,
)


# ============================================================
# TOKENIZATION
# ============================================================

def normalize(text: Optional[str]) -> str:
    """Lowercase, drop apostrophes, turn separators into single spaces."""
    if not text:
        return ""
    lowered = _APOSTROPHES.sub("", text.lower())
    spaced = _SEPARATORS.sub(" ", lowered)
    return _WHITESPACE.sub(" ", spaced).strip()


def tokenize(text: Optional[str]) -> list[str]:
    """Split text into normalized tokens. None or empty -> []."""
    normalized = normalize(text)
    return normalized.split(" ") if normalized else []


def is_noise(token: str, stopwords: Iterable[str] = STOPWORDS) -> bool:
    return token in stopwords or len(token) < MIN_KEYWORD_LENGTH


# ============================================================
# READABILITY
# ============================================================

def count_syllables(word: str) -> int:
    """Approximate syllable count by vowel groups."""
    letters = _NON_LETTERS.sub("", word.lower())
    if not letters:
        return 0
    if len(letters) <= 3:
        return 1
    count = len(_VOWEL_GROUPS.findall(letters))
    if letters.endswith("e") and count > 1:
        count -= 1
    return max(1, count)


def flesch_reading_ease(words: int, sentences: int, syllables: int) -> float:
    """Flesch reading ease, clamped to 0..100."""
    if words == 0 or sentences == 0:
        return 0.0
    score = (
        206.835
        - 1.015 * (words / sentences)
        - 84.6 * (syllables / words)
    )
    return max(0.0, min(100.0, score))


def sentence_stats(text: Optional[str]) -> SentenceStats:
    if not text or not text.strip():
        return SentenceStats()

    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    words = tokenize(text)
    if not sentences or not words:
        return SentenceStats()

    syllables = sum(count_syllables(w) for w in words)
    return SentenceStats(
        sentence_count=len(sentences),
        word_count=len(words),
        syllable_count=syllables,
        words_per_sentence=round(len(words) / len(sentences), 4),
        syllables_per_word=round(syllables / len(words), 4),
        reading_ease=round(
            flesch_reading_ease(len(words), len(sentences), syllables), 2,
        ),
        first_sentence=sentences[0],
    )


# ============================================================
# ANALYSIS
# ============================================================

def analyze(
    text: Optional[str],
    stopwords: Iterable[str] = STOPWORDS,
    with_sentences: bool = False,
) -> TextAnalysis:
    """
    Tokenize and measure one string.

    Args:
        text: Raw listing text. None and "" produce EMPTY_ANALYSIS.
        stopwords: Stopword set to count as noise.
        with_sentences: Also compute sentence/readability statistics
            (only the description needs them).
    """
    if not text:
        return EMPTY_ANALYSIS

    stop = stopwords if isinstance(stopwords, (set, frozenset)) else frozenset(stopwords)
    tokens = tokenize(text)
    stopword_count = sum(1 for t in tokens if t in stop)
    keywords = tuple(t for t in tokens if not is_noise(t, stop))

    return TextAnalysis(
        text=text,
        char_count=len(text.strip()),
        tokens=tuple(tokens),
        keywords=keywords,
        stopword_count=stopword_count,
        noise_count=len(tokens) - len(keywords),
        sentence_stats=sentence_stats(text) if with_sentences else SentenceStats(),
    )
