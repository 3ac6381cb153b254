"""
Timing Estimator Module

Assigns synthetic start offsets and durations to the words of a sentence.

Timings come from a fixed narration cadence, never from the audio itself,
so highlights drift whenever the real voice is faster or slower than the
configured average.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from storybridge.narration.segmenter import segment_words

DEFAULT_AVG_WORD_DURATION_MS = 300
DEFAULT_SENTENCE_GAP_MS = 400


@dataclass(frozen=True)
class WordTiming:
    """Estimated timing of one word, relative to its sentence start."""

    word: str
    start_offset_ms: int
    duration_ms: int

    @property
    def end_offset_ms(self) -> int:
        return self.start_offset_ms + self.duration_ms

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON export."""
        return {
            "word": self.word,
            "startTimeOffsetMs": self.start_offset_ms,
            "durationMs": self.duration_ms,
        }


def estimate_word_timings(
    sentence: str,
    avg_word_duration_ms: int = DEFAULT_AVG_WORD_DURATION_MS,
) -> List[WordTiming]:
    """
    Estimate when each word of a sentence is spoken.

    Args:
        sentence: Sentence text
        avg_word_duration_ms: Fixed time given to every word

    Returns:
        One WordTiming per word, in order
    """
    return [
        WordTiming(
            word=word,
            start_offset_ms=index * avg_word_duration_ms,
            duration_ms=avg_word_duration_ms,
        )
        for index, word in enumerate(segment_words(sentence))
    ]


def sentence_duration_ms(
    word_count: int,
    avg_word_duration_ms: int = DEFAULT_AVG_WORD_DURATION_MS,
    sentence_gap_ms: int = DEFAULT_SENTENCE_GAP_MS,
) -> int:
    """Total highlight window of a sentence, including the trailing gap."""
    return word_count * avg_word_duration_ms + sentence_gap_ms
