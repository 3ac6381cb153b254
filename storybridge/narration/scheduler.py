"""
Highlight Scheduler Module

Turns estimated word timings into a flat, time-ordered plan of highlight
operations. The plan is pure data: it describes which highlight changes
should happen and when, relative to the moment narration starts playing.
Arming the plan against a clock is the playback controller's job.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Union

from storybridge.narration.timing import (
    DEFAULT_AVG_WORD_DURATION_MS,
    DEFAULT_SENTENCE_GAP_MS,
    estimate_word_timings,
    sentence_duration_ms,
)


def word_key(sentence_index: int, word_index: int) -> str:
    """Composite highlight key shared by the scheduler and the renderer."""
    return f"{sentence_index}-{word_index}"


@dataclass(frozen=True)
class EnterSentence:
    """Make a sentence active and drop any highlighted words."""

    sentence_index: int


@dataclass(frozen=True)
class EnterWord:
    sentence_index: int
    word_index: int

    @property
    def key(self) -> str:
        return word_key(self.sentence_index, self.word_index)


@dataclass(frozen=True)
class ExitWord:
    sentence_index: int
    word_index: int

    @property
    def key(self) -> str:
        return word_key(self.sentence_index, self.word_index)


@dataclass(frozen=True)
class ClearAll:
    """Deactivate the sentence and clear every highlighted word."""


Action = Union[EnterSentence, EnterWord, ExitWord, ClearAll]


@dataclass(frozen=True)
class ScheduledOp:
    """One highlight change, due fire_at_ms after playback starts."""

    fire_at_ms: int
    action: Action

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON export."""
        data: Dict[str, Any] = {
            "fireAtMs": self.fire_at_ms,
            "action": type(self.action).__name__,
        }
        if isinstance(self.action, EnterSentence):
            data["sentenceIndex"] = self.action.sentence_index
        elif isinstance(self.action, (EnterWord, ExitWord)):
            data["sentenceIndex"] = self.action.sentence_index
            data["wordIndex"] = self.action.word_index
        return data


def build_schedule(
    sentences: Sequence[str],
    avg_word_duration_ms: int = DEFAULT_AVG_WORD_DURATION_MS,
    sentence_gap_ms: int = DEFAULT_SENTENCE_GAP_MS,
) -> List[ScheduledOp]:
    """
    Build the highlight plan for a sequence of sentences.

    Walks the sentences keeping a cumulative delay. Each sentence opens with
    an EnterSentence op, followed by an EnterWord/ExitWord pair per word.
    After the last sentence a single ClearAll closes the plan.

    Args:
        sentences: Sentences in narration order
        avg_word_duration_ms: Fixed time given to every word
        sentence_gap_ms: Pause appended after each sentence

    Returns:
        ScheduledOp list with non-decreasing fire_at_ms
    """
    ops: List[ScheduledOp] = []
    cumulative_delay = 0

    for sentence_index, sentence in enumerate(sentences):
        ops.append(ScheduledOp(cumulative_delay, EnterSentence(sentence_index)))

        timings = estimate_word_timings(sentence, avg_word_duration_ms)
        for word_index, timing in enumerate(timings):
            start = cumulative_delay + timing.start_offset_ms
            ops.append(ScheduledOp(start, EnterWord(sentence_index, word_index)))
            ops.append(ScheduledOp(
                start + timing.duration_ms,
                ExitWord(sentence_index, word_index),
            ))

        cumulative_delay += sentence_duration_ms(
            len(timings), avg_word_duration_ms, sentence_gap_ms
        )

    ops.append(ScheduledOp(cumulative_delay, ClearAll()))
    return ops


def schedule_duration_ms(ops: Sequence[ScheduledOp]) -> int:
    """Time at which the plan finishes (the trailing ClearAll)."""
    return ops[-1].fire_at_ms if ops else 0


def schedule_to_dict(ops: Sequence[ScheduledOp]) -> Dict[str, Any]:
    """Export a plan for the web reader."""
    return {
        "opCount": len(ops),
        "durationMs": schedule_duration_ms(ops),
        "ops": [op.to_dict() for op in ops],
    }
