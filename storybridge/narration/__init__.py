"""
Narration Highlight Engine

Segments story text, estimates word timings, builds a highlight plan and
arms it against the narration audio's playback lifecycle.
"""

from storybridge.narration.segmenter import (
    SentenceSpan,
    segment_sentences,
    segment_story,
    segment_words,
)
from storybridge.narration.timing import WordTiming, estimate_word_timings, sentence_duration_ms
from storybridge.narration.scheduler import (
    ClearAll,
    EnterSentence,
    EnterWord,
    ExitWord,
    ScheduledOp,
    build_schedule,
    schedule_to_dict,
)
from storybridge.narration.playback import (
    AudioPlayer,
    HighlightState,
    PlaybackController,
    PlaybackStartError,
    PlaybackState,
    Session,
    apply_action,
)

__all__ = [
    "SentenceSpan",
    "segment_sentences",
    "segment_story",
    "segment_words",
    "WordTiming",
    "estimate_word_timings",
    "sentence_duration_ms",
    "ClearAll",
    "EnterSentence",
    "EnterWord",
    "ExitWord",
    "ScheduledOp",
    "build_schedule",
    "schedule_to_dict",
    "AudioPlayer",
    "HighlightState",
    "PlaybackController",
    "PlaybackStartError",
    "PlaybackState",
    "Session",
    "apply_action",
]
