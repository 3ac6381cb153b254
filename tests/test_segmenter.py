from __future__ import annotations

import re

import pytest

from storybridge.narration.segmenter import (
    segment_sentences,
    segment_story,
    segment_words,
)


def assert_reconstructs(text: str, sentences: list[str]) -> None:
    # Matched sentences are verbatim prefixes; only a final remainder may be trimmed
    prefix = ""
    for i, sentence in enumerate(sentences):
        if text.startswith(prefix + sentence):
            prefix += sentence
            continue
        assert i == len(sentences) - 1
        assert text[len(prefix):].strip() == sentence
        return
    assert text[len(prefix):].strip() == ""


def test_example_story_sentences():
    assert segment_sentences("Run! Jump far. Stop.") == ["Run!", " Jump far.", " Stop."]


def test_trailing_text_without_terminator_is_its_own_sentence():
    assert segment_sentences("The cat sat. And then  ") == ["The cat sat.", "And then"]


def test_no_terminator_returns_whole_text():
    assert segment_sentences("once upon a time") == ["once upon a time"]
    assert segment_sentences("") == [""]
    assert segment_sentences("   ") == ["   "]


def test_repeated_terminators_stay_with_their_sentence():
    assert segment_sentences("Wow!!! Really?! Yes...") == ["Wow!!!", " Really?!", " Yes..."]


def test_known_mis_splits_are_preserved():
    # Abbreviations and decimals split like any other period
    assert segment_sentences("Dr. Lee paid 3.50 coins.") == ["Dr.", " Lee paid 3.", "50 coins."]


@pytest.mark.parametrize("text", [
    "Run! Jump far. Stop.",
    "No punctuation at all",
    "Ends without stop. but keeps going",
    "Line one.\nLine two!\n\nLine three",
    "  leading space. trailing space.   ",
    "?!.",
])
def test_segmentation_is_total(text):
    sentences = segment_sentences(text)
    assert sentences
    assert_reconstructs(text, sentences)


@pytest.mark.parametrize("sentence", [" Jump far.", "one", "  a   b\tc\nd  ", "", "   "])
def test_word_count_matches_whitespace_runs(sentence):
    expected = len(re.findall(r"\S+", sentence))
    assert len(segment_words(sentence)) == expected


def test_segment_words_keeps_punctuation_and_markup():
    assert segment_words("  The **brave** fox ran!  ") == ["The", "**brave**", "fox", "ran!"]


def test_segment_story_places_words_in_paragraphs():
    spans = segment_story("Run! Jump far.\n\n  \nStop. Go home")
    assert [s.index for s in spans] == [0, 1, 2, 3]
    assert [s.text for s in spans] == ["Run!", " Jump far.", "\n\n  \nStop.", "Go home"]
    assert [s.paragraph_index for s in spans] == [0, 0, 1, 1]
    assert spans[1].word_paragraphs == (0, 0)
    assert spans[1].words == ["Jump", "far."]


def test_segment_story_matches_whole_text_sentences():
    text = "The Brave Fox\nOnce upon a time. The end."
    spans = segment_story(text)
    assert [s.text for s in spans] == segment_sentences(text)
    # The title has no terminator, so it opens the first sentence
    assert spans[0].words == ["The", "Brave", "Fox", "Once", "upon", "a", "time."]
    assert spans[0].word_paragraphs == (0, 0, 0, 1, 1, 1, 1)
    assert spans[0].paragraph_index == 0
    assert spans[1].paragraph_index == 1
