from __future__ import annotations

from storybridge.narration.playback import HighlightState
from storybridge.narration.render import (
    clean_word,
    extract_vocabulary_markup,
    optimize_text_for_tts,
    render_html,
    tokenize_story,
    word_css_class,
)

STORY = "Meet **Luna** the fox. She ran!\nThe end."


def test_tokens_carry_scheduler_keys():
    paragraphs = tokenize_story(STORY)
    assert len(paragraphs) == 2
    assert [t.key for t in paragraphs[0]] == ["0-0", "0-1", "0-2", "0-3", "1-0", "1-1"]
    assert [t.key for t in paragraphs[1]] == ["2-0", "2-1"]

    luna = paragraphs[0][1]
    assert luna.text == "**Luna**"
    assert luna.display == "Luna"
    assert luna.clean == "luna"
    assert luna.is_vocab


def test_title_line_shares_keys_with_its_sentence():
    paragraphs = tokenize_story("The Brave Fox\nOnce upon a time.")
    assert [t.key for t in paragraphs[0]] == ["0-0", "0-1", "0-2"]
    assert [t.key for t in paragraphs[1]] == ["0-3", "0-4", "0-5", "0-6"]
    assert [t.paragraph_index for t in paragraphs[1]] == [1, 1, 1, 1]

    html_out = render_html("The Brave Fox\nOnce upon a time.", HighlightState(0, frozenset({"0-3"})))
    assert html_out.count("<p>") == 2
    assert '<span data-key="0-3" class="word-active">Once</span>' in html_out


def test_clean_word():
    assert clean_word("**Brave!**") == "brave"
    assert clean_word("(fox),") == "fox"


def test_css_class_priority():
    tokens = tokenize_story(STORY)[0]
    state = HighlightState(0, frozenset({"0-0", "0-1"}))

    assert word_css_class(tokens[0], state) == "word-active"
    assert word_css_class(tokens[1], state) == "vocabulary-word"
    assert word_css_class(tokens[2], state) == "sentence-active"
    assert word_css_class(tokens[4], state) == ""


def test_render_html_marks_active_words_and_definitions():
    state = HighlightState(0, frozenset({"0-0"}))
    definitions = {"Luna": {"simple_definition": "A name that means \"moon\"", "example_sentence": ""}}

    out = render_html(STORY, state, definitions)

    paragraphs = out.split("\n")
    assert len(paragraphs) == 2
    assert paragraphs[0].startswith('<p><span data-key="0-0" class="word-active">Meet</span>')
    assert 'class="vocabulary-word" title="A name that means &quot;moon&quot;">Luna</span>' in out
    assert '<span data-key="0-2" class="sentence-active">the</span>' in out
    assert '<span data-key="2-1">end.</span>' in out


def test_render_html_without_state_has_no_highlight():
    out = render_html("Go <now>.")
    assert out == '<p><span data-key="0-0">Go</span> <span data-key="0-1">&lt;now&gt;.</span></p>'


def test_optimize_text_for_tts_strips_markdown():
    text = "# Title\nThe **brave** fox was *very* `quick`.\n\n\n\nThe end."
    assert optimize_text_for_tts(text) == "Title\nThe brave fox was very quick.\n\nThe end."
    assert optimize_text_for_tts(None) == ""


def test_extract_vocabulary_markup_dedupes():
    text = "The **brave** fox met a **Brave** owl near the **lake**."
    assert extract_vocabulary_markup(text) == ["brave", "lake"]
