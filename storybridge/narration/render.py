"""
Story Rendering Module

Breaks a story into word tokens that carry the same highlight keys the
scheduler produces, and renders them for the read-along view.

Vocabulary words are marked inline by the story generator as **word**.
"""

import html
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from storybridge.narration.playback import HighlightState
from storybridge.narration.scheduler import word_key
from storybridge.narration.segmenter import segment_story

VOCAB_MARK = "**"
VOCAB_RE = re.compile(r"\*\*(.+?)\*\*")
PUNCTUATION_RE = re.compile(r"[.,!?;:'\"()\[\]{}]")

# Markdown the narrator should not read aloud
BOLD_RE = re.compile(r"\*\*(.*?)\*\*")
ITALIC_RE = re.compile(r"\*(.*?)\*")
HEADER_RE = re.compile(r"#{1,6}\s+")
CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
INLINE_CODE_RE = re.compile(r"`([^`]+)`")
EXTRA_NEWLINES_RE = re.compile(r"\n{3,}")

WORD_ACTIVE_CLASS = "word-active"
SENTENCE_ACTIVE_CLASS = "sentence-active"
VOCAB_CLASS = "vocabulary-word"


@dataclass(frozen=True)
class WordToken:
    """A rendered word and the indices that tie it to the highlight plan."""

    key: str
    text: str  # As written, including markup and punctuation
    display: str  # Markup removed
    clean: str  # Lowercase lookup form for definitions
    is_vocab: bool
    paragraph_index: int
    sentence_index: int
    word_index: int


def clean_word(word: str) -> str:
    """Strip vocabulary markup and punctuation, lowercase."""
    return PUNCTUATION_RE.sub("", word.replace(VOCAB_MARK, "")).lower()


def tokenize_story(text: str) -> List[List[WordToken]]:
    """
    Tokenize a story paragraph by paragraph.

    Tokens follow the same sentence split as the highlight plan. A sentence
    that runs over a line break puts its words in more than one paragraph.

    Args:
        text: Story text with optional **vocabulary** markup

    Returns:
        One list of WordToken per paragraph
    """
    paragraphs: List[List[WordToken]] = []
    for span in segment_story(text):
        for word_index, (word, paragraph_index) in enumerate(zip(span.words, span.word_paragraphs)):
            while paragraph_index >= len(paragraphs):
                paragraphs.append([])
            paragraphs[paragraph_index].append(WordToken(
                key=word_key(span.index, word_index),
                text=word,
                display=word.replace(VOCAB_MARK, ""),
                clean=clean_word(word),
                is_vocab=VOCAB_MARK in word,
                paragraph_index=paragraph_index,
                sentence_index=span.index,
                word_index=word_index,
            ))
    return paragraphs


def word_css_class(token: WordToken, state: HighlightState) -> str:
    # Vocabulary styling wins over narration highlighting
    if token.is_vocab:
        return VOCAB_CLASS
    if token.key in state.highlighted_word_keys:
        return WORD_ACTIVE_CLASS
    if token.sentence_index == state.active_sentence_index:
        return SENTENCE_ACTIVE_CLASS
    return ""


def render_html(
    text: str,
    state: Optional[HighlightState] = None,
    definitions: Optional[Dict[str, Dict[str, str]]] = None,
) -> str:
    """
    Render the story as HTML spans for the read-along view.

    Args:
        text: Story text
        state: Current highlight state (default: nothing highlighted)
        definitions: Vocabulary definitions keyed by lowercase word

    Returns:
        HTML string with one <p> per paragraph
    """
    state = state or HighlightState.reset()
    definitions = {k.lower(): v for k, v in (definitions or {}).items()}

    parts = []
    for paragraph in tokenize_story(text):
        spans = []
        for token in paragraph:
            attrs = f' data-key="{token.key}"'
            css = word_css_class(token, state)
            if css:
                attrs += f' class="{css}"'
            definition = definitions.get(token.clean) if token.is_vocab else None
            if definition and definition.get("simple_definition"):
                attrs += f' title="{html.escape(definition["simple_definition"])}"'
            spans.append(f"<span{attrs}>{html.escape(token.display)}</span>")
        parts.append("<p>" + " ".join(spans) + "</p>")
    return "\n".join(parts)


def optimize_text_for_tts(text: Optional[str]) -> str:
    """Remove markdown so the narrator does not read it aloud."""
    if not text:
        return ""
    text = BOLD_RE.sub(r"\1", text)
    text = ITALIC_RE.sub(r"\1", text)
    text = HEADER_RE.sub("", text)
    text = CODE_BLOCK_RE.sub("", text)
    text = INLINE_CODE_RE.sub(r"\1", text)
    text = EXTRA_NEWLINES_RE.sub("\n\n", text)
    return text.strip()


def extract_vocabulary_markup(text: str) -> List[str]:
    """Return the **marked** vocabulary words in order of first use."""
    seen = set()
    words = []
    for match in VOCAB_RE.finditer(text):
        word = match.group(1).strip()
        if word and word.lower() not in seen:
            seen.add(word.lower())
            words.append(word)
    return words
