"""
Text Segmenter Module

Splits story text into sentences and words for read-along highlighting.

The sentence pattern is deliberately naive: abbreviations, decimal numbers
and quoted punctuation are split wherever a terminator appears. Highlight
keys and rendered spans rely on this exact behaviour, so it must not be
"improved" in one place without the other.
"""

import re
from dataclasses import dataclass
from typing import List, Tuple

# One or more non-terminators followed by one or more terminators
SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")
WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class SentenceSpan:
    """A sentence positioned within the whole story."""

    index: int
    paragraph_index: int  # Paragraph of the first word
    text: str
    word_paragraphs: Tuple[int, ...] = ()  # Paragraph of each word, in order

    @property
    def words(self) -> List[str]:
        return segment_words(self.text)


def segment_sentences(text: str) -> List[str]:
    """
    Split text into sentences.

    Every run of non-terminator characters followed by terminators becomes a
    sentence. Text left over after the last terminator is appended (trimmed)
    as a final sentence. Text without any terminator is returned whole.

    Args:
        text: Raw story text

    Returns:
        Ordered list of sentences
    """
    sentences = SENTENCE_RE.findall(text)
    matched = "".join(sentences)
    remaining = text[len(matched):].strip()
    if remaining:
        sentences.append(remaining)
    return sentences if sentences else [text]


def segment_words(sentence: str) -> List[str]:
    """Split a sentence into whitespace-delimited words."""
    trimmed = sentence.strip()
    if not trimmed:
        return []
    return WHITESPACE_RE.split(trimmed)


def segment_story(text: str) -> List[SentenceSpan]:
    """
    Segment a whole story and place every word in its paragraph.

    Sentences are found across the whole text, exactly as the highlight
    plan finds them, so a line without a terminator (a title, say) runs on
    into the sentence that follows it. Paragraphs are the non-blank lines;
    a sentence that crosses a line break has words in more than one.

    Args:
        text: Full story text, newline-delimited into paragraphs

    Returns:
        List of SentenceSpan objects in reading order
    """
    spans: List[SentenceSpan] = []
    paragraph = 0
    paragraph_has_words = False
    for index, sentence in enumerate(segment_sentences(text)):
        word_paragraphs: List[int] = []
        for line_number, line in enumerate(sentence.split("\n")):
            if line_number and paragraph_has_words:
                paragraph += 1
                paragraph_has_words = False
            words = segment_words(line)
            word_paragraphs.extend([paragraph] * len(words))
            paragraph_has_words = paragraph_has_words or bool(words)
        spans.append(SentenceSpan(
            index=index,
            paragraph_index=word_paragraphs[0] if word_paragraphs else paragraph,
            text=sentence,
            word_paragraphs=tuple(word_paragraphs),
        ))
    return spans
