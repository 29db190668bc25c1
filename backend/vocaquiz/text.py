"""Helpers for the blank-marker sentence format shared by generation, audio and grading."""
from __future__ import annotations

import re
from typing import Optional

BLANK_MARKER = "( )"
BLANK_RE = re.compile(r"\(\s*\)")

_TERMINAL_PUNCTUATION = (".", "?", "!")
_DUPLICATE_TERMINAL_RE = re.compile(r"([.?!])\s*\.+\s*$")
_DOUBLE_PERIOD_RE = re.compile(r"\.\s*\.$")
_WHITESPACE_RE = re.compile(r"\s+")
_BRACKETED_RE = re.compile(r"\[[^\]]+\]")
# "이/가", "(으)ㄴ", "-는" written straight after the blank
_GRAMMAR_PATTERN_RE = re.compile(r"^(?:\(으\)|-|[가-힣]+/[가-힣]+)")

# Longest first so "에서" wins over "에"
PARTICLES = tuple(
    sorted(
        (
            "이", "가", "을", "를", "은", "는", "의", "에", "에서", "에게", "한테",
            "로", "으로", "도", "와", "과", "만", "까지", "부터", "처럼", "보다", "이나", "나",
        ),
        key=len,
        reverse=True,
    )
)


def count_blanks(sentence: str) -> int:
    return len(BLANK_RE.findall(sentence or ""))


def fill_blank(sentence: str, answer: str) -> str:
    return BLANK_RE.sub(lambda _m: answer, sentence)


def normalize_terminal_punctuation(text: str) -> str:
    """Collapse duplicated sentence-final punctuation left behind by substitution."""
    text = text.strip()
    text = _DUPLICATE_TERMINAL_RE.sub(r"\1", text)
    text = _DOUBLE_PERIOD_RE.sub(".", text)
    return text


def complete_sentence(sentence: str, answer: str) -> str:
    return normalize_terminal_punctuation(fill_blank(sentence, answer))


def ends_with_terminal_punctuation(text: str) -> bool:
    return text.rstrip().endswith(_TERMINAL_PUNCTUATION)


def trailing_particle(answer: str) -> Optional[str]:
    answer = (answer or "").strip()
    for particle in PARTICLES:
        if answer.endswith(particle) and len(answer) > len(particle):
            return particle
    return None


def has_duplicated_particle(sentence: str, answer: str) -> bool:
    """True when the sentence repeats, right after the blank, a particle or ending the answer carries."""
    match = BLANK_RE.search(sentence or "")
    if match is None:
        return False
    tail = sentence[match.end():]
    if not tail or tail[0].isspace() or tail[0] in _TERMINAL_PUNCTUATION or tail[0] == ",":
        return False
    if _GRAMMAR_PATTERN_RE.match(tail):
        return True
    particle = trailing_particle(answer)
    return particle is not None and tail.startswith(particle)


def normalize_answer(value: Optional[str]) -> str:
    # All whitespace is dropped, so "학 생" and "학생" compare equal. Case is kept.
    return _WHITESPACE_RE.sub("", value or "")


def mask_translation(translation: str) -> str:
    """Replace each [bracketed] answer span with underscores, at least five."""
    if not translation:
        return translation
    return _BRACKETED_RE.sub(lambda m: "_" * max(5, len(m.group(0)) - 2), translation)


def unmask_translation(translation: str) -> str:
    if not translation:
        return translation
    return translation.replace("[", "").replace("]", "")
