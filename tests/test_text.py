import pytest

from vocaquiz.text import (
    complete_sentence,
    count_blanks,
    has_duplicated_particle,
    mask_translation,
    normalize_answer,
    trailing_particle,
    unmask_translation,
)


@pytest.mark.parametrize(
    "sentence,expected",
    [("( ) 좋아요.", 1), ("저는 (  ) 가요.", 1), ("()와 ( )", 2), ("빈칸이 없어요.", 0), ("", 0)],
)
def test_count_blanks(sentence, expected):
    assert count_blanks(sentence) == expected


def test_complete_sentence_fills_blank_and_fixes_punctuation():
    assert complete_sentence("저는 ( ) 가요.", "학교에") == "저는 학교에 가요."
    assert complete_sentence("( )", "좋아요..") == "좋아요."
    assert complete_sentence("정말 ( )", "좋아요?.") == "정말 좋아요?"


def test_trailing_particle_prefers_longest():
    assert trailing_particle("학교에서") == "에서"
    assert trailing_particle("학생이") == "이"
    assert trailing_particle("이") is None


@pytest.mark.parametrize(
    "sentence,answer,duplicated",
    [
        ("( ) 필요해요.", "시간이", False),
        ("( )이/가 필요해요.", "시간이", True),
        ("( )이 필요해요.", "시간이", True),
        ("( )-는 사람", "먹", True),
        ("( )(으)ㄴ 책", "읽", True),
        ("경제에 ( ) 역할을 했어요.", "주요한", False),
        ("( ).", "가요", False),
    ],
)
def test_duplicated_particle_after_blank(sentence, answer, duplicated):
    assert has_duplicated_particle(sentence, answer) is duplicated


def test_normalize_answer_drops_all_whitespace_and_keeps_case():
    assert normalize_answer(" 학 생 ") == "학생"
    assert normalize_answer("\t학생\n") == "학생"
    assert normalize_answer(None) == ""
    assert normalize_answer("Seoul") != normalize_answer("seoul")


def test_mask_translation_uses_at_least_five_underscores():
    assert mask_translation("I am [a student].") == "I am _________."
    assert mask_translation("It is [ok].") == "It is _____."
    assert mask_translation("") == ""


def test_unmask_translation_drops_brackets():
    assert unmask_translation("I am [a student].") == "I am a student."
