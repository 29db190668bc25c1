from __future__ import annotations

from typing import Dict, List

# Display names used inside the prompt for each translation language code
LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "zh_CN": "Simplified Chinese",
    "zh_TW": "Traditional Chinese",
    "ja": "Japanese",
    "vi": "Vietnamese",
    "th": "Thai",
    "id": "Indonesian",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "ru": "Russian",
}

# CEFR level -> TOPIK-aligned grammar the sentence should exercise, plus target length
DIFFICULTY_GUIDES: Dict[str, str] = {
    "A1": """
A1 (TOPIK I, level 1)
- Endings: -이에요/예요, -아요/어요, -았어요/었어요, -지요?, -네요
- Particles: 은/는, 이/가, 을/를, 도, (이)나, 에, 에서, 부터/까지, (으)로
- Negation and existence: 안, 이/가 아니다, 있어요/없어요
- Wish, plan, ability: -고 싶다, -(으)ㄹ 거예요, -(으)려고 해요, -(으)ㄹ 수 있다/없다
- Obligation, reason, condition: -아야/어야 해요, -아서/어서, -(으)니까, -(으)면
- Contrast, time, progress: -지만, -거나, -(으)ㄹ 때, -기 전, -(으)ㄴ 후, -고 있다
- Requests and help: -(으)세요, -지 마세요, -(으)ㄹ까요?, -아/어 주다, -아/어 보다
- Length: 5-8 words""",
    "A2": """
A2 (TOPIK I, level 2) - every sentence must use one of these forms
- Reason: -기 때문에, -(으)ㄹ까 봐
- Sequence and time: -아서/어서, -(으)면서, -는 동안에, -다가, -(으)ㄴ 지
- Background: -는데/-(으)ㄴ데, -(으)ㄴ데요/-는데요
- Conjecture: -(으)ㄹ 것 같다, -(으)ㄴ/는 것 같다
- Proposal and intent: -(으)ㅂ시다, -(으)ㄹ래요, -(으)ㄹ게요, -기로 하다, -(으)ㄹ까 하다
- Permission and concession: -아도/어도 되다, -(으)면 안 되다, -아도/어도
- Change and experience: -게 되다, -아/어지다, -(으)ㄴ 적이 있다/없다
- Reported speech: -다고 하다, -자고 하다, -냐고 하다, -(으)라고 하다
- Noun modifiers: -는, -(으)ㄴ, -(으)ㄹ
- Length: 8-12 words""",
    "B1": """
B1 (TOPIK II, level 3) - every sentence must use one of these forms
- Connectives: -느라고, -는 김에, -는 대신에, -는 바람에, -다가는, -더니, -던
- Conjecture: -(으)ㄴ가 보다, -나 보다, -(으)ㄹ 텐데
- Purpose and reason: -기 위해서, -(으)려면, -는 덕분에, -(으)므로
- Degree: -(으)ㄹ 정도로, -는 만큼, -아/어서 그런지
- Other: -(으)ㄴ 채로, -는 편이다, -다 보니까, -다 보면, -게 하다
- Noun modifiers are required: -(으)ㄴ, -는, -(으)ㄹ
- Length: 10-15 words""",
    "B2": """
B2 (TOPIK II, level 4) - every sentence must use one of these forms
- Connectives: -는 통에, -(으)ㄹ수록, -는 한편, -는 반면에, -는 대로, -도록
- Modality: -(으)ㄹ 모양이다, -(으)ㄹ 셈이다, -(으)ㄹ 리가 없다
- Degree: -(으)ㄹ 만하다, -(으)ㄹ 뿐만 아니라, -만 못하다
- Reason and condition: -는 탓에, -길래, -(으)ㄹ지라도, -(으)ㄹ 테니까
- Regret and intent: -(으)ㄹ걸 그랬다, -(으)ㄹ 뻔하다, -(으)려다가, -(으)려던 참이다
- Other: -는 사이에, -는 수밖에 없다, -(으)ㄴ/는 척하다, -곤 하다
- Length: 14-20 words""",
    "C1": """
C1 (TOPIK II, level 5+) - formal, written register
- Grammar: -(으)ㄴ 바 있다, -(으)로 인해(서), -에 따라(서), -에 의해(서), -고자, -는바
- Recollection: -더니, -더라도, -던데
- Emphasis: -(이)야말로, -는/은커녕, 마저, 조차
- Other: -듯이, -다시피, -(으)ㄴ/는 한, -을/를 비롯한, -을/를 통해(서), -기 십상이다
- Length: 16-24 words""",
    "C2": """
C2 (advanced) - the most complex structures that stay natural
- Academic and professional vocabulary, idioms, formal style
- Length: 16-28 words""",
}


def build_generation_prompt(words: List[str], difficulty: str, translation_language: str) -> str:
    guide = DIFFICULTY_GUIDES.get(difficulty) or DIFFICULTY_GUIDES["A1"]
    language_name = LANGUAGE_NAMES.get(translation_language, "English")
    return f"""
You are a Korean language teacher. Write {difficulty}-level fill-in-the-blank problems for the words below.

Words (dictionary form): {", ".join(words)}

Write exactly one problem per word, {len(words)} problems in total, in the order given. Every word must be used.

Level guide:
{guide}

Rules:
1. "word" is the input word exactly as given.
2. "answer" is the inflected form that fills the blank.
   - Nouns: the particle belongs in the answer ("지구력이", "발굽을", "산악지대로").
   - Verbs/adjectives: fully conjugated with the target grammar ("하느라고", "갈 거예요", "주요한").
3. "sentence" contains exactly one blank written as ( ).
   - Never write a particle or ending right after the blank: "( ) 필요해요." is correct, "( )이/가 필요해요." is wrong.
   - Noun-modifier blanks are followed directly by the noun: "경제에 ( ) 역할을 했어요."
   - The sentence ends with . ? or !
   - Use natural collocations ("밥을 먹다", not "식사를 먹다").
4. "hint" shows only the grammar form: "이/가", "-느라고", "-(으)ㄹ 거예요", "-지 않다 + 아서/어서".
   Use "" for a bare noun such as 오늘 or 내일. Never explain meaning.
5. "translation" is a natural {language_name} translation of the completed sentence (blank filled with the answer).
   Wrap the part that corresponds to the answer in square brackets, exactly once:
   "Because I'm [a student], I don't have much money."
   Never write ( ) in the translation.

Respond with JSON only, no markdown fences and no commentary:
{{
  "problems": [
    {{"word": string, "answer": string, "sentence": string, "hint": string, "translation": string}}
  ]
}}
""".strip()
