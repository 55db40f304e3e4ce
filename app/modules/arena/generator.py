"""Arena question generator.

Provides:
- generate_arena_questions(vocab_list, ...) -> list[Question]
- generate_room_code(...) -> str
- shuffle_options(options, ...) -> list[str]

Each question picks a correct vocabulary entry and one of seven templates.
Distractors come from rejection sampling over the catalog, bounded by
``ARENA_DISTRACTOR_MAX_ATTEMPTS``; when the catalog runs dry the remaining
slots get ``[Distractor N]`` placeholders.
"""

from __future__ import annotations

import random
from operator import attrgetter
from typing import Callable, Optional, Sequence

from app.core.config import settings
from app.modules.arena.errors import InsufficientVocabulary
from app.modules.arena.models import (
    OPTIONS_PER_QUESTION,
    QUESTIONS_PER_MATCH,
    ROOM_CODE_ALPHABET,
    ROOM_CODE_LENGTH,
    ArenaInputQuestion,
    ArenaQuizQuestion,
    Question,
    VocabularyItem,
)

NUM_TEMPLATES = 7
MIN_VOCABULARY = OPTIONS_PER_QUESTION
DISTRACTORS_PER_QUESTION = OPTIONS_PER_QUESTION - 1


def carrier_sentence(word: str) -> str:
    return f"I like {word}."


def generate_room_code(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    return "".join(rng.choice(ROOM_CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def shuffle_options(options: Sequence[str], rng: Optional[random.Random] = None) -> list[str]:
    """Fisher-Yates shuffle returning a new list."""
    rng = rng or random.Random()
    out = list(options)
    for i in range(len(out) - 1, 0, -1):
        j = rng.randrange(i + 1)
        out[i], out[j] = out[j], out[i]
    return out


def _sample_distractors(
    vocab: Sequence[VocabularyItem],
    correct_item: VocabularyItem,
    value_of: Callable[[VocabularyItem], str],
    rng: random.Random,
    max_attempts: int,
) -> list[str]:
    correct_value = value_of(correct_item)
    used_words = {correct_item.word}
    values: list[str] = []
    attempts = 0
    while len(values) < DISTRACTORS_PER_QUESTION and attempts < max_attempts:
        attempts += 1
        item = rng.choice(vocab)
        if item.word in used_words:
            continue
        value = value_of(item)
        # entries can share a meaning or pinyin; options must still be unique
        if value == correct_value or value in values:
            continue
        used_words.add(item.word)
        values.append(value)

    n = 1
    while len(values) < DISTRACTORS_PER_QUESTION:
        placeholder = f"[Distractor {n}]"
        n += 1
        if placeholder != correct_value and placeholder not in values:
            values.append(placeholder)
    return values


def _quiz(
    *,
    q_type_id: int,
    text: str,
    correct_value: str,
    distractors: list[str],
    rng: random.Random,
    audio_word: Optional[str] = None,
    audio_sentence: Optional[str] = None,
) -> ArenaQuizQuestion:
    options = shuffle_options([correct_value, *distractors], rng)
    return ArenaQuizQuestion(
        q_type_id=q_type_id,
        text=text,
        options=options,
        correct=options.index(correct_value),
        audio_word=audio_word,
        audio_sentence=audio_sentence,
    )


def _build_question(
    template: int,
    item: VocabularyItem,
    vocab: Sequence[VocabularyItem],
    rng: random.Random,
    max_attempts: int,
) -> Question:
    def distractors(value_of: Callable[[VocabularyItem], str]) -> list[str]:
        return _sample_distractors(vocab, item, value_of, rng, max_attempts)

    meaning = attrgetter("meaning")
    pinyin = attrgetter("pinyin")
    word = attrgetter("word")

    if template == 1:
        return _quiz(
            q_type_id=1,
            text=f"What is the meaning of <b>{item.word}</b>?",
            correct_value=item.meaning,
            distractors=distractors(meaning),
            rng=rng,
        )
    if template == 2:
        return _quiz(
            q_type_id=2,
            text=f"What is the pinyin of <b>{item.word}</b>?",
            correct_value=item.pinyin,
            distractors=distractors(pinyin),
            rng=rng,
        )
    if template == 3:
        return _quiz(
            q_type_id=3,
            text=f'Which word means <b>"{item.meaning}"</b>?',
            correct_value=item.word,
            distractors=distractors(word),
            rng=rng,
        )
    if template == 4:
        return _quiz(
            q_type_id=4,
            text="Listen and pick the correct word:",
            correct_value=item.word,
            distractors=distractors(word),
            rng=rng,
            audio_word=item.word,
        )
    if template == 5:
        return _quiz(
            q_type_id=5,
            text="Listen and pick the correct meaning:",
            correct_value=item.meaning,
            distractors=distractors(meaning),
            rng=rng,
            audio_word=item.word,
        )
    if template == 6:
        return _quiz(
            q_type_id=6,
            text="Listen to the sentence and pick its meaning:",
            correct_value=carrier_sentence(item.meaning),
            distractors=distractors(lambda v: carrier_sentence(v.meaning)),
            rng=rng,
            audio_sentence=carrier_sentence(item.word),
        )
    if template == 7:
        sentence = carrier_sentence(item.word)
        return ArenaInputQuestion(
            text="Listen and write down the sentence:",
            correct=sentence,
            audio_sentence=sentence,
        )
    raise ValueError(f"Unknown question template: {template}")


def generate_arena_questions(
    vocab_list: Sequence[VocabularyItem],
    *,
    count: int = QUESTIONS_PER_MATCH,
    rng: Optional[random.Random] = None,
    max_attempts: Optional[int] = None,
) -> list[Question]:
    """Generate ``count`` randomized arena questions from the catalog."""
    vocab = list(vocab_list)
    if len(vocab) < MIN_VOCABULARY or len({v.word for v in vocab}) < MIN_VOCABULARY:
        raise InsufficientVocabulary(
            f"At least {MIN_VOCABULARY} distinct vocabulary entries are required"
        )
    rng = rng or random.Random()
    attempts = max_attempts or settings.arena.distractor_max_attempts

    out: list[Question] = []
    for _ in range(count):
        item = rng.choice(vocab)
        template = rng.randint(1, NUM_TEMPLATES)
        out.append(_build_question(template, item, vocab, rng, attempts))
    return out
