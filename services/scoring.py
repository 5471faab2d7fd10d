"""
Scoring engine.

Pure functions: merge a submitted answer set over the stored one, mark each
question correct or not, and compute the percentage. No I/O.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from database.records import AnswerRecord, QuestionDef


@dataclass
class ScoreResult:
    answers: List[AnswerRecord]
    correct_answers: int
    total_questions: int
    percentage: float


def build_answer_map(answers: Iterable[AnswerRecord], total_questions: int) -> Dict[int, AnswerRecord]:
    """Index answers by question, dropping indices outside [0, total_questions).

    Later entries win over earlier ones for the same question.
    """
    answer_map = {}
    for answer in answers or []:
        if 0 <= answer.question_index < total_questions:
            answer_map[answer.question_index] = answer
    return answer_map


def merge_answers(
    total_questions: int,
    provided: Iterable[AnswerRecord],
    existing: Iterable[AnswerRecord],
) -> List[AnswerRecord]:
    """Overlay provided answers on the stored ones, one slot per question."""
    provided_map = build_answer_map(provided, total_questions)
    existing_map = build_answer_map(existing, total_questions)

    merged = []
    for index in range(total_questions):
        source = provided_map.get(index) or existing_map.get(index)
        merged.append(AnswerRecord(
            question_index=index,
            selected_option=source.selected_option if source else None,
            time_spent=source.time_spent if source else 0,
        ))
    return merged


def is_correct(question: QuestionDef, selected_option: Optional[int]) -> bool:
    if selected_option is None:
        return False
    if not 0 <= selected_option < len(question.options):
        return False
    return selected_option == question.correct_option_index


def compute_percentage(correct_answers: int, total_questions: int) -> float:
    if total_questions == 0:
        return 0.0
    return round(correct_answers / total_questions * 100, 2)


def is_passing(percentage: float, passing_percentage: float) -> bool:
    return percentage >= passing_percentage


def score_answers(
    questions: Sequence[QuestionDef],
    provided: Iterable[AnswerRecord] = (),
    existing: Iterable[AnswerRecord] = (),
) -> ScoreResult:
    """Merge provided over existing answers and score every question."""
    merged = merge_answers(len(questions), provided, existing)
    for answer in merged:
        answer.is_correct = is_correct(questions[answer.question_index], answer.selected_option)

    correct = sum(1 for answer in merged if answer.is_correct)
    return ScoreResult(
        answers=merged,
        correct_answers=correct,
        total_questions=len(questions),
        percentage=compute_percentage(correct, len(questions)),
    )


def letter_grade(percentage: float) -> str:
    if percentage >= 90:
        return "A"
    if percentage >= 80:
        return "B"
    if percentage >= 70:
        return "C"
    if percentage >= 60:
        return "D"
    return "F"
