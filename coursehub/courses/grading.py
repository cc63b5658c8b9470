"""
Quiz grading

Multiple-choice and true/false answers are option ids, short answers are
compared case-insensitively after trimming. Essays need manual review, so a
quiz containing one is never marked passed automatically; the percentage is
taken over the auto-graded questions only.
"""

from typing import List

from coursehub.config import DEFAULT_QUIZ_PASSING_SCORE
from coursehub.courses.stats import round_half_up


def _points(question: dict) -> int:
    return question.get("points") or 1


def grade_question(question: dict, answer) -> dict:
    correct = False
    qtype = question["type"]

    if qtype in ("multiple-choice", "true-false"):
        correct_option = next((o for o in question.get("options", []) if o.get("is_correct")), None)
        correct = bool(correct_option and answer and correct_option["option_id"] == answer)
    elif qtype == "short-answer":
        expected = question.get("correct_answer")
        if expected and answer is not None:
            correct = expected.strip().lower() == str(answer).strip().lower()

    return {
        "question_id": question["question_id"],
        "answer": answer,
        "is_correct": correct,
        "points": _points(question) if correct else 0
    }


def grade_quiz(quiz: dict, answers: List[dict]) -> dict:
    by_question = {a["question_id"]: a.get("answer") for a in answers}

    graded = []
    score = 0
    total_points = 0
    has_essay = False

    for question in quiz.get("questions", []):
        result = grade_question(question, by_question.get(question["question_id"]))
        graded.append(result)
        if question["type"] == "essay":
            has_essay = True
            continue
        total_points += _points(question)
        score += result["points"]

    percentage = int(round_half_up(score / total_points * 100)) if total_points > 0 else 0
    passed = not has_essay and percentage >= quiz.get("passing_score", DEFAULT_QUIZ_PASSING_SCORE)

    return {
        "score": score,
        "total_points": total_points,
        "percentage": percentage,
        "passed": passed,
        "needs_review": has_essay,
        "answers": graded
    }
