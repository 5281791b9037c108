"""
Learning-style assessment.

The test is stored as three collections (assessments, questions, choices) and
joined here at read time. A learner works through an ``AssessmentPass`` held by
the client; nothing is persisted until the whole test is submitted, at which
point the attempt, its answers, the scored style and the user's style pointer
are written one after the other.
"""

import logging
import os
from enum import Enum
from typing import Dict, Iterable, List, Optional

from database import Store, eq, now_utc
from errors import IncompleteAssessment, NoValidAnswers, NotFound
from schemas import (
    ASSESSMENT_ATTEMPTS,
    ASSESSMENTS,
    ATTEMPT_ANSWERS,
    CHOICES,
    LEARNING_STYLES,
    QUESTIONS,
    USER_LEARNING_STYLE,
    Assessment,
    AttemptAnswer,
    Choice,
    LearningStyle,
    Question,
)

logger = logging.getLogger(__name__)

LEARNING_STYLE_ASSESSMENT = os.getenv("LEARNING_STYLE_ASSESSMENT", "learning_style_test")


def _position(item) -> int:
    return item.order or item.position or 0


def score(answers: Iterable[AttemptAnswer]) -> str:
    """Return the learning style with the most points.

    Each answer counts its ``points`` (1 when unset) toward its style. On a
    tie the style that entered the tally first wins.
    """
    tally: Dict[str, int] = {}
    for answer in answers:
        if not answer.learning_style_id:
            logger.warning("Answer to question %s has no learning style, skipped", answer.question_id)
            continue
        tally[answer.learning_style_id] = tally.get(answer.learning_style_id, 0) + (answer.points or 1)

    best_score = 0
    best_style = None
    for style_id, points in tally.items():
        if points > best_score:
            best_score = points
            best_style = style_id
    logger.info("Learning style tally %s, dominant %s", tally, best_style)
    if best_style is None:
        raise NoValidAnswers("No answer carries a learning style")
    return best_style


class AssessmentService:
    def __init__(self, store: Store):
        self.store = store

    def get_active_assessment(self, assessment_type: str = LEARNING_STYLE_ASSESSMENT) -> Optional[Assessment]:
        found = self.store.query(ASSESSMENTS, [eq("type", assessment_type), eq("is_active", True)])
        if not found:
            return None
        assessment = found[0]

        questions = []
        for doc in self.store.query(QUESTIONS, [eq("assessment_id", assessment["id"])]):
            choices = [Choice.model_validate(c) for c in self.store.query(CHOICES, [eq("question_id", doc["id"])])]
            choices.sort(key=_position)
            questions.append(Question.model_validate({**doc, "choices": choices}))
        questions.sort(key=_position)
        return Assessment.model_validate({**assessment, "questions": questions})

    def record_attempt(self, user_id: str, assessment_id: str, status: str = "completed", score: int = 0) -> str:
        # the whole test is submitted at once
        now = now_utc()
        return self.store.insert(ASSESSMENT_ATTEMPTS, {
            "user_id": user_id,
            "assessment_id": assessment_id,
            "status": status,
            "score": score,
            "started_at": now,
            "completed_at": now,
        })

    def record_answers(self, attempt_id: str, answers: Iterable[AttemptAnswer]) -> List[str]:
        """Insert one row per answer. Rows already written stay if a later insert fails."""
        return [
            self.store.insert(ATTEMPT_ANSWERS, {
                **answer.model_dump(exclude={"attempt_id", "answered_at"}),
                "attempt_id": attempt_id,
                "answered_at": now_utc(),
            })
            for answer in answers
        ]

    def score(self, answers: Iterable[AttemptAnswer]) -> str:
        return score(answers)

    def assign_style(self, user_id: str, style_id: str, attempt_id: str) -> str:
        """Append to the style history. The user's own pointer is written by UserDirectory."""
        return self.store.insert(USER_LEARNING_STYLE, {
            "user_id": user_id,
            "learning_style_id": style_id,
            "assessment_attempt_id": attempt_id,
            "assigned_at": now_utc(),
        })

    def list_learning_styles(self) -> List[LearningStyle]:
        return [LearningStyle.model_validate(d) for d in self.store.get_all(LEARNING_STYLES)]

    def get_learning_style(self, style_id: str) -> Optional[LearningStyle]:
        doc = self.store.get_one(LEARNING_STYLES, style_id)
        return LearningStyle.model_validate(doc) if doc else None


class PassState(str, Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTING = "submitting"
    SCORED = "scored"
    DONE = "done"


class AssessmentPass:
    """One learner's run through an assessment, answers keyed by question."""

    def __init__(self, assessment: Assessment):
        self.assessment = assessment
        self.index = 0
        self.answers: Dict[str, AttemptAnswer] = {}
        self.state = PassState.IN_PROGRESS
        self.style_id: Optional[str] = None

    @property
    def current_question(self) -> Optional[Question]:
        if not self.assessment.questions:
            return None
        return self.assessment.questions[self.index]

    def select(self, question_id: str, choice_id: str) -> AttemptAnswer:
        question = next((q for q in self.assessment.questions if q.id == question_id), None)
        if question is None:
            raise NotFound(f"Question {question_id} is not part of this assessment")
        choice = next((c for c in question.choices if c.id == choice_id), None)
        if choice is None:
            raise NotFound(f"Choice {choice_id} does not belong to question {question_id}")
        answer = AttemptAnswer(
            question_id=question_id,
            choice_id=choice_id,
            learning_style_id=choice.learning_style_id,
            points=choice.points or 1,
        )
        self.answers[question_id] = answer
        return answer

    def next(self) -> None:
        if self.index < len(self.assessment.questions) - 1:
            self.index += 1

    def previous(self) -> None:
        if self.index > 0:
            self.index -= 1

    def unanswered(self) -> List[Question]:
        return [q for q in self.assessment.questions if q.id not in self.answers]


def submit_learning_style_test(assessments: AssessmentService, users, user_id: str, run: AssessmentPass) -> str:
    """Persist a finished pass and assign the resulting style to the user.

    Writes the attempt, its answers, the style history row and finally the
    ``learning_style_id`` pointer on the user document. Returns the style id.
    """
    if run.state != PassState.IN_PROGRESS:
        raise ValueError(f"Assessment pass is already {run.state.value}")
    missing = run.unanswered()
    if missing:
        raise IncompleteAssessment(f"{len(missing)} question(s) left unanswered")

    run.state = PassState.SUBMITTING
    try:
        attempt_id = assessments.record_attempt(user_id, run.assessment.id, "completed", 0)
        answers = list(run.answers.values())
        assessments.record_answers(attempt_id, answers)
        style_id = assessments.score(answers)
        run.state = PassState.SCORED
        assessments.assign_style(user_id, style_id, attempt_id)
        users.set_learning_style(user_id, style_id)
    except Exception:
        run.state = PassState.IN_PROGRESS
        raise
    run.style_id = style_id
    run.state = PassState.DONE
    logger.info("User %s assigned learning style %s", user_id, style_id)
    return style_id
