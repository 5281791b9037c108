import pytest

from assessment import AssessmentPass, AssessmentService, PassState, score, submit_learning_style_test
from errors import IncompleteAssessment, NoValidAnswers, TransientIO
from schemas import ATTEMPT_ANSWERS, ASSESSMENT_ATTEMPTS, USER_LEARNING_STYLE, USERS, Assessment, AttemptAnswer, LearningStyle


def ans(style=None, points=None, question="q") -> AttemptAnswer:
    return AttemptAnswer(question_id=question, choice_id="c", learning_style_id=style, points=points)


def test_score_sums_points_per_style() -> None:
    assert score([ans("A", 2), ans("B", 1), ans("A", 1)]) == "A"
    assert score([ans("A", 1), ans("B", 1), ans("B", 1)]) == "B"


def test_score_tie_goes_to_first_style() -> None:
    assert score([ans("A", 1), ans("B", 1)]) == "A"
    assert score([ans("B", 1), ans("A", 1)]) == "B"


def test_score_defaults_points_to_one() -> None:
    assert score([ans("A", 1), ans("B"), ans("B")]) == "B"


def test_score_skips_answers_without_style(caplog) -> None:
    assert score([ans(None, 5), ans("B", 1)]) == "B"
    assert "no learning style" in caplog.text


def test_score_without_usable_answers() -> None:
    with pytest.raises(NoValidAnswers):
        score([ans(None, 1)])
    with pytest.raises(NoValidAnswers):
        score([])


def test_active_assessment_is_hydrated_in_order(assessments, seed) -> None:
    ids = seed.assessment(seed.learning_styles())
    seed.store.insert("assessments", {"type": "other_test", "is_active": True})

    assessment = assessments.get_active_assessment()
    assert assessment.id == ids["assessment"]
    assert [q.id for q in assessment.questions] == [ids["q1"], ids["q2"]]
    assert [c.id for c in assessment.questions[0].choices] == [ids["q1-visual"], ids["q1-auditory"]]


def test_position_and_insertion_order_fallbacks(assessments, store) -> None:
    assessment_id = store.insert("assessments", {"type": "learning_style_test", "is_active": True})
    second = store.insert("questions", {"assessment_id": assessment_id, "text": "b", "position": 2})
    first = store.insert("questions", {"assessment_id": assessment_id, "text": "a", "position": 1})
    plain_a = store.insert("choices", {"question_id": first, "text": "x"})
    plain_b = store.insert("choices", {"question_id": first, "text": "y"})

    assessment = assessments.get_active_assessment()
    assert [q.id for q in assessment.questions] == [first, second]
    assert [c.id for c in assessment.questions[0].choices] == [plain_a, plain_b]


def test_no_active_assessment(assessments, store) -> None:
    store.insert("assessments", {"type": "learning_style_test", "is_active": False})
    assert assessments.get_active_assessment() is None


def test_record_attempt_and_answers(assessments, store) -> None:
    attempt_id = assessments.record_attempt("u1", "a1", "completed", 0)
    attempt = store.get_one(ASSESSMENT_ATTEMPTS, attempt_id)
    assert attempt["started_at"] == attempt["completed_at"]
    assert attempt["status"] == "completed"

    ids = assessments.record_answers(attempt_id, [ans("A", 2, "q1"), ans("B", 1, "q2")])
    rows = [store.get_one(ATTEMPT_ANSWERS, i) for i in ids]
    assert [r["question_id"] for r in rows] == ["q1", "q2"]
    assert all(r["attempt_id"] == attempt_id and r["answered_at"] for r in rows)


def test_record_answers_partial_failure_keeps_written_rows(store) -> None:
    class FlakyStore(type(store)):
        def __init__(self):
            super().__init__()
            self.answer_inserts = 0

        def insert(self, collection, data, id=None):
            if collection == ATTEMPT_ANSWERS:
                self.answer_inserts += 1
                if self.answer_inserts == 2:
                    raise TransientIO("write failed")
            return super().insert(collection, data, id)

    flaky = FlakyStore()
    with pytest.raises(TransientIO):
        AssessmentService(flaky).record_answers("att", [ans("A", question="q1"), ans("B", question="q2")])
    assert len(flaky.get_all(ATTEMPT_ANSWERS)) == 1


def test_assign_style_only_writes_history(assessments, store) -> None:
    store.insert(USERS, {"email": "ana@example.com"}, "u1")
    assessments.assign_style("u1", "visual", "att-1")
    [row] = store.get_all(USER_LEARNING_STYLE)
    assert (row["learning_style_id"], row["assessment_attempt_id"]) == ("visual", "att-1")
    assert store.get_one(USERS, "u1").get("learning_style_id") is None


def test_learning_style_characteristics_normalized(assessments, seed) -> None:
    styles = seed.learning_styles()
    visual = assessments.get_learning_style(styles["visual"])
    auditory = assessments.get_learning_style(styles["auditory"])
    assert visual.characteristics == ["Prefers diagrams", "Remembers faces"]
    assert auditory.characteristics == ["Enjoys lectures", "Talks things through"]
    assert len(assessments.list_learning_styles()) == 2
    assert LearningStyle(id="x", name="x").characteristics == []


def test_pass_navigation_and_selection(assessments, seed) -> None:
    styles = seed.learning_styles()
    ids = seed.assessment(styles)
    run = AssessmentPass(assessments.get_active_assessment())

    assert run.current_question.id == ids["q1"]
    run.previous()
    assert run.index == 0
    run.next()
    run.next()
    assert run.current_question.id == ids["q2"]

    answer = run.select(ids["q1"], ids["q1-auditory"])
    assert (answer.learning_style_id, answer.points) == (styles["auditory"], 1)
    assert [q.id for q in run.unanswered()] == [ids["q2"]]


def test_pass_over_empty_assessment() -> None:
    run = AssessmentPass(Assessment(id="a", type="learning_style_test"))
    assert run.current_question is None
    run.next()
    assert run.index == 0
    assert run.unanswered() == []


def test_submit_writes_history_and_user_pointer(assessments, users, seed, store) -> None:
    styles = seed.learning_styles()
    ids = seed.assessment(styles)
    store.insert(USERS, {"email": "ana@example.com"}, "u1")

    run = AssessmentPass(assessments.get_active_assessment())
    run.select(ids["q1"], ids["q1-auditory"])
    run.select(ids["q2"], ids["q2-visual"])
    style_id = submit_learning_style_test(assessments, users, "u1", run)

    assert style_id == styles["visual"]
    assert run.state == PassState.DONE
    [history] = store.get_all(USER_LEARNING_STYLE)
    assert history["learning_style_id"] == style_id
    assert users.get_user_by_id("u1").learning_style_id == style_id
    assert len(store.get_all(ATTEMPT_ANSWERS)) == 2
    with pytest.raises(ValueError):
        submit_learning_style_test(assessments, users, "u1", run)


def test_retake_appends_history_and_moves_pointer(assessments, users, seed, store) -> None:
    styles = seed.learning_styles()
    ids = seed.assessment(styles)
    store.insert(USERS, {"email": "ana@example.com"}, "u1")

    for choice in ("visual", "auditory"):
        run = AssessmentPass(assessments.get_active_assessment())
        run.select(ids["q1"], ids[f"q1-{choice}"])
        run.select(ids["q2"], ids[f"q2-{choice}"])
        submit_learning_style_test(assessments, users, "u1", run)

    assert len(store.get_all(USER_LEARNING_STYLE)) == 2
    assert len(store.get_all(ASSESSMENT_ATTEMPTS)) == 2
    assert users.get_user_by_id("u1").learning_style_id == styles["auditory"]


def test_submit_requires_every_question(assessments, users, seed, store) -> None:
    ids = seed.assessment(seed.learning_styles())
    run = AssessmentPass(assessments.get_active_assessment())
    run.select(ids["q1"], ids["q1-visual"])

    with pytest.raises(IncompleteAssessment):
        submit_learning_style_test(assessments, users, "u1", run)
    assert run.state == PassState.IN_PROGRESS
    assert store.get_all(ASSESSMENT_ATTEMPTS) == []
