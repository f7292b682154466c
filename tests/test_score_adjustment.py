"""
Teacher score adjustments and the low-confidence review queue.
"""

from datetime import datetime, timezone

import pytest

from markwise.core.exceptions import (
    PermissionDeniedError,
    ScoreAdjustmentError,
    SubmissionInputError,
    SubmissionStateError,
)
from markwise.models.submission import QuestionResult, Submission, SubmissionStatus
from markwise.schemas.score import ScoreAdjustment
from markwise.services.scoring_service import adjust_submission_score, list_needing_review


def _graded_submission(db, assessment, student, score=5, status=SubmissionStatus.GRADED):
    sub = Submission(
        assessment_id=assessment.id,
        student_id=student.id,
        status=status.value,
        score=score if status == SubmissionStatus.GRADED else None,
        max_score=assessment.total_marks,
        graded_at=datetime.now(timezone.utc) if status == SubmissionStatus.GRADED else None,
    )
    db.add(sub)
    db.commit()
    db.refresh(sub)
    return sub


class TestAdjustScore:

    def test_first_adjustment_keeps_automated_score(
        self, db_session, test_teacher, test_student, test_assessment
    ):
        sub = _graded_submission(db_session, test_assessment, test_student)

        adjusted = adjust_submission_score(
            db_session,
            submission_id=sub.id,
            teacher=test_teacher,
            adjustment=ScoreAdjustment(score=7, reason="  Method marks missed by OCR  "),
        )

        assert adjusted.score == 7
        assert adjusted.original_score == 5
        assert adjusted.adjustment_reason == "Method marks missed by OCR"
        assert adjusted.adjusted_by_id == test_teacher.id
        assert adjusted.adjusted_at is not None

    def test_later_adjustment_does_not_touch_original_score(
        self, db_session, test_teacher, test_student, test_assessment
    ):
        sub = _graded_submission(db_session, test_assessment, test_student)
        for score in (7, 6):
            adjust_submission_score(
                db_session,
                submission_id=sub.id,
                teacher=test_teacher,
                adjustment=ScoreAdjustment(score=score, reason="review"),
            )

        db_session.refresh(sub)
        assert sub.score == 6
        assert sub.original_score == 5

    def test_adjustment_leaves_question_results_alone(
        self, db_session, test_teacher, test_student, test_assessment
    ):
        sub = _graded_submission(db_session, test_assessment, test_student)
        q1, q2 = test_assessment.questions
        db_session.add_all([
            QuestionResult(submission_id=sub.id, question_id=q1.id, awarded_marks=5, confidence=90),
            QuestionResult(submission_id=sub.id, question_id=q2.id, awarded_marks=0, confidence=90),
        ])
        db_session.commit()

        adjust_submission_score(
            db_session,
            submission_id=sub.id,
            teacher=test_teacher,
            adjustment=ScoreAdjustment(score=12, reason="Q2 answered on the back page"),
        )

        results = db_session.query(QuestionResult).filter_by(submission_id=sub.id).all()
        assert sorted(r.awarded_marks for r in results) == [0, 5]
        assert db_session.get(Submission, sub.id).score == 12

    @pytest.mark.parametrize("reason", ["", "   ", "\n\t"])
    def test_blank_reason_rejected(
        self, db_session, test_teacher, test_student, test_assessment, reason
    ):
        sub = _graded_submission(db_session, test_assessment, test_student)

        with pytest.raises(ScoreAdjustmentError):
            adjust_submission_score(
                db_session,
                submission_id=sub.id,
                teacher=test_teacher,
                adjustment=ScoreAdjustment(score=7, reason=reason),
            )

        db_session.refresh(sub)
        assert sub.score == 5
        assert sub.original_score is None
        assert sub.adjusted_by_id is None

    @pytest.mark.parametrize("score", [-1, 16])
    def test_score_outside_range_rejected(
        self, db_session, test_teacher, test_student, test_assessment, score
    ):
        sub = _graded_submission(db_session, test_assessment, test_student)

        with pytest.raises(ScoreAdjustmentError):
            adjust_submission_score(
                db_session,
                submission_id=sub.id,
                teacher=test_teacher,
                adjustment=ScoreAdjustment(score=score, reason="typo"),
            )

        db_session.refresh(sub)
        assert sub.score == 5

    @pytest.mark.parametrize("score", [0, 15])
    def test_range_bounds_accepted(
        self, db_session, test_teacher, test_student, test_assessment, score
    ):
        sub = _graded_submission(db_session, test_assessment, test_student)

        adjusted = adjust_submission_score(
            db_session,
            submission_id=sub.id,
            teacher=test_teacher,
            adjustment=ScoreAdjustment(score=score, reason="bounds"),
        )
        assert adjusted.score == score

    def test_other_teacher_rejected(
        self, db_session, other_teacher, test_student, test_assessment
    ):
        sub = _graded_submission(db_session, test_assessment, test_student)

        with pytest.raises(PermissionDeniedError):
            adjust_submission_score(
                db_session,
                submission_id=sub.id,
                teacher=other_teacher,
                adjustment=ScoreAdjustment(score=7, reason="not my class"),
            )

    def test_student_rejected(self, db_session, test_student, test_assessment):
        sub = _graded_submission(db_session, test_assessment, test_student)

        with pytest.raises(PermissionDeniedError):
            adjust_submission_score(
                db_session,
                submission_id=sub.id,
                teacher=test_student,
                adjustment=ScoreAdjustment(score=15, reason="please"),
            )

    @pytest.mark.parametrize(
        "status",
        [SubmissionStatus.PENDING, SubmissionStatus.PROCESSING, SubmissionStatus.FAILED],
    )
    def test_ungraded_submission_rejected(
        self, db_session, test_teacher, test_student, test_assessment, status
    ):
        sub = _graded_submission(db_session, test_assessment, test_student, status=status)

        with pytest.raises(SubmissionStateError):
            adjust_submission_score(
                db_session,
                submission_id=sub.id,
                teacher=test_teacher,
                adjustment=ScoreAdjustment(score=7, reason="too early"),
            )

    def test_missing_submission(self, db_session, test_teacher):
        with pytest.raises(SubmissionInputError):
            adjust_submission_score(
                db_session,
                submission_id=999,
                teacher=test_teacher,
                adjustment=ScoreAdjustment(score=1, reason="x"),
            )


class TestReviewQueue:

    def _with_confidence(self, db, assessment, student, confidence):
        sub = _graded_submission(db, assessment, student)
        for question in assessment.questions:
            db.add(QuestionResult(
                submission_id=sub.id,
                question_id=question.id,
                awarded_marks=0,
                confidence=confidence if question.sequence == 1 else 95,
            ))
        db.commit()
        return sub

    def test_low_confidence_submission_listed(
        self, db_session, test_teacher, test_student, test_assessment
    ):
        sub = self._with_confidence(db_session, test_assessment, test_student, 40)

        queue = list_needing_review(db_session, teacher=test_teacher, threshold=60)
        assert [s.id for s in queue] == [sub.id]

    def test_confident_submission_not_listed(
        self, db_session, test_teacher, test_student, test_assessment
    ):
        self._with_confidence(db_session, test_assessment, test_student, 90)

        assert list_needing_review(db_session, teacher=test_teacher, threshold=60) == []

    def test_other_teachers_queue_is_empty(
        self, db_session, other_teacher, test_student, test_assessment
    ):
        self._with_confidence(db_session, test_assessment, test_student, 40)

        assert list_needing_review(db_session, teacher=other_teacher, threshold=60) == []
