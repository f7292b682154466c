# markwise/services/storage.py
"""
Storage collaborator for the grading pipeline.

Wraps the synchronous SQLAlchemy session in coroutine methods: every call
opens its own session in a worker thread, so the pipeline never holds a
session (or a lock) across a backend call.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from markwise.core.exceptions import (
    GradingInProgressError,
    SubmissionInputError,
    SubmissionStateError,
)
from markwise.db.session import SessionLocal
from markwise.models.assessment import Assessment, AssessmentStatus
from markwise.models.submission import (
    QuestionResult,
    Submission,
    SubmissionFile,
    SubmissionStatus,
)
from markwise.services.grading import (
    Criterion,
    GradedQuestion,
    MarkScheme,
    QuestionScheme,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredFile:
    location: str
    original_name: str
    mime_type: str


@dataclass(frozen=True)
class SubmissionSnapshot:
    id: int
    assessment_id: int
    student_id: int
    status: str
    score: Optional[int]
    max_score: int
    error_reason: Optional[str]
    original_score: Optional[int]


@dataclass(frozen=True)
class CreatedSubmission:
    id: int
    max_score: int
    # file locators of the submission this one replaced
    replaced_locators: tuple[str, ...] = ()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot(submission: Submission) -> SubmissionSnapshot:
    return SubmissionSnapshot(
        id=submission.id,
        assessment_id=submission.assessment_id,
        student_id=submission.student_id,
        status=submission.status,
        score=submission.score,
        max_score=submission.max_score,
        error_reason=submission.error_reason,
        original_score=submission.original_score,
    )


def mark_scheme_from_assessment(assessment: Assessment) -> MarkScheme:
    questions = tuple(
        QuestionScheme(
            id=q.id,
            sequence=q.sequence,
            label=q.label,
            prompt=q.prompt,
            max_marks=q.max_marks,
            criteria=tuple(
                Criterion(id=c.id, description=c.description, marks=c.marks)
                for c in q.criteria
            ),
        )
        for q in assessment.questions
    )
    return MarkScheme(
        assessment_id=assessment.id,
        title=assessment.title,
        strictness=assessment.strictness,
        total_marks=assessment.total_marks,
        questions=questions,
        reference_text=assessment.mark_scheme_text,
    )


class SqlAlchemySubmissionStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    async def _run(self, fn, *args, **kwargs):
        def call():
            db = self.session_factory()
            try:
                return fn(db, *args, **kwargs)
            finally:
                db.close()

        return await run_in_threadpool(call)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    async def get_assessment_with_mark_scheme(self, assessment_id: int) -> MarkScheme:
        return await self._run(self._get_mark_scheme, assessment_id)

    @staticmethod
    def _get_mark_scheme(db: Session, assessment_id: int) -> MarkScheme:
        assessment = db.get(Assessment, assessment_id)
        if assessment is None:
            raise SubmissionInputError(f"Assessment {assessment_id} not found")
        if not assessment.questions:
            raise SubmissionInputError(f"Assessment {assessment_id} has no questions")
        return mark_scheme_from_assessment(assessment)

    async def find_submission(self, submission_id: int) -> Optional[SubmissionSnapshot]:
        return await self._run(self._find_submission, submission_id)

    @staticmethod
    def _find_submission(db: Session, submission_id: int) -> Optional[SubmissionSnapshot]:
        submission = db.get(Submission, submission_id)
        return _snapshot(submission) if submission is not None else None

    async def list_files(self, submission_id: int) -> list[StoredFile]:
        return await self._run(self._list_files, submission_id)

    @staticmethod
    def _list_files(db: Session, submission_id: int) -> list[StoredFile]:
        rows = (
            db.query(SubmissionFile)
            .filter(SubmissionFile.submission_id == submission_id)
            .order_by(SubmissionFile.page_index.asc())
            .all()
        )
        return [StoredFile(r.location, r.original_name, r.mime_type) for r in rows]

    # ------------------------------------------------------------------
    # submission lifecycle
    # ------------------------------------------------------------------

    async def create_submission(self, assessment_id: int, student_id: int) -> CreatedSubmission:
        return await self._run(self._create_submission, assessment_id, student_id)

    @staticmethod
    def _create_submission(db: Session, assessment_id: int, student_id: int) -> CreatedSubmission:
        assessment = db.get(Assessment, assessment_id)
        if assessment is None:
            raise SubmissionInputError(f"Assessment {assessment_id} not found")
        if assessment.status != AssessmentStatus.ACTIVE.value:
            raise SubmissionInputError("Assessment is not accepting submissions")

        replaced: tuple[str, ...] = ()
        existing = (
            db.query(Submission)
            .filter(
                Submission.assessment_id == assessment_id,
                Submission.student_id == student_id,
            )
            .first()
        )
        if existing is not None:
            if existing.status == SubmissionStatus.PROCESSING.value:
                raise GradingInProgressError(
                    "The previous submission is still being graded"
                )
            replaced = tuple(f.location for f in existing.files)
            logger.info(f"Replacing submission {existing.id} for student {student_id}")
            db.delete(existing)
            db.flush()

        submission = Submission(
            assessment_id=assessment_id,
            student_id=student_id,
            status=SubmissionStatus.PENDING.value,
            max_score=assessment.total_marks,
        )
        db.add(submission)
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            raise SubmissionStateError(
                "Another submission for this assessment was created concurrently"
            ) from e
        db.refresh(submission)
        return CreatedSubmission(submission.id, submission.max_score, replaced)

    async def attach_files(self, submission_id: int, files: Sequence[StoredFile]) -> None:
        await self._run(self._attach_files, submission_id, files)

    @staticmethod
    def _attach_files(db: Session, submission_id: int, files: Sequence[StoredFile]) -> None:
        start = (
            db.query(SubmissionFile)
            .filter(SubmissionFile.submission_id == submission_id)
            .count()
        )
        for index, f in enumerate(files, start):
            db.add(
                SubmissionFile(
                    submission_id=submission_id,
                    page_index=index,
                    location=f.location,
                    original_name=f.original_name,
                    mime_type=f.mime_type,
                )
            )
        db.commit()

    async def delete_submission(self, submission_id: int) -> list[str]:
        """Delete the submission and its rows; returns the file locators to clean up."""
        return await self._run(self._delete_submission, submission_id)

    @staticmethod
    def _delete_submission(db: Session, submission_id: int) -> list[str]:
        submission = db.get(Submission, submission_id)
        if submission is None:
            return []
        if submission.status == SubmissionStatus.PROCESSING.value:
            raise GradingInProgressError(f"Submission {submission_id} is being graded")
        locators = [f.location for f in submission.files]
        db.delete(submission)
        db.commit()
        return locators

    async def update_status(
        self,
        submission_id: int,
        status: SubmissionStatus,
        total_marks: Optional[int] = None,
    ) -> None:
        await self._run(self._update_status, submission_id, status, total_marks)

    @staticmethod
    def _update_status(
        db: Session,
        submission_id: int,
        status: SubmissionStatus,
        total_marks: Optional[int],
    ) -> None:
        submission = db.get(Submission, submission_id)
        if submission is None:
            raise SubmissionInputError(f"Submission {submission_id} not found")
        if (
            status == SubmissionStatus.PENDING
            and submission.status != SubmissionStatus.PENDING.value
        ):
            raise SubmissionStateError("A submission never returns to PENDING")

        submission.status = status.value
        if total_marks is not None:
            submission.score = total_marks
        if status == SubmissionStatus.GRADED:
            submission.graded_at = _now()
        db.commit()

    async def claim_for_grading(self, submission_id: int, *, allow_regrade: bool = False) -> None:
        """
        Compare-and-swap the submission into PROCESSING.

        Only PENDING and FAILED submissions can be claimed; with
        ``allow_regrade`` a GRADED submission that was never adjusted can be
        claimed too. Exactly one of several concurrent callers wins.
        """
        await self._run(self._claim, submission_id, allow_regrade)

    @staticmethod
    def _claim(db: Session, submission_id: int, allow_regrade: bool) -> None:
        claimable = Submission.status.in_(
            [SubmissionStatus.PENDING.value, SubmissionStatus.FAILED.value]
        )
        if allow_regrade:
            claimable = or_(
                claimable,
                and_(
                    Submission.status == SubmissionStatus.GRADED.value,
                    Submission.original_score.is_(None),
                ),
            )

        updated = (
            db.query(Submission)
            .filter(Submission.id == submission_id, claimable)
            .update(
                {
                    Submission.status: SubmissionStatus.PROCESSING.value,
                    Submission.processing_started_at: _now(),
                    Submission.error_reason: None,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        if updated == 1:
            return

        submission = db.get(Submission, submission_id)
        if submission is None:
            raise SubmissionInputError(f"Submission {submission_id} not found")
        if submission.status == SubmissionStatus.PROCESSING.value:
            raise GradingInProgressError(f"Submission {submission_id} is already being graded")
        if submission.original_score is not None:
            raise SubmissionStateError(
                f"Submission {submission_id} has a teacher-adjusted score and cannot be regraded"
            )
        raise SubmissionStateError(
            f"Submission {submission_id} is {submission.status} and cannot be graded"
        )

    async def save_question_results(
        self, submission_id: int, results: Sequence[GradedQuestion]
    ) -> None:
        """Atomically replace the submission's question results."""
        await self._run(self._save_results, submission_id, results)

    @classmethod
    def _save_results(
        cls, db: Session, submission_id: int, results: Sequence[GradedQuestion]
    ) -> None:
        try:
            cls._replace_results(db, submission_id, results)
            db.commit()
        except Exception:
            db.rollback()
            raise

    @staticmethod
    def _replace_results(
        db: Session, submission_id: int, results: Sequence[GradedQuestion]
    ) -> None:
        db.query(QuestionResult).filter(
            QuestionResult.submission_id == submission_id
        ).delete(synchronize_session=False)
        for r in results:
            db.add(
                QuestionResult(
                    submission_id=submission_id,
                    question_id=r.question_id,
                    awarded_marks=r.awarded_marks,
                    confidence=r.confidence,
                    ocr_text=r.ocr_text,
                    feedback=r.feedback,
                )
            )

    async def finalize_grading(
        self,
        submission_id: int,
        results: Sequence[GradedQuestion],
        *,
        total: int,
        extracted_text: Optional[str] = None,
        feedback: Optional[str] = None,
    ) -> None:
        """
        Results, total and the GRADED transition in one transaction.

        Refuses (and writes nothing) if the submission is no longer PROCESSING,
        e.g. because a sweeper already failed it.
        """
        await self._run(
            self._finalize, submission_id, results, total, extracted_text, feedback
        )

    @classmethod
    def _finalize(
        cls,
        db: Session,
        submission_id: int,
        results: Sequence[GradedQuestion],
        total: int,
        extracted_text: Optional[str],
        feedback: Optional[str],
    ) -> None:
        try:
            updated = (
                db.query(Submission)
                .filter(
                    Submission.id == submission_id,
                    Submission.status == SubmissionStatus.PROCESSING.value,
                )
                .update(
                    {
                        Submission.status: SubmissionStatus.GRADED.value,
                        Submission.score: total,
                        Submission.extracted_text: extracted_text,
                        Submission.feedback: feedback,
                        Submission.graded_at: _now(),
                        Submission.error_reason: None,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                raise SubmissionStateError(
                    f"Submission {submission_id} left PROCESSING before grading finished"
                )
            cls._replace_results(db, submission_id, results)
            db.commit()
        except Exception:
            db.rollback()
            raise

    async def mark_failed(self, submission_id: int, reason: str) -> bool:
        """PROCESSING -> FAILED. Returns False if the submission was not PROCESSING."""
        return await self._run(self._mark_failed, submission_id, reason)

    @staticmethod
    def _mark_failed(db: Session, submission_id: int, reason: str) -> bool:
        updated = (
            db.query(Submission)
            .filter(
                Submission.id == submission_id,
                Submission.status == SubmissionStatus.PROCESSING.value,
            )
            .update(
                {
                    Submission.status: SubmissionStatus.FAILED.value,
                    Submission.error_reason: reason,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    async def fail_stale_submissions(self, started_before: datetime, reason: str) -> list[int]:
        return await self._run(self._fail_stale, started_before, reason)

    @staticmethod
    def _fail_stale(db: Session, started_before: datetime, reason: str) -> list[int]:
        stale_ids = [
            row.id
            for row in db.query(Submission.id)
            .filter(
                Submission.status == SubmissionStatus.PROCESSING.value,
                Submission.processing_started_at < started_before,
            )
            .all()
        ]
        failed = []
        for submission_id in stale_ids:
            if SqlAlchemySubmissionStore._mark_failed(db, submission_id, reason):
                failed.append(submission_id)
        return failed

    async def save_mark_scheme_text(self, assessment_id: int, text: str) -> None:
        await self._run(self._save_mark_scheme_text, assessment_id, text)

    @staticmethod
    def _save_mark_scheme_text(db: Session, assessment_id: int, text: str) -> None:
        assessment = db.get(Assessment, assessment_id)
        if assessment is None:
            raise SubmissionInputError(f"Assessment {assessment_id} not found")
        assessment.mark_scheme_text = text
        db.commit()
