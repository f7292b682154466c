# markwise/services/grading_pipeline.py
"""
Submission Aggregator
Normalizer -> Text Extraction -> Grader for one submission, with the
status transitions PENDING -> PROCESSING -> GRADED | FAILED.

A submission is claimed by a conditional status update before any backend
call, so at most one grading run per submission is ever in flight, across
processes. Results, total and the GRADED transition are committed together.
"""

import asyncio
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional, Sequence

from fastapi.concurrency import run_in_threadpool

from markwise.core.exceptions import (
    ConfigurationError,
    MarkwiseError,
    SubmissionInputError,
    describe_failure,
)
from markwise.models.submission import SubmissionStatus
from markwise.services.file_storage import FileStore
from markwise.services.grading import (
    NO_ANSWER_FEEDBACK,
    GradedQuestion,
    Grader,
    MarkScheme,
    finalize_results,
)
from markwise.services.storage import SqlAlchemySubmissionStore, StoredFile
from markwise.services.text_extraction import PageImage, TextExtractionService

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300


@dataclass(frozen=True)
class GradingOutcome:
    submission_id: int
    status: str
    score: Optional[int] = None
    max_score: Optional[int] = None
    error_reason: Optional[str] = None
    results: tuple[GradedQuestion, ...] = field(default=())


def stored_filename(student_id: int, assessment_id: int, index: int, original: str | None) -> str:
    ext = os.path.splitext(original or "")[1].lower()
    token = uuid.uuid4().hex[:8]
    return f"{student_id}-{assessment_id}-{int(time.time() * 1000)}-{index}-{token}{ext}"


def _question_status(question_max: int, result: GradedQuestion) -> str:
    if result.feedback == NO_ANSWER_FEEDBACK:
        return "Unanswered"
    if result.awarded_marks >= question_max:
        return "Correct"
    if result.awarded_marks == 0:
        return "Incorrect"
    return "Partial"


def format_feedback_markdown(
    scheme: MarkScheme, results: Sequence[GradedQuestion], total: int
) -> str:
    """Per-question report stored on the submission as its feedback."""
    max_score = scheme.total_marks
    percent = round(100 * total / max_score) if max_score else 0

    lines = [
        "## Grading Results",
        "",
        f"**Score: {total}/{max_score}** ({percent}%)",
        "",
        "### Question-by-Question Breakdown",
        "",
    ]
    by_id = {r.question_id: r for r in results}
    for question in scheme.questions:
        result = by_id.get(question.id)
        if result is None:
            continue
        lines.append(
            f"#### Question {question.label} "
            f"({_question_status(question.max_marks, result)})"
        )
        lines.append(f"**Score:** {result.awarded_marks}/{question.max_marks}")
        lines.append("")
        lines.append(result.feedback)
        lines.append("")
        lines.append(f"*Confidence: {result.confidence:.0f}%*")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


class SubmissionPipeline:
    def __init__(
        self,
        store: SqlAlchemySubmissionStore,
        files: FileStore,
        extraction: TextExtractionService,
        grader: Grader,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.store = store
        self.files = files
        self.extraction = extraction
        self.grader = grader
        self.timeout_seconds = timeout_seconds

    async def submit(
        self,
        assessment_id: int,
        student_id: int,
        pages: Sequence[PageImage],
    ) -> GradingOutcome:
        """
        Persist a new submission with its files, then grade it.

        An existing submission for the same student and assessment is
        replaced, unless it is being graded right now.
        """
        if not pages:
            raise SubmissionInputError("At least one file is required")
        for i, page in enumerate(pages, 1):
            if not page.buffer:
                raise SubmissionInputError(f"File {i} is empty")

        # fail before writing anything if the assessment cannot be graded
        await self.store.get_assessment_with_mark_scheme(assessment_id)

        created = await self.store.create_submission(assessment_id, student_id)

        stored = []
        for index, page in enumerate(pages):
            locator = await run_in_threadpool(
                self.files.store,
                page.buffer,
                stored_filename(student_id, assessment_id, index, page.filename),
                page.mime_type,
            )
            stored.append(
                StoredFile(locator, page.filename or f"page-{index + 1}", page.mime_type)
            )
        await self.store.attach_files(created.id, stored)
        logger.info(
            f"Submission {created.id} created for student {student_id} "
            f"with {len(stored)} file(s)"
        )

        new_locators = {f.location for f in stored}
        for locator in created.replaced_locators:
            if locator in new_locators:
                continue
            try:
                await run_in_threadpool(self.files.delete, locator)
            except Exception as e:
                logger.warning(f"Could not delete replaced file {locator}: {e}")

        return await self.grade_submission(created.id, pages)

    async def grade_submission(
        self,
        submission_id: int,
        pages: Optional[Sequence[PageImage]] = None,
        *,
        regrade: bool = False,
    ) -> GradingOutcome:
        """
        Claim the submission and run extraction and grading.

        Pages default to the submission's stored files. Backend failures end
        in a FAILED outcome; configuration errors are recorded and re-raised.
        """
        await self.store.claim_for_grading(submission_id, allow_regrade=regrade)
        logger.info(f"Grading submission {submission_id} (regrade={regrade})")

        try:
            return await asyncio.wait_for(
                self._run(submission_id, pages), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            reason = f"Grading timed out after {self.timeout_seconds:g} seconds"
            logger.error(f"Submission {submission_id}: {reason}")
            return await self._fail(submission_id, reason)
        except asyncio.CancelledError:
            logger.warning(f"Grading of submission {submission_id} was cancelled")
            await asyncio.shield(
                self.store.mark_failed(submission_id, "Grading was cancelled before it finished")
            )
            raise
        except ConfigurationError as e:
            logger.error(f"Submission {submission_id}: configuration error: {e}")
            await self._fail(submission_id, describe_failure(e))
            raise
        except MarkwiseError as e:
            logger.error(f"Submission {submission_id} failed: {e}")
            return await self._fail(submission_id, describe_failure(e))
        except Exception as e:
            logger.error(f"Unexpected error grading submission {submission_id}", exc_info=True)
            await self._fail(submission_id, describe_failure(e))
            raise

    async def _fail(self, submission_id: int, reason: str) -> GradingOutcome:
        if not await self.store.mark_failed(submission_id, reason):
            snapshot = await self.store.find_submission(submission_id)
            if snapshot is not None:
                logger.warning(
                    f"Submission {submission_id} was already {snapshot.status} "
                    f"when marking it failed"
                )
                return GradingOutcome(
                    submission_id,
                    snapshot.status,
                    score=snapshot.score,
                    max_score=snapshot.max_score,
                    error_reason=snapshot.error_reason,
                )
        return GradingOutcome(
            submission_id, SubmissionStatus.FAILED.value, error_reason=reason
        )

    async def _load_pages(self, submission_id: int) -> list[PageImage]:
        files = await self.store.list_files(submission_id)
        if not files:
            raise SubmissionInputError(f"Submission {submission_id} has no files")
        pages = []
        for f in files:
            try:
                buffer = await run_in_threadpool(self.files.read, f.location)
            except OSError as e:
                raise SubmissionInputError(f"Stored file {f.original_name} is missing") from e
            pages.append(PageImage(buffer, f.mime_type, f.original_name))
        return pages

    async def _run(
        self, submission_id: int, pages: Optional[Sequence[PageImage]]
    ) -> GradingOutcome:
        snapshot = await self.store.find_submission(submission_id)
        if snapshot is None:
            raise SubmissionInputError(f"Submission {submission_id} not found")
        scheme = await self.store.get_assessment_with_mark_scheme(snapshot.assessment_id)

        if pages is None:
            pages = await self._load_pages(submission_id)

        extraction = await self.extraction.extract_submission(pages)

        graded = await self.grader.grade(extraction.text, scheme)
        results = finalize_results(scheme, {r.question_id: r for r in graded})
        total = sum(r.awarded_marks for r in results)

        await self.store.finalize_grading(
            submission_id,
            results,
            total=total,
            extracted_text=extraction.text,
            feedback=format_feedback_markdown(scheme, results, total),
        )
        logger.info(
            f"Submission {submission_id} graded by {self.grader.name}: "
            f"{total}/{scheme.total_marks}"
        )
        return GradingOutcome(
            submission_id,
            SubmissionStatus.GRADED.value,
            score=total,
            max_score=snapshot.max_score,
            results=tuple(results),
        )

    async def extract_mark_scheme(self, assessment_id: int, buffer: bytes) -> str:
        """Extract an uploaded mark-scheme PDF and keep its text on the assessment."""
        result = await self.extraction.extract_mark_scheme(buffer)
        await self.store.save_mark_scheme_text(assessment_id, result.text)
        logger.info(
            f"Stored {len(result.text)} characters of mark scheme for assessment {assessment_id}"
        )
        return result.text
