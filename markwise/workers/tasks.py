"""
Grading Tasks for Worker
These tasks are executed by RQ workers: queued regrades and the sweep of
submissions stuck in PROCESSING.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from markwise.core.config import settings
from markwise.core.exceptions import MarkwiseError
from markwise.services.backends import build_pipeline
from markwise.services.storage import SqlAlchemySubmissionStore

logger = logging.getLogger(__name__)

STALE_REASON = "Grading timed out after {seconds:g} seconds"


async def _grade(submission_id: int, regrade: bool):
    resources = build_pipeline(settings)
    try:
        return await resources.pipeline.grade_submission(submission_id, regrade=regrade)
    finally:
        await resources.aclose()


def grading_task(submission_id: int, regrade: bool = False) -> dict:
    """
    Worker task to (re)grade a submission from its stored files.

    The pipeline is built per job, so each job gets its own backend client
    and event loop.

    Returns:
        Dictionary with the outcome, ``status`` is "success" or "error"
    """
    logger.info(f"Starting grading task for submission {submission_id} (regrade={regrade})")
    try:
        outcome = asyncio.run(_grade(submission_id, regrade))

    except MarkwiseError as e:
        logger.error(f"Grading task failed for submission {submission_id}: {e}")
        return {
            "status": "error",
            "submission_id": submission_id,
            "error": str(e),
            "message": f"Grading failed for submission {submission_id}",
        }

    except Exception as e:
        logger.error(
            f"Unexpected error during grading task for submission {submission_id}: {e}",
            exc_info=True,
        )
        return {
            "status": "error",
            "submission_id": submission_id,
            "error": str(e),
            "message": "Unexpected error during grading",
        }

    logger.info(
        f"Completed grading task for submission {submission_id}: "
        f"status={outcome.status}, score={outcome.score}"
    )
    return {
        "status": "success" if outcome.error_reason is None else "error",
        "submission_id": submission_id,
        "submission_status": outcome.status,
        "score": outcome.score,
        "max_score": outcome.max_score,
        "error": outcome.error_reason,
    }


def sweep_stale_submissions(reschedule: bool = True) -> list[int]:
    """
    Fail submissions that have been PROCESSING for longer than the pipeline
    timeout (abandoned request, killed worker), then schedule the next sweep.
    """
    timeout = settings.PIPELINE_TIMEOUT_SECONDS
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=timeout)
    store = SqlAlchemySubmissionStore()

    failed = asyncio.run(
        store.fail_stale_submissions(cutoff, STALE_REASON.format(seconds=timeout))
    )
    if failed:
        logger.warning(f"Marked {len(failed)} stale submission(s) as failed: {failed}")
    else:
        logger.info("No stale submissions found")

    if reschedule:
        from markwise.workers.queue import schedule_stale_sweep

        schedule_stale_sweep(timedelta(seconds=timeout))
    return failed
