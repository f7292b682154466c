# markwise/workers/queue.py

from datetime import timedelta
from typing import Any, Callable

from redis import Redis
from rq import Queue

from markwise.core.config import settings

_DEFAULT_QUEUE_NAME = "default"
GRADING_QUEUE_NAME = "grading"
SWEEP_JOB_ID = "sweep-stale-submissions"

_redis_conn: Redis | None = None


def get_redis_connection() -> Redis:
    global _redis_conn
    if _redis_conn is None:
        redis_url = settings.REDIS_URL
        _redis_conn = Redis.from_url(redis_url)
    return _redis_conn


def get_queue(name: str = _DEFAULT_QUEUE_NAME) -> Queue:
    return Queue(name, connection=get_redis_connection())


def enqueue_job(
    func: Callable[..., Any],
    *args: Any,
    queue_name: str = _DEFAULT_QUEUE_NAME,
    **kwargs: Any,
) -> str:

    q = get_queue(queue_name)
    job = q.enqueue(func, *args, **kwargs)
    return job.id


def enqueue_grading_task(submission_id: int, *, regrade: bool = False) -> str:
    from markwise.workers.tasks import grading_task

    # a run may take the whole pipeline timeout, plus startup
    return enqueue_job(
        grading_task,
        submission_id,
        regrade=regrade,
        queue_name=GRADING_QUEUE_NAME,
        job_timeout=int(settings.PIPELINE_TIMEOUT_SECONDS) + 60,
    )


def schedule_stale_sweep(delay: timedelta) -> str:
    from markwise.workers.tasks import sweep_stale_submissions

    q = get_queue(GRADING_QUEUE_NAME)
    job = q.enqueue_in(delay, sweep_stale_submissions, job_id=SWEEP_JOB_ID)
    return job.id
