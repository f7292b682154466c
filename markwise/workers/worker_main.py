# markwise/workers/worker_main.py

from datetime import timedelta

from rq import Queue, SimpleWorker

from markwise.core.config import settings
from markwise.core.logging_config import setup_logging
from markwise.workers.queue import (
    GRADING_QUEUE_NAME,
    get_redis_connection,
    schedule_stale_sweep,
)


QUEUE_NAMES = [GRADING_QUEUE_NAME]


def main():
    setup_logging(settings.LOG_LEVEL)
    redis_conn = get_redis_connection()

    queues = [Queue(name, connection=redis_conn) for name in QUEUE_NAMES]

    # first sweep right away; each sweep schedules the next one
    schedule_stale_sweep(timedelta(seconds=0))

    worker = SimpleWorker(queues, connection=redis_conn)

    worker.work(with_scheduler=True)


if __name__ == "__main__":
    main()
