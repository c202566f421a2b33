"""
LMS search worker
Consumes indexing and analytics jobs, or enqueues the periodic ones on their cadences
"""

import argparse
import logging
import signal
import sys
import threading

from lms_search.cache.manager import CacheManager
from lms_search.database.connection import SessionLocal, create_tables, get_redis, get_search_client
from lms_search.jobs.analytics import AnalyticsJobHandler
from lms_search.jobs.indexing import IndexingJobHandler
from lms_search.jobs.queue import JobQueue
from lms_search.jobs.scheduler import MaintenanceScheduler
from lms_search.search.backend import ElasticsearchBackend

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _stop_on_signals() -> threading.Event:
    stop_event = threading.Event()

    def shutdown(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)
    return stop_event


def run_worker(queue: JobQueue, backend: ElasticsearchBackend, cache_manager: CacheManager) -> None:
    """Run one consumer thread per job type until SIGINT or SIGTERM"""
    stop_event = _stop_on_signals()

    handlers = {}
    handlers.update(IndexingJobHandler(SessionLocal, backend, cache_manager, queue, cancel_event=stop_event).handlers())
    handlers.update(AnalyticsJobHandler(SessionLocal, cache_manager, queue).handlers())

    threads = [
        threading.Thread(target=queue.consume, args=(job_type, handler, stop_event), name=job_type, daemon=True)
        for job_type, handler in handlers.items()
    ]
    for thread in threads:
        thread.start()
    logger.info(f"Worker started with {len(threads)} consumers")

    while not stop_event.is_set():
        stop_event.wait(1)
    for thread in threads:
        thread.join(timeout=queue.poll_timeout + 1)
    logger.info("Worker stopped")


def run_scheduler(queue: JobQueue, backend: ElasticsearchBackend) -> None:
    """Enqueue hourly full syncs, nightly analytics and nightly optimization until SIGINT or SIGTERM"""
    stop_event = _stop_on_signals()
    scheduler = MaintenanceScheduler(SessionLocal, backend, queue)
    scheduler.start()

    while not stop_event.is_set():
        stop_event.wait(1)
    scheduler.shutdown()


def main() -> int:
    parser = argparse.ArgumentParser(description="LMS search worker")
    parser.add_argument("command", nargs="?", default="worker", choices=["worker", "scheduler"])
    args = parser.parse_args()

    try:
        create_tables()
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    redis_client = get_redis()
    if redis_client is None:
        logger.error("Redis not available - the job queue cannot run")
        return 1

    cache_manager = CacheManager(redis_client)
    logger.info(f"Cache status: {cache_manager.health_check()['status']}")
    queue = JobQueue(redis_client)
    backend = ElasticsearchBackend(get_search_client())

    if args.command == "scheduler":
        run_scheduler(queue, backend)
    else:
        run_worker(queue, backend, cache_manager)
    return 0


if __name__ == "__main__":
    sys.exit(main())
