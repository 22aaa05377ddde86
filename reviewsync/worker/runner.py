"""
Worker entry point.
Run with: python -m reviewsync.worker.runner [--burst]
"""

import argparse
import os
import socket

from redis import Redis
from rq import Worker

from reviewsync.config import settings
from reviewsync.observability.logging import setup_logging


def main(argv=None):
    """Start an RQ worker on the pipeline queue."""
    parser = argparse.ArgumentParser(description="reviewsync pipeline worker")
    parser.add_argument("--burst", action="store_true", help="exit once the queue is empty")
    parser.add_argument("--queue", default=settings.QUEUE_NAME)
    args = parser.parse_args(argv)

    setup_logging()

    conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        queues=[args.queue],
        connection=conn,
        name=f"{settings.APP_NAME}-{socket.gethostname()}-{os.getpid()}",
    )

    print(f"Starting worker on queue '{args.queue}'...")
    worker.work(with_scheduler=False, burst=args.burst)


if __name__ == "__main__":
    main()
