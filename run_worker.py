#!/usr/bin/env python3
"""
Run a citecheck queue worker.

Usage:
    python run_worker.py                  # CITECHECK_WORKER_MAX_BATCHES batches
    python run_worker.py --max-batches 0  # loop until interrupted
    python run_worker.py --once           # one batch, then exit
    python run_worker.py --batch-size 10 --max-batches 50

Several workers can run at once against the same CITECHECK_DATABASE_URL.
"""

import argparse
import logging
import sys

from citecheck.config import get_settings
from citecheck.jobs import QueueWorker, build_orchestrator
from citecheck.verification.audit import configure_audit_logging


def parse_args(argv=None):
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Process citation validation queue items")
    parser.add_argument("--batch-size", type=int, default=settings.worker_batch_size,
                        help="Items claimed per batch")
    parser.add_argument("--max-batches", type=int, default=settings.worker_max_batches,
                        help="Stop after this many batches; 0 runs until interrupted")
    parser.add_argument("--poll-interval", type=float, default=5.0,
                        help="Seconds to wait when the queue is empty")
    parser.add_argument("--job-id", default=None, help="Only process items of this job")
    parser.add_argument("--once", action="store_true", help="Process a single batch and exit")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = get_settings()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    configure_audit_logging(json_output=settings.log_json)
    log = logging.getLogger("run_worker")

    if not settings.openai_api_key:
        log.error("OPENAI_API_KEY is not set; evaluator calls would fail")
        return 1

    worker = QueueWorker(build_orchestrator(settings), batch_size=args.batch_size, job_id=args.job_id)

    if args.once:
        result = worker.process_batch()
        log.info("Processed %d, failed %d, remaining %d", result.processed, result.failed, result.remaining)
        return 0

    try:
        total = worker.run_forever(poll_interval=args.poll_interval, max_batches=args.max_batches or None)
    except KeyboardInterrupt:
        log.info("Interrupted; in-flight items are recovered by the next worker after the stuck timeout")
        return 130
    log.info("Worker finished: %d items processed", total)
    return 0


if __name__ == "__main__":
    sys.exit(main())
