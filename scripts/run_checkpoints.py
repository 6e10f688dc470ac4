#!/usr/bin/env python3
"""
Run one checkpoint evaluation pass outside the scheduler.

Useful after an outage: the run catches up every horizon that came due
while the worker was down, and is a no-op when nothing is due.

Usage:
    python scripts/run_checkpoints.py [--now 2026-02-16T12:00:00Z]
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from changewatch.logging_config import setup_logging
from changewatch.worker.checkpoint_job import CheckpointJob


async def run(now: datetime | None):
    summary = await CheckpointJob().run(now=now)

    print("Checkpoint run complete:")
    print(f"  - Changes due: {summary.changes_due}")
    print(f"  - Checkpoints written: {summary.checkpoints_written}")
    print(f"  - Transitions applied: {summary.transitions_applied}")
    print(f"  - Concurrent conflicts: {summary.conflicts}")
    print(f"  - Still watching past D+30: {summary.stuck_watching}")
    print(f"  - Errors: {summary.errors}")
    for notice in summary.validated:
        print(f"  * {notice.observation}")


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--now",
        type=lambda s: datetime.fromisoformat(s.replace("Z", "+00:00")),
        default=None,
        help="Evaluation time (ISO 8601, defaults to current UTC time)",
    )
    args = parser.parse_args()

    setup_logging()
    asyncio.run(run(args.now))


if __name__ == "__main__":
    main()
