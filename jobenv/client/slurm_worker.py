"""
SLURM worker: Runs a submitted workload on the compute node.

Invoked by the generated sbatch script::

    python -m jobenv.client.slurm_worker --job-dir /shared/jobs/wordcount-... --parallelism 4

Reads ``workload.json`` from the job directory, executes the tasks with
the local client, and writes ``result.json`` for the submitting handle.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from pathlib import Path
from typing import Any

from jobenv.client.local import LocalSubmissionClient
from jobenv.client.slurm import RESULT_FILENAME, WORKLOAD_FILENAME
from jobenv.config import Configuration
from jobenv.workload import Workload

logger = logging.getLogger(__name__)


def run_job_dir(job_dir: Path, parallelism: int = 1) -> dict[str, Any]:
    """
    Execute the workload stored in *job_dir* and write its result file.

    Returns:
        The report written to ``result.json``.
    """
    job_id = os.environ.get("SLURM_JOB_ID", "unknown")

    try:
        with open(job_dir / WORKLOAD_FILENAME) as f:
            workload = Workload.from_dict(json.load(f))

        client = LocalSubmissionClient(max_workers=max(1, parallelism))
        handle = client.submit_async(workload, Configuration())
        result = handle.get_execution_result().result()
        report: dict[str, Any] = {
            "job_id": job_id,
            "status": "success",
            "net_runtime_ms": result.net_runtime_ms,
            "metrics": result.metrics,
        }
    except Exception as e:
        cause = e.__cause__ or e
        logger.error("Job %s failed: %s", job_id, cause)
        report = {
            "job_id": job_id,
            "status": "failed",
            "error": {
                "type": type(cause).__name__,
                "message": str(cause),
                "traceback": "".join(
                    traceback.format_exception(type(cause), cause, cause.__traceback__)
                ),
            },
        }

    tmp_path = job_dir / (RESULT_FILENAME + ".tmp")
    with open(tmp_path, "w") as f:
        json.dump(report, f, indent=2, default=str)
    tmp_path.replace(job_dir / RESULT_FILENAME)
    return report


def main(argv: list[str] | None = None) -> int:
    """Worker entry point."""
    parser = argparse.ArgumentParser(prog="jobenv.client.slurm_worker")
    parser.add_argument("--job-dir", required=True, help="Job directory to execute")
    parser.add_argument(
        "--parallelism",
        type=int,
        default=1,
        help="Maximum concurrent tasks (default: 1)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    report = run_job_dir(Path(args.job_dir), parallelism=args.parallelism)
    return 0 if report["status"] == "success" else 1


if __name__ == "__main__":
    sys.exit(main())
