"""
SlurmSubmissionClient: SLURM cluster execution via direct sbatch submission.

Provides:
- SlurmClientConfig: Config for the "slurm" target
- SlurmSubmissionClient: Writes the workload to a job directory and calls sbatch
- SlurmSubmissionHandle: Handle for awaiting or cancelling a SLURM job
- ScancelAcknowledgment: Cancellation acknowledgment collected by its waiter
- cancel_job: Cancel a job by id (used by ``jobenv cancel``)

Job directory layout (one per submission)::

    <work_dir>/<job name>-<timestamp>-<suffix>/
        workload.json   tasks and parameters, read by the worker
        job.sh          generated sbatch script
        manifest.json   job id and name, written after sbatch succeeded
        result.json     written by the worker when the job ends
        slurm-<id>.out  stdout/stderr of the job

Job state tracking:
- Uses sacct for the job's state, falling back to squeue
- The handle only polls once someone asks for the execution result
"""

from __future__ import annotations

import json
import logging
import re
import shutil
import subprocess
import threading
import time
import uuid
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from jobenv.client.config import ClientConfig, ClientConfigRegistry
from jobenv.errors import JobCancelledError, RemoteExecutionError, SubmissionError
from jobenv.types import ExecutionResult, Status

if TYPE_CHECKING:
    from jobenv.config import Configuration
    from jobenv.workload import Workload

logger = logging.getLogger(__name__)

WORKLOAD_FILENAME = "workload.json"
SCRIPT_FILENAME = "job.sh"
MANIFEST_FILENAME = "manifest.json"
RESULT_FILENAME = "result.json"

# sacct/squeue states after which a job never runs again
SUCCESS_STATES = {"COMPLETED"}
CANCELLED_STATES = {"CANCELLED", "REVOKED"}
FAILED_STATES = {
    "FAILED",
    "TIMEOUT",
    "OUT_OF_MEMORY",
    "NODE_FAIL",
    "PREEMPTED",
    "BOOT_FAIL",
    "DEADLINE",
}
TERMINAL_STATES = SUCCESS_STATES | CANCELLED_STATES | FAILED_STATES


# ---------------------------------------------------------------------------
# SLURM command utilities
# ---------------------------------------------------------------------------


def _run_cmd(cmd: list[str], timeout: float = 30.0) -> tuple[int, str, str]:
    """
    Run a command with timeout.

    Args:
        cmd: Command and arguments as list.
        timeout: Timeout in seconds.

    Returns:
        Tuple of (exit_code, stdout, stderr).
    """
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, "", f"Command timed out after {timeout}s"
    except Exception as e:
        return -1, "", str(e)


def _parse_slurm_job_id(output: str) -> str | None:
    """
    Parse job ID from sbatch output.

    Expected format: "Submitted batch job 12345"
    """
    for line in output.strip().split("\n"):
        if "Submitted batch job" in line:
            parts = line.split()
            if parts:
                return parts[-1]
    return None


def _normalize_slurm_state(state: str) -> str:
    """
    Normalize SLURM state string.

    - Keeps only the first word (e.g., "CANCELLED by 1234" -> CANCELLED)
    - Strips trailing '+' (e.g., CANCELLED+ -> CANCELLED)
    - Uppercases for consistency
    """
    state = state.strip().split(" ")[0] if state.strip() else ""
    return state.upper().rstrip("+")


def sacct_state(job_id: str, timeout: float = 60.0) -> str | None:
    """
    Query sacct for the state of a job's allocation.

    Step lines (12345.batch, 12345.extern) are ignored.

    Returns:
        The normalized state, or None if sacct failed or has no record yet.
    """
    exit_code, stdout, stderr = _run_cmd(
        ["sacct", "-n", "-P", "-j", job_id, "--format=JobIDRaw,State"],
        timeout=timeout,
    )
    if exit_code != 0:
        logger.debug(f"sacct failed: {stderr}")
        return None

    for line in stdout.strip().split("\n"):
        parts = line.split("|")
        if len(parts) >= 2 and parts[0] == job_id:
            return _normalize_slurm_state(parts[1])
    return None


def squeue_state(job_id: str, timeout: float = 30.0) -> str | None:
    """
    Query squeue for the state of an active job.

    Returns:
        The normalized state, or None if the job is not queued or squeue failed.
    """
    exit_code, stdout, stderr = _run_cmd(
        ["squeue", "-h", "-j", job_id, "-o", "%i %T"],
        timeout=timeout,
    )
    if exit_code != 0:
        logger.debug(f"squeue failed: {stderr}")
        return None

    for line in stdout.strip().split("\n"):
        parts = line.split()
        if len(parts) >= 2 and parts[0] == job_id:
            return _normalize_slurm_state(parts[1])
    return None


def cancel_job(job_id: str, timeout: float = 30.0) -> None:
    """
    Cancel a SLURM job with scancel.

    Raises:
        RuntimeError: If scancel fails.
    """
    exit_code, stdout, stderr = _run_cmd(["scancel", job_id], timeout=timeout)
    if exit_code != 0:
        raise RuntimeError(f"scancel {job_id} failed with exit code {exit_code}: {stderr}")
    logger.info("Requested cancellation of SLURM job %s", job_id)


class ScancelAcknowledgment(Future):
    """
    Future for a running scancel process.

    No thread watches the process: it is collected by whoever waits on the
    future (result(), exception() or done()), so cancellation also works from
    exit hooks where new threads can no longer be started.
    """

    def __init__(self, job_id: str, proc: subprocess.Popen) -> None:
        super().__init__()
        self._job_id = job_id
        self._proc = proc
        self._collect_lock = threading.Lock()

    def _collect(self, timeout: float | None) -> bool:
        """Wait up to *timeout* for scancel; True once the future is resolved."""
        with self._collect_lock:
            if super().done():
                return True
            try:
                _, stderr = self._proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                return False
            exit_code = self._proc.returncode
            if exit_code != 0:
                self.set_exception(
                    RuntimeError(
                        f"scancel {self._job_id} failed with exit code {exit_code}: {stderr}"
                    )
                )
            else:
                logger.info("Requested cancellation of SLURM job %s", self._job_id)
                self.set_result(None)
            return True

    def done(self) -> bool:
        return self._collect(0)

    def result(self, timeout: float | None = None) -> None:
        if not self._collect(timeout):
            raise FuturesTimeoutError(
                f"scancel {self._job_id} still running after {timeout}s"
            )
        return super().result(timeout=0)

    def exception(self, timeout: float | None = None) -> BaseException | None:
        if not self._collect(timeout):
            raise FuturesTimeoutError(
                f"scancel {self._job_id} still running after {timeout}s"
            )
        return super().exception(timeout=0)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class SlurmClientConfig(ClientConfig):
    """
    Configuration for SLURM cluster submission.

    Attributes:
        partition: SLURM partition/queue name.
        time: Maximum walltime (e.g., "1:00:00" for 1 hour).
        cpus: Number of CPUs for the job (also the worker's task parallelism).
        memory: Memory for the job (e.g., "4G", "16GB").
        gpus: Number of GPUs (0 for CPU-only).
        modules: Shell modules to load before execution.
        conda_env: Conda environment to activate.
        setup: List of bash commands to run before the worker starts.
        extra_sbatch: Additional sbatch directives as key-value pairs.
        work_dir: Shared directory for job directories.
        python: Python executable used on the compute node.
        poll_interval: Seconds between state queries while awaiting a job.
    """

    client_type: ClassVar[str] = "slurm"

    partition: str = "default"
    time: str = "1:00:00"
    cpus: int = 1
    memory: str = "4G"
    gpus: int = 0
    modules: list[str] = field(default_factory=list)
    conda_env: str | None = None
    setup: list[str] = field(default_factory=list)
    extra_sbatch: dict[str, str] = field(default_factory=dict)
    work_dir: str = "jobenv-slurm"
    python: str = "python"
    poll_interval: float = 10.0

    def create(self) -> SlurmSubmissionClient:
        """Create a SlurmSubmissionClient from this config."""
        return SlurmSubmissionClient(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SlurmClientConfig:
        """
        Parse from a config dict (e.g., the ``[client]`` TOML table).

        Handles convenience fields:
        - mail_user, mail_type are moved into extra_sbatch
        - String values for modules/setup are wrapped in a list
        - Numeric fields given as strings (``-D client.gpus=1``) are converted

        Raises:
            ValueError: If a numeric field cannot be converted.
        """
        d = d.copy()

        for key, convert in (("cpus", int), ("gpus", int), ("poll_interval", float)):
            if key in d:
                try:
                    d[key] = convert(d[key])
                except (TypeError, ValueError) as e:
                    raise ValueError(
                        f"Invalid SLURM client option {key}={d[key]!r}: "
                        f"expected {convert.__name__}"
                    ) from e

        extra = dict(d.pop("extra_sbatch", {}))
        for key in ("mail_user", "mail_type"):
            if key in d:
                extra[key] = d.pop(key)

        for list_field in ("modules", "setup"):
            if list_field in d and isinstance(d[list_field], str):
                d[list_field] = [d[list_field]]

        known = {
            "partition",
            "time",
            "cpus",
            "memory",
            "gpus",
            "modules",
            "conda_env",
            "setup",
            "work_dir",
            "python",
            "poll_interval",
        }
        filtered = {k: v for k, v in d.items() if k in known}
        return cls(**filtered, extra_sbatch=extra)


# ---------------------------------------------------------------------------
# sbatch script generation
# ---------------------------------------------------------------------------


def _generate_sbatch_script(config: SlurmClientConfig, job_dir: Path, job_name: str) -> str:
    """
    Generate sbatch script content.

    Args:
        config: SLURM configuration.
        job_dir: Directory holding the workload spec and receiving results.
        job_name: Job name for SLURM.

    Returns:
        Complete sbatch script as string.
    """
    lines = ["#!/bin/bash"]

    lines.append(f"#SBATCH --job-name={job_name}")
    lines.append(f"#SBATCH --partition={config.partition}")
    lines.append(f"#SBATCH --time={config.time}")
    lines.append(f"#SBATCH --cpus-per-task={config.cpus}")
    lines.append(f"#SBATCH --mem={config.memory}")
    lines.append(f"#SBATCH --output={job_dir}/slurm-%j.out")
    lines.append(f"#SBATCH --error={job_dir}/slurm-%j.out")

    if config.gpus > 0:
        lines.append(f"#SBATCH --gres=gpu:{config.gpus}")

    for key, value in config.extra_sbatch.items():
        # Convert underscores to hyphens for SLURM compatibility
        slurm_key = key.replace("_", "-")
        lines.append(f"#SBATCH --{slurm_key}={value}")

    lines.append("")

    for module in config.modules:
        lines.append(f"module load {module}")

    if config.conda_env:
        lines.append(f"conda activate {config.conda_env}")

    for cmd in config.setup:
        lines.append(cmd)

    if config.modules or config.conda_env or config.setup:
        lines.append("")

    lines.append("# Run the jobenv worker")
    lines.append(
        f'{config.python} -m jobenv.client.slurm_worker --job-dir "{job_dir}" '
        f"--parallelism {config.cpus}"
    )

    return "\n".join(lines) + "\n"


def _safe_job_name(name: str) -> str:
    """Reduce a workload name to characters safe for paths and sbatch."""
    safe = re.sub(r"[^A-Za-z0-9_.-]+", "-", name).strip("-")
    return safe[:64] or "job"


# ---------------------------------------------------------------------------
# SlurmSubmissionHandle
# ---------------------------------------------------------------------------


class SlurmSubmissionHandle:
    """
    Handle for a single SLURM job.

    Polling starts on the first call to get_execution_result(), on a daemon
    thread, so a detached submission never queries the scheduler.
    """

    def __init__(
        self,
        job_id: str,
        job_name: str,
        job_dir: Path,
        poll_interval: float = 10.0,
    ) -> None:
        """
        Initialize the SLURM handle.

        Args:
            job_id: SLURM job ID.
            job_name: Name of the submitted workload.
            job_dir: The job directory the worker writes results to.
            poll_interval: Seconds between state queries.
        """
        self._job_id = job_id
        self._job_name = job_name
        self._job_dir = Path(job_dir)
        self._poll_interval = poll_interval
        self._result_future: Future[ExecutionResult] = Future()
        self._status: Status | None = None
        self._poller: threading.Thread | None = None
        self._lock = threading.Lock()
        self._poll_lock = threading.Lock()

    @property
    def job_id(self) -> str:
        return self._job_id

    @property
    def job_dir(self) -> Path:
        return self._job_dir

    @property
    def status(self) -> Status | None:
        """Terminal status if known, else None (does not query the scheduler)."""
        return self._status

    def get_execution_result(self) -> Future[ExecutionResult]:
        with self._lock:
            if self._poller is None:
                self._poller = threading.Thread(
                    target=self._poll_loop,
                    name=f"jobenv-slurm-{self._job_id}",
                    daemon=True,
                )
                self._poller.start()
        return self._result_future

    def cancel(self) -> Future[None]:
        """
        Start scancel and return its acknowledgment.

        The acknowledgment resolves when scancel exits, checked while someone
        waits on it.
        """
        try:
            proc = subprocess.Popen(
                ["scancel", self._job_id],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as e:
            ack: Future[None] = Future()
            ack.set_exception(RuntimeError(f"Could not run scancel {self._job_id}: {e}"))
            return ack
        return ScancelAcknowledgment(self._job_id, proc)

    def query_state(self) -> str | None:
        """Current scheduler state (sacct, falling back to squeue)."""
        return sacct_state(self._job_id) or squeue_state(self._job_id)

    def poll(self) -> bool:
        """
        Query the scheduler once and resolve the result if the job ended.

        Returns:
            True if the job reached a terminal state.
        """
        with self._poll_lock:
            if self._result_future.done():
                return True

            state = self.query_state()
            result_path = self._job_dir / RESULT_FILENAME
            if state is None and not result_path.exists():
                logger.debug("No state for SLURM job %s yet", self._job_id)
                return False
            if state is not None and state not in TERMINAL_STATES:
                logger.debug("SLURM job %s is %s", self._job_id, state)
                return False

            self._resolve(state)
            return True

    def _poll_loop(self) -> None:
        try:
            while not self.poll():
                time.sleep(self._poll_interval)
        except Exception as e:
            logger.warning(f"Polling SLURM job {self._job_id} failed: {e}")
            error = RemoteExecutionError(
                f"Lost track of SLURM job {self._job_id} ({self._job_name!r}): {e}",
                job_id=self._job_id,
            )
            error.__cause__ = e
            with self._poll_lock:
                if not self._result_future.done():
                    self._result_future.set_exception(error)

    def _resolve(self, state: str | None) -> None:
        """Resolve the result future from the scheduler state and result file."""
        if state in CANCELLED_STATES:
            self._status = Status.CANCELLED
            self._result_future.set_exception(
                JobCancelledError(
                    f"SLURM job {self._job_id} ({self._job_name!r}) was cancelled",
                    job_id=self._job_id,
                )
            )
            return

        report = self._read_result()
        if state in FAILED_STATES or report is None or report.get("status") != "success":
            self._status = Status.FAILED
            detail = state or "unknown state"
            if report is not None and report.get("error"):
                error = report["error"]
                detail = f"{error.get('type', 'Error')}: {error.get('message', '')}"
            elif report is None and state in SUCCESS_STATES:
                detail = f"no {RESULT_FILENAME} written"
            self._result_future.set_exception(
                RemoteExecutionError(
                    f"SLURM job {self._job_id} ({self._job_name!r}) failed: {detail}",
                    job_id=self._job_id,
                )
            )
            return

        self._status = Status.SUCCESS
        logger.info("SLURM job %s completed", self._job_id)
        self._result_future.set_result(
            ExecutionResult(
                job_id=self._job_id,
                status=Status.SUCCESS,
                net_runtime_ms=int(report.get("net_runtime_ms", 0)),
                metrics=dict(report.get("metrics", {})),
            )
        )

    def _read_result(self) -> dict[str, Any] | None:
        result_path = self._job_dir / RESULT_FILENAME
        if not result_path.exists():
            return None
        try:
            with open(result_path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read {result_path}: {e}")
            return None

    @classmethod
    def from_job_dir(
        cls,
        job_dir: str | Path,
        poll_interval: float = 10.0,
    ) -> SlurmSubmissionHandle:
        """
        Create a handle by loading the manifest from a job directory (reconnection).

        Raises:
            FileNotFoundError: If no manifest exists in the directory.
        """
        job_dir = Path(job_dir)
        manifest_path = job_dir / MANIFEST_FILENAME
        if not manifest_path.exists():
            raise FileNotFoundError(
                f"No manifest found at {manifest_path}. "
                "Cannot reconnect without a manifest."
            )

        with open(manifest_path) as f:
            manifest = json.load(f)

        return cls(
            job_id=manifest["job_id"],
            job_name=manifest.get("job_name", ""),
            job_dir=job_dir,
            poll_interval=poll_interval,
        )


# ---------------------------------------------------------------------------
# SlurmSubmissionClient
# ---------------------------------------------------------------------------


class SlurmSubmissionClient:
    """
    Submission client for SLURM clusters.

    Every task of a submitted workload must be importable by reference
    ("module:name"), since the worker process on the compute node
    re-imports it.
    """

    def __init__(self, config: SlurmClientConfig | None = None) -> None:
        self._config = config or SlurmClientConfig()

    @property
    def config(self) -> SlurmClientConfig:
        return self._config

    def submit_async(
        self,
        workload: Workload,
        configuration: Configuration,
    ) -> SlurmSubmissionHandle:
        """
        Write the job directory and submit it with sbatch.

        Raises:
            SubmissionError: If the workload cannot be serialized or sbatch fails.
        """
        try:
            spec = workload.to_dict()
        except ValueError as e:
            raise SubmissionError(str(e), target="slurm") from e
        if not spec["tasks"]:
            raise SubmissionError(f"Workload {workload.name!r} has no tasks", target="slurm")

        safe_name = _safe_job_name(workload.name)
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        job_dir = (
            Path(self._config.work_dir) / f"{safe_name}-{stamp}-{uuid.uuid4().hex[:6]}"
        ).resolve()

        try:
            job_dir.mkdir(parents=True, exist_ok=False)
            with open(job_dir / WORKLOAD_FILENAME, "w") as f:
                json.dump(spec, f, indent=2)
            script_path = job_dir / SCRIPT_FILENAME
            script_path.write_text(_generate_sbatch_script(self._config, job_dir, safe_name))
        except (OSError, TypeError) as e:
            shutil.rmtree(job_dir, ignore_errors=True)
            raise SubmissionError(
                f"Failed to prepare job directory {job_dir}: {e}", target="slurm"
            ) from e

        exit_code, stdout, stderr = _run_cmd(["sbatch", str(script_path)], timeout=60.0)
        if exit_code != 0:
            raise SubmissionError(
                f"sbatch failed with exit code {exit_code}:\n{stderr}", target="slurm"
            )

        job_id = _parse_slurm_job_id(stdout)
        if not job_id:
            raise SubmissionError(
                f"Failed to parse job ID from sbatch output:\n{stdout}", target="slurm"
            )

        with open(job_dir / MANIFEST_FILENAME, "w") as f:
            json.dump(
                {
                    "job_id": job_id,
                    "job_name": workload.name,
                    "submitted_at": datetime.now().isoformat(),
                    "total_tasks": len(spec["tasks"]),
                },
                f,
                indent=2,
            )

        logger.info(f"Submitted SLURM job {job_id} ({workload.name!r}) from {job_dir}")

        return SlurmSubmissionHandle(
            job_id=job_id,
            job_name=workload.name,
            job_dir=job_dir,
            poll_interval=self._config.poll_interval,
        )


ClientConfigRegistry.register(SlurmClientConfig.client_type, SlurmClientConfig)
