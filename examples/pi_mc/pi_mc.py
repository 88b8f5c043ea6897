"""
Example program: Monte Carlo π estimation.

Each task samples points uniformly in [0,1]^2 with its own seed and reports
how many fell inside the unit circle. The program submits one job with one
task per seed through whatever environment it is given.

Run it from this directory:

    jobenv run pi_mc:main 100000 8
    jobenv run --detached pi_mc:main
    jobenv run --target slurm -D client.partition=short pi_mc:main
"""

from __future__ import annotations

import numpy as np

import jobenv


@jobenv.task(name="pi_mc")
def sample_circle(params, runtime):
    """Count samples inside the unit circle for one seed."""
    n = int(params["n_samples"])
    seed = int(params["seed"])

    rng = np.random.default_rng(seed)
    x = rng.random(n)
    y = rng.random(n)
    inside = int(((x * x + y * y) <= 1.0).sum())

    runtime.logger.info("Task %d: %d of %d samples inside", runtime.task_index, inside, n)
    return {f"inside_{seed}": inside, f"samples_{seed}": n}


def estimate(result: jobenv.ExecutionResult) -> float:
    """Combine per-seed counts from a finished job into one estimate."""
    inside = sum(v for k, v in result.metrics.items() if k.startswith("inside_"))
    samples = sum(v for k, v in result.metrics.items() if k.startswith("samples_"))
    return 4.0 * inside / samples


def main(n_samples: str = "100000", replicates: str = "4") -> None:
    env = jobenv.get_execution_environment()
    for seed in range(42, 42 + int(replicates)):
        env.add_task(sample_circle, {"n_samples": int(n_samples), "seed": seed})

    result = env.execute("pi_mc")
    if not result.is_detached:
        print(f"pi ~= {estimate(result):.5f} ({result.net_runtime_ms} ms)")
