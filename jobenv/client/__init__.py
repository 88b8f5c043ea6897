"""
Client module: Pluggable submission layer.

Provides:

- SubmissionClient: Protocol for submission backends
- SubmissionHandle: Protocol for a live job reference (await, cancel)
- ClientConfig: Base configuration class for submission backends
- ClientConfigRegistry: Registry mapping target names to config classes
- client_from_config: Factory function for config-driven client creation
- ClientLoader: Resolves and caches the client named by a Configuration
- LocalSubmissionClient: Thread-pool execution in the client process
- SlurmSubmissionClient: SLURM cluster submission via sbatch
"""

from jobenv.client.base import SubmissionClient, SubmissionHandle
from jobenv.client.config import (
    ClientConfig,
    ClientConfigRegistry,
    ClientLoader,
    client_from_config,
)
from jobenv.client.local import (  # triggers auto-registration
    LocalClientConfig,
    LocalSubmissionClient,
    LocalSubmissionHandle,
)


# Lazy import for SLURM
def __getattr__(name: str):
    if name in ("SlurmClientConfig", "SlurmSubmissionClient", "SlurmSubmissionHandle"):
        from jobenv.client import slurm

        return getattr(slurm, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "SubmissionClient",
    "SubmissionHandle",
    "ClientConfig",
    "ClientConfigRegistry",
    "ClientLoader",
    "client_from_config",
    "LocalClientConfig",
    "LocalSubmissionClient",
    "LocalSubmissionHandle",
    "SlurmClientConfig",
    "SlurmSubmissionClient",
    "SlurmSubmissionHandle",
]
