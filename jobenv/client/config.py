"""
ClientConfig: Configuration classes for submission backends.

Submission backends are discovered via ``jobenv.clients`` entry points
(defined in ``pyproject.toml``).  Each entry point maps a target name
(e.g. ``"local"``, ``"slurm"``) to a :class:`ClientConfig` subclass.

Usage:
    # Create a client from a target name and the [client] settings
    client = client_from_config("slurm", {"partition": "gpu", "time": "2:00:00"})

    # Or resolve the target named by an environment's configuration
    client = ClientLoader().load(configuration)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from importlib.metadata import entry_points
from typing import TYPE_CHECKING, Any, ClassVar

from jobenv.config import TARGET

if TYPE_CHECKING:
    from jobenv.client.base import SubmissionClient
    from jobenv.config import Configuration

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "jobenv.clients"


class ClientConfigRegistry:
    """
    Registry mapping target names to client config classes.

    Backends are discovered lazily from ``jobenv.clients`` entry points
    on first lookup. Classes registered explicitly take precedence.
    """

    _configs: dict[str, type[ClientConfig]] = {}
    _loaded: bool = False

    @classmethod
    def _ensure_loaded(cls) -> None:
        """Load all client config entry points (once)."""
        if cls._loaded:
            return
        cls._loaded = True
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            if ep.name in cls._configs:
                continue
            try:
                cls._configs[ep.name] = ep.load()
            except Exception:  # noqa: BLE001
                logger.debug("Failed to load client entry point %r", ep.name, exc_info=True)

    @classmethod
    def register(cls, name: str, config_class: type[ClientConfig]) -> None:
        """Register a config class for a target name."""
        cls._configs[name] = config_class

    @classmethod
    def get(cls, name: str) -> type[ClientConfig] | None:
        """Get the config class for a target name."""
        cls._ensure_loaded()
        return cls._configs.get(name)

    @classmethod
    def types(cls) -> list[str]:
        """List all registered target names."""
        cls._ensure_loaded()
        return list(cls._configs.keys())


@dataclass
class ClientConfig(ABC):
    """
    Abstract base class for submission client configurations.

    Subclasses must define:

    - client_type: ClassVar[str] -- the target name (e.g., "local", "slurm")
    - create() -> SubmissionClient -- create a client instance
    - from_dict(d) -> ClientConfig -- parse from the ``client`` settings table
    """

    client_type: ClassVar[str] = ""

    @abstractmethod
    def create(self) -> SubmissionClient:
        """Create a submission client from this config."""
        ...

    @classmethod
    @abstractmethod
    def from_dict(cls, d: dict[str, Any]) -> ClientConfig:
        """
        Parse from a config dict (e.g., the ``[client]`` TOML table).

        Args:
            d: Configuration dictionary.
        """
        ...


def client_from_config(
    target: str,
    options: dict[str, Any] | None = None,
) -> SubmissionClient:
    """
    Create a submission client from a target name and config dict.

    Args:
        target: Registered target name (e.g., "local", "slurm").
        options: Client settings (e.g., parsed ``[client]`` table).

    Raises:
        ValueError: If the target is not registered.
    """
    config_class = ClientConfigRegistry.get(target)
    if config_class is None:
        raise ValueError(
            f"Unknown submission target: {target!r}. "
            f"Available: {ClientConfigRegistry.types()}"
        )
    return config_class.from_dict(options or {}).create()


class ClientLoader:
    """
    Resolves the submission client for a configuration.

    Clients are created once per (target, settings) pair and reused, so an
    environment that executes several jobs shares one thread pool or one
    SLURM working directory.
    """

    def __init__(self) -> None:
        self._clients: dict[tuple[str, str], SubmissionClient] = {}

    def load(self, configuration: Configuration) -> SubmissionClient:
        """
        Return the client for the configuration's ``target``.

        Raises:
            ValueError: If the target is not registered.
        """
        target = configuration.get(TARGET)
        options = configuration.client_options
        key = (target, repr(sorted(options.items())))
        client = self._clients.get(key)
        if client is None:
            logger.debug("Creating submission client for target %r", target)
            client = client_from_config(target, options)
            self._clients[key] = client
        return client
