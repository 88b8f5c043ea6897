"""
Configuration for jobenv.

This module provides:

- ConfigOption: A typed key with a default value
- Configuration: Key/value settings read by environments and clients
- find_config_file: Walk up directories to locate .jobenv.toml
- deep_merge: Recursively merge two dicts (override wins for leaf values)
- ProjectInfo: Typed project metadata
- EnvironmentProfile: A named environment profile (local, cluster, etc.)
- ResolvedConfig: Fully resolved config for a specific environment
- ProjectConfig: Main project file object with load/resolve interface

Project files are loaded from `.jobenv.toml` with optional
`.jobenv.local.toml` overrides. The resolution order is:

    named environment profile → local overrides → caller overrides

Example:
    >>> config = ProjectConfig.load()
    >>> resolved = config.resolve("cluster")
    >>> resolved.to_configuration().get(TARGET)
    'slurm'
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Generic, TypeVar

CONFIG_FILENAME = ".jobenv.toml"
LOCAL_CONFIG_FILENAME = ".jobenv.local.toml"

T = TypeVar("T")

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConfigOption(Generic[T]):
    """
    A typed configuration key.

    Attributes:
        key: The key under which the value is stored.
        default: Value returned when the key is absent.
        type: The value type; string values are coerced to it.
        description: Human-readable help text.
    """

    key: str
    default: T
    type: type
    description: str = ""

    def coerce(self, value: Any) -> T:
        """
        Convert *value* to this option's type.

        Raises:
            ValueError: If the value cannot be converted.
        """
        if isinstance(value, self.type) and not (
            self.type is int and isinstance(value, bool)
        ):
            return value
        if self.type is bool:
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _TRUE_STRINGS:
                    return True  # type: ignore[return-value]
                if lowered in _FALSE_STRINGS:
                    return False  # type: ignore[return-value]
            raise ValueError(f"Option {self.key!r} expects a boolean, got {value!r}")
        try:
            return self.type(value)
        except (TypeError, ValueError) as e:
            raise ValueError(
                f"Option {self.key!r} expects {self.type.__name__}, got {value!r}"
            ) from e


ATTACHED: ConfigOption[bool] = ConfigOption(
    "attached",
    True,
    bool,
    "Wait for the job to finish before execute() returns.",
)
SHUTDOWN_IF_ATTACHED: ConfigOption[bool] = ConfigOption(
    "shutdown-on-attached-exit",
    False,
    bool,
    "Cancel an attached job when the client process exits before it finishes.",
)
DEFAULT_PARALLELISM: ConfigOption[int] = ConfigOption(
    "default-parallelism",
    -1,
    int,
    "Default parallelism for submitted workloads; values <= 0 mean unset.",
)
TARGET: ConfigOption[str] = ConfigOption(
    "target",
    "local",
    str,
    "Name of the submission client that receives workloads.",
)
SHUTDOWN_CANCEL_TIMEOUT: ConfigOption[float] = ConfigOption(
    "shutdown-cancel-timeout",
    1.0,
    float,
    "Seconds the exit hook waits for a cancellation acknowledgment.",
)

OPTIONS: dict[str, ConfigOption[Any]] = {
    opt.key: opt
    for opt in (
        ATTACHED,
        SHUTDOWN_IF_ATTACHED,
        DEFAULT_PARALLELISM,
        TARGET,
        SHUTDOWN_CANCEL_TIMEOUT,
    )
}

CLIENT_SECTION = "client"


class Configuration:
    """
    Key/value settings for environments and submission clients.

    Values for known options are coerced on write, so a configuration built
    from CLI strings (``attached=false``) reads back typed values.  The
    ``client`` table holds settings for the selected submission client.
    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = {}
        for key, value in (data or {}).items():
            self.set_raw(key, value)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Configuration:
        """Create a configuration from a plain dict."""
        return cls(data)

    def get(self, option: ConfigOption[T]) -> T:
        """Return the value of *option*, or its default."""
        if option.key in self._data:
            return self._data[option.key]
        return option.default

    def set(self, option: ConfigOption[T], value: T) -> Configuration:
        """Set *option* to *value* and return self for chaining."""
        self._data[option.key] = option.coerce(value)
        return self

    def set_raw(self, key: str, value: Any) -> Configuration:
        """
        Set a value by key, coercing it when the key is a known option.

        Dotted keys under ``client.`` are stored in the client table.
        """
        if key.startswith(CLIENT_SECTION + "."):
            self._data.setdefault(CLIENT_SECTION, {})[key.split(".", 1)[1]] = value
            return self
        option = OPTIONS.get(key)
        if option is not None:
            value = option.coerce(value)
        elif key == CLIENT_SECTION and isinstance(value, dict):
            value = deep_merge(self._data.get(CLIENT_SECTION, {}), value)
        self._data[key] = value
        return self

    def contains(self, option: ConfigOption[Any]) -> bool:
        """Return True if *option* was set explicitly."""
        return option.key in self._data

    @property
    def client_options(self) -> dict[str, Any]:
        """Settings passed to the submission client's config class."""
        return dict(self._data.get(CLIENT_SECTION, {}))

    def merged(self, overrides: dict[str, Any]) -> Configuration:
        """Return a new configuration with *overrides* applied on top."""
        merged = deep_merge(self._data, overrides)
        return Configuration(merged)

    def to_dict(self) -> dict[str, Any]:
        """Return a copy of the raw settings."""
        return deep_merge(self._data, {})

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Configuration):
            return NotImplemented
        return self._data == other._data

    def __repr__(self) -> str:
        return f"Configuration({self._data!r})"


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """
    Walk up from *start_dir* to find `.jobenv.toml`.

    Args:
        start_dir: Directory to start searching from. Defaults to ``Path.cwd()``.

    Returns:
        Path to the config file, or ``None`` if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate

        parent = current.parent
        if parent == current:
            # Reached filesystem root
            return None
        current = parent


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge two dicts. *override* wins for leaf values.

    Neither input is mutated; a new dict is returned.

    Args:
        base: The base dictionary.
        override: The override dictionary whose values take precedence.

    Returns:
        A new merged dictionary.
    """
    merged: dict[str, Any] = {}

    for key in base.keys() | override.keys():
        if key in base and key in override:
            base_val = base[key]
            over_val = override[key]
            if isinstance(base_val, dict) and isinstance(over_val, dict):
                merged[key] = deep_merge(base_val, over_val)
            else:
                merged[key] = over_val
        elif key in base:
            val = base[key]
            merged[key] = deep_merge(val, {}) if isinstance(val, dict) else val
        else:
            val = override[key]
            merged[key] = deep_merge(val, {}) if isinstance(val, dict) else val

    return merged


# ---------------------------------------------------------------------------
# Project file
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProjectInfo:
    """
    Typed project metadata from the ``[project]`` table.

    Attributes:
        name: Human-readable project name.
        default_env: Default environment profile to resolve when none is
            specified explicitly.
    """

    name: str
    default_env: str | None = None


@dataclass(frozen=True)
class EnvironmentProfile:
    """
    A named environment profile from ``[environments.NAME]``.

    Attributes:
        name: Profile name (the TOML key under ``[environments]``).
        settings: All key/value pairs from the profile section.
    """

    name: str
    settings: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ResolvedConfig:
    """
    Fully resolved settings for one environment profile.

    Attributes:
        project: Project metadata.
        env_name: The resolved environment profile name.
        settings: Merged profile settings.
    """

    project: ProjectInfo
    env_name: str
    settings: dict[str, Any]

    @property
    def target(self) -> str:
        """The submission target named by the profile."""
        return str(self.settings.get(TARGET.key, TARGET.default))

    def to_configuration(self, overrides: dict[str, Any] | None = None) -> Configuration:
        """Build a Configuration from the profile plus caller *overrides*."""
        return Configuration(deep_merge(self.settings, overrides or {}))


@dataclass
class ProjectConfig:
    """
    Project configuration loaded from ``.jobenv.toml``.

    Typical usage::

        config = ProjectConfig.load()
        resolved = config.resolve()            # uses default_env
        resolved = config.resolve("cluster")   # explicit environment
    """

    project: ProjectInfo
    environments: dict[str, EnvironmentProfile]
    _local_overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def load(cls, start_dir: Path | None = None) -> ProjectConfig:
        """
        Find and load project configuration.

        Args:
            start_dir: Directory to start searching from.

        Returns:
            A fully-constructed :class:`ProjectConfig`.

        Raises:
            FileNotFoundError: If no ``.jobenv.toml`` is found.
        """
        config_path = find_config_file(start_dir)
        if config_path is None:
            raise FileNotFoundError(
                f"Could not find {CONFIG_FILENAME} in {start_dir or Path.cwd()} "
                f"or any parent directory"
            )

        with open(config_path, "rb") as f:
            data = tomllib.load(f)

        local_overrides: dict[str, Any] = {}
        local_path = config_path.parent / LOCAL_CONFIG_FILENAME
        if local_path.is_file():
            with open(local_path, "rb") as f:
                local_overrides = tomllib.load(f)

        return cls.from_dict(data, local_overrides=local_overrides)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        local_overrides: dict[str, Any] | None = None,
    ) -> ProjectConfig:
        """
        Create a :class:`ProjectConfig` from a parsed TOML dict.

        Args:
            data: Parsed TOML data (from the base config file).
            local_overrides: Optional parsed TOML data from the local override
                file, applied during :meth:`resolve`.
        """
        project_raw = data.get("project", {})
        project = ProjectInfo(
            name=project_raw.get("name", ""),
            default_env=project_raw.get("default_env"),
        )

        environments = {
            env_name: EnvironmentProfile(name=env_name, settings=dict(env_raw))
            for env_name, env_raw in data.get("environments", {}).items()
        }

        return cls(
            project=project,
            environments=environments,
            _local_overrides=local_overrides or {},
        )

    def resolve(self, env_name: str | None = None) -> ResolvedConfig:
        """
        Resolve a named environment profile.

        If *env_name* is ``None``, uses ``project.default_env`` (including
        local overrides from ``.jobenv.local.toml``).

        Raises:
            ValueError: If no environment name can be determined, or the
                requested environment does not exist.
        """
        local_project = self._local_overrides.get("project", {})
        env_name = env_name or local_project.get(
            "default_env", self.project.default_env
        )
        if env_name is None:
            available = ", ".join(sorted(self.environments)) or "(none)"
            raise ValueError(
                "No environment specified and no default_env set in [project]. "
                f"Available environments: {available}"
            )

        if env_name not in self.environments:
            available = ", ".join(sorted(self.environments)) or "(none)"
            raise ValueError(
                f"Unknown environment {env_name!r}. "
                f"Available environments: {available}"
            )

        settings = dict(self.environments[env_name].settings)
        local_env = self._local_overrides.get("environments", {}).get(env_name, {})
        if local_env:
            settings = deep_merge(settings, dict(local_env))

        project = self.project
        if local_project:
            project = ProjectInfo(
                name=local_project.get("name", project.name),
                default_env=local_project.get("default_env", project.default_env),
            )

        return ResolvedConfig(project=project, env_name=env_name, settings=settings)

    def list_environments(self) -> list[str]:
        """Sorted list of environment profile names."""
        return sorted(self.environments)
