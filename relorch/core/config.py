"""Typed configuration loading and access.

relorch.toml layout:

    [release]
    marker_commit = true
    marker_message = "chore(release): {tag}"

    [orchestrator]
    branches = ["main"]
    lock_wait_seconds = 5.0
    decision_timeout_seconds = 30.0
    requeue_delay_seconds = 1.0
    max_workers = 4
    history_size = 1000        # terminal runs kept in memory
    poll_seconds = 15.0        # remote polling interval of `relorch watch`

    [deploy]
    deployment = "app"
    image_repository = "registry.local/app"
    namespace = "default"
    container = "*"            # "*" updates every container

    [build]                    # required by `relorch watch`
    command = ["make", "image"]        # run in a checkout of the tagged commit
    artifact = "dist/image.tar"        # build output, relative to the checkout
    workdir = ".relorch/work"

    [[build.checks]]
    name = "unit"
    kind = "unit"                      # "network" checks are retried
    command = ["make", "test", "IMAGE={artifact}"]

    [registry]                 # required by `relorch watch`
    push = ["crane", "push", "{artifact}", "{ref}"]
    exists = ["crane", "digest", "{ref}"]

    [timeouts]
    build = 1800
    test = 1800
    package = 900
    deploy = 900
    rollout = 600

    [retry.publish]        # also: retry.deploy, retry.network_tests
    max_attempts = 5
    base_delay = 0.5
    max_delay = 8.0
    multiplier = 2.0

    [ledger]
    path = ".relorch/ledger.json"
    releases_dir = ".relorch/releases"
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .result import Err, Ok, Result
from .retry import RetryPolicy
from .structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_float,
    get_int,
    get_list,
    get_str,
    get_str_list,
    get_table,
)

__all__ = [
    "BuildConfig",
    "CheckConfig",
    "Config",
    "ConfigError",
    "DeployConfig",
    "LedgerConfig",
    "OrchestratorConfig",
    "RegistryConfig",
    "ReleaseConfig",
    "RetryConfig",
    "TimeoutsConfig",
    "CONFIG_FILE_NAME",
    "load_config",
    "load_config_or_default",
]

CONFIG_FILE_NAME = "relorch.toml"

DEFAULT_MARKER_MESSAGE = "chore(release): {tag}"


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


@dataclass(frozen=True, slots=True)
class ReleaseConfig:
    """How a release is written to source control."""

    marker_commit: bool = True
    marker_message: str = DEFAULT_MARKER_MESSAGE


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    """Event handling and branch serialization."""

    branches: tuple[str, ...] = ("main",)
    lock_wait_seconds: float = 5.0
    decision_timeout_seconds: float = 30.0
    requeue_delay_seconds: float = 1.0
    max_workers: int = 4
    history_size: int = 1000
    poll_seconds: float = 15.0


@dataclass(frozen=True, slots=True)
class DeployConfig:
    deployment: str = "app"
    image_repository: str = "registry.local/app"
    namespace: str = "default"
    container: str = "*"


CHECK_KINDS: tuple[str, ...] = ("unit", "network")


@dataclass(frozen=True, slots=True)
class CheckConfig:
    """One quality check command; ``{artifact}`` expands to the built file."""

    name: str
    kind: str
    command: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class BuildConfig:
    """How a tagged commit is built and checked. An empty ``command`` means unset."""

    command: tuple[str, ...] = ()
    artifact: str = "dist/artifact"
    workdir: str = ".relorch/work"
    checks: tuple[CheckConfig, ...] = ()


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    """Artifact registry commands; ``{ref}`` and ``{artifact}`` are expanded."""

    push: tuple[str, ...] = ()
    exists: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TimeoutsConfig:
    """Per-phase timeouts in seconds. Expiry fails the phase."""

    build: float = 1800.0
    test: float = 1800.0
    package: float = 900.0
    deploy: float = 900.0
    rollout: float = 600.0


def _publish_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=5, base_delay=0.5, max_delay=8.0)


def _deploy_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=30.0)


def _network_tests_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0)


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Retry policies per kind of side-effecting call."""

    publish: RetryPolicy = field(default_factory=_publish_policy)
    deploy: RetryPolicy = field(default_factory=_deploy_policy)
    network_tests: RetryPolicy = field(default_factory=_network_tests_policy)


@dataclass(frozen=True, slots=True)
class LedgerConfig:
    """Where the ledger and published release metadata live, relative to the repo."""

    path: str = ".relorch/ledger.json"
    releases_dir: str = ".relorch/releases"


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    release: ReleaseConfig = field(default_factory=ReleaseConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    deploy: DeployConfig = field(default_factory=DeployConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Create Config from a mapping (parsed TOML).

        Raises:
            ValueError: If a value is present but out of range.
        """
        release: StrDict = get_table(data, "release") or {}
        orch: StrDict = get_table(data, "orchestrator") or {}
        deploy: StrDict = get_table(data, "deploy") or {}
        build: StrDict = get_table(data, "build") or {}
        registry: StrDict = get_table(data, "registry") or {}
        timeouts: StrDict = get_table(data, "timeouts") or {}
        retry: StrDict = get_table(data, "retry") or {}
        ledger: StrDict = get_table(data, "ledger") or {}

        defaults = cls()

        marker_message = get_str(release, "marker_message") or DEFAULT_MARKER_MESSAGE
        if "{tag}" not in marker_message:
            raise ValueError("release.marker_message must contain '{tag}'")

        branches = get_str_list(orch, "branches")
        if branches is not None and not branches:
            raise ValueError("orchestrator.branches must not be empty")

        max_workers = get_int(orch, "max_workers")
        if max_workers is None:
            max_workers = defaults.orchestrator.max_workers
        elif max_workers < 1:
            raise ValueError("orchestrator.max_workers must be >= 1")

        history_size = get_int(orch, "history_size")
        if history_size is None:
            history_size = defaults.orchestrator.history_size
        elif history_size < 1:
            raise ValueError("orchestrator.history_size must be >= 1")

        def seconds(table: StrDict, key: str, default: float) -> float:
            value = get_float(table, key)
            if value is None:
                return default
            if value <= 0:
                raise ValueError(f"{key} must be > 0 (got {value})")
            return value

        return cls(
            release=ReleaseConfig(
                marker_commit=_bool_or(get_bool(release, "marker_commit"), True),
                marker_message=marker_message,
            ),
            orchestrator=OrchestratorConfig(
                branches=tuple(branches) if branches else defaults.orchestrator.branches,
                lock_wait_seconds=seconds(
                    orch, "lock_wait_seconds", defaults.orchestrator.lock_wait_seconds
                ),
                decision_timeout_seconds=seconds(
                    orch,
                    "decision_timeout_seconds",
                    defaults.orchestrator.decision_timeout_seconds,
                ),
                requeue_delay_seconds=seconds(
                    orch, "requeue_delay_seconds", defaults.orchestrator.requeue_delay_seconds
                ),
                max_workers=max_workers,
                history_size=history_size,
                poll_seconds=seconds(orch, "poll_seconds", defaults.orchestrator.poll_seconds),
            ),
            deploy=DeployConfig(
                deployment=get_str(deploy, "deployment") or defaults.deploy.deployment,
                image_repository=get_str(deploy, "image_repository")
                or defaults.deploy.image_repository,
                namespace=get_str(deploy, "namespace") or defaults.deploy.namespace,
                container=get_str(deploy, "container") or defaults.deploy.container,
            ),
            build=BuildConfig(
                command=_command(build, "command"),
                artifact=get_str(build, "artifact") or defaults.build.artifact,
                workdir=get_str(build, "workdir") or defaults.build.workdir,
                checks=tuple(_check(item) for item in get_list(build, "checks") or []),
            ),
            registry=RegistryConfig(
                push=_command(registry, "push"),
                exists=_command(registry, "exists"),
            ),
            timeouts=TimeoutsConfig(
                build=seconds(timeouts, "build", defaults.timeouts.build),
                test=seconds(timeouts, "test", defaults.timeouts.test),
                package=seconds(timeouts, "package", defaults.timeouts.package),
                deploy=seconds(timeouts, "deploy", defaults.timeouts.deploy),
                rollout=seconds(timeouts, "rollout", defaults.timeouts.rollout),
            ),
            retry=RetryConfig(
                publish=_policy(get_table(retry, "publish"), defaults.retry.publish),
                deploy=_policy(get_table(retry, "deploy"), defaults.retry.deploy),
                network_tests=_policy(
                    get_table(retry, "network_tests"), defaults.retry.network_tests
                ),
            ),
            ledger=LedgerConfig(
                path=get_str(ledger, "path") or defaults.ledger.path,
                releases_dir=get_str(ledger, "releases_dir") or defaults.ledger.releases_dir,
            ),
        )


def _bool_or(value: bool | None, default: bool) -> bool:
    return default if value is None else value


def _command(table: StrDict, key: str) -> tuple[str, ...]:
    if key not in table:
        return ()
    command = get_str_list(table, key)
    if not command:
        raise ValueError(f"{key} must be a non-empty list of strings")
    return tuple(command)


def _check(obj: object) -> CheckConfig:
    table = as_str_dict(obj)
    if table is None:
        raise ValueError("build.checks entries must be tables")
    name = get_str(table, "name")
    if name is None:
        raise ValueError("build.checks entry without a name")
    kind = get_str(table, "kind") or "unit"
    if kind not in CHECK_KINDS:
        raise ValueError(f"check {name}: kind must be one of {', '.join(CHECK_KINDS)}")
    command = _command(table, "command")
    if not command:
        raise ValueError(f"check {name}: command is required")
    return CheckConfig(name=name, kind=kind, command=command)


def _policy(table: StrDict | None, default: RetryPolicy) -> RetryPolicy:
    if table is None:
        return default

    max_attempts = get_int(table, "max_attempts")
    if max_attempts is not None and max_attempts < 1:
        raise ValueError("retry max_attempts must be >= 1")

    base_delay = get_float(table, "base_delay")
    max_delay = get_float(table, "max_delay")
    multiplier = get_float(table, "multiplier")
    for name, value in (("base_delay", base_delay), ("max_delay", max_delay)):
        if value is not None and value < 0:
            raise ValueError(f"retry {name} must be >= 0")
    if multiplier is not None and multiplier < 1:
        raise ValueError("retry multiplier must be >= 1")

    return RetryPolicy(
        max_attempts=max_attempts if max_attempts is not None else default.max_attempts,
        base_delay=base_delay if base_delay is not None else default.base_delay,
        max_delay=max_delay if max_delay is not None else default.max_delay,
        multiplier=multiplier if multiplier is not None else default.multiplier,
    )


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling import and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to relorch.toml

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(Config.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def load_config_or_default(path: Path) -> Config:
    """Load config from file, or return the default config if it doesn't exist.

    A file that exists but is invalid still falls back to defaults; callers
    that must reject invalid files use load_config directly.
    """
    result = load_config(path)
    if isinstance(result, Ok):
        return result.value
    return Config()
