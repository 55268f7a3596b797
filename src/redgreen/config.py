"""Configuration loading and deterministic merge order."""

from __future__ import annotations

import sys
import tomllib
from dataclasses import dataclass
from pathlib import Path

CONFIG_FILE_NAME = "redgreen.toml"
DATA_DIR_NAME = ".redgreen"
MAX_SLEEP_SECONDS = 60.0
MAX_INTERRUPT_GRACE_SECONDS = 10.0

DEFAULT_DIRECTORIES = (".",)
DEFAULT_EXCLUDE_PATTERNS = (
    r"(^|/)\.(git|hg|svn|tox|nox|venv|mypy_cache|pytest_cache|ruff_cache)$",
    r"(^|/)(__pycache__|venv|build|dist|tmp)$",
    r"\.egg-info$",
)


@dataclass(slots=True, frozen=True)
class WatchConfig:
    """What the file index scans and how often."""

    directories: tuple[str, ...]
    extra_files: tuple[str, ...]
    exclude_patterns: tuple[str, ...]
    sleep_seconds: float


@dataclass(slots=True, frozen=True)
class RunConfig:
    """How test commands are built and when full runs are forced."""

    python: str
    prefix: str
    pytest_args: tuple[str, ...]
    full_after_start: bool
    full_after_failed: bool
    interrupt_grace_seconds: float


@dataclass(slots=True, frozen=True)
class DaemonConfig:
    """Fully merged daemon configuration."""

    project_root: Path
    data_dir: Path
    watch: WatchConfig
    run: RunConfig
    verbose: bool = False
    quiet: bool = False
    debug: bool = False

    def to_public_dict(self) -> dict[str, object]:
        """Return a serializable config snapshot for diagnostics."""
        return {
            "project_root": str(self.project_root),
            "data_dir": str(self.data_dir),
            "watch": {
                "directories": list(self.watch.directories),
                "extra_files": list(self.watch.extra_files),
                "exclude_patterns": list(self.watch.exclude_patterns),
                "sleep_seconds": self.watch.sleep_seconds,
            },
            "run": {
                "python": self.run.python,
                "prefix": self.run.prefix,
                "pytest_args": list(self.run.pytest_args),
                "full_after_start": self.run.full_after_start,
                "full_after_failed": self.run.full_after_failed,
                "interrupt_grace_seconds": self.run.interrupt_grace_seconds,
            },
            "verbose": self.verbose,
            "quiet": self.quiet,
            "debug": self.debug,
        }


@dataclass(slots=True, frozen=True)
class CliOverrides:
    """Optional startup overrides applied at highest precedence."""

    config_path: Path | None = None
    data_dir: Path | None = None
    directories: tuple[str, ...] | None = None
    sleep_seconds: float | None = None
    full_after_start: bool | None = None
    full_after_failed: bool | None = None
    verbose: bool | None = None
    quiet: bool | None = None
    debug: bool | None = None


def default_config(project_root: Path) -> DaemonConfig:
    """Build default config for a given project root."""
    resolved_root = project_root.resolve()
    return DaemonConfig(
        project_root=resolved_root,
        data_dir=resolved_root / DATA_DIR_NAME,
        watch=WatchConfig(
            directories=DEFAULT_DIRECTORIES,
            extra_files=(),
            exclude_patterns=DEFAULT_EXCLUDE_PATTERNS,
            sleep_seconds=1.0,
        ),
        run=RunConfig(
            python=sys.executable,
            prefix="",
            pytest_args=(),
            full_after_start=True,
            full_after_failed=True,
            interrupt_grace_seconds=1.5,
        ),
    )


def load_project_config_file(
    project_root: Path, config_path: Path | None = None
) -> dict[str, object]:
    """Load optional redgreen.toml, or the explicitly named file."""
    path = config_path if config_path is not None else project_root / CONFIG_FILE_NAME
    if not path.exists():
        if config_path is not None:
            raise ValueError(f"Config file not found: {config_path}")
        return {}
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"{path.name} must contain a top-level table.")
    return payload


def _get_table(payload: dict[str, object], key: str) -> dict[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a table.")
    return value


def _tuple_of_strings(value: object, section: str, field: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Config field '{section}.{field}' must be a list of strings.")
    output: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"Config field '{section}.{field}' must contain only strings.")
        output.append(item)
    return tuple(output)


def _optional_bool(value: object, name: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValueError(f"Config field '{name}' must be a boolean.")
    return value


def _optional_string(value: object, name: str, default: str) -> str:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValueError(f"Config field '{name}' must be a string.")
    return value


def _optional_seconds_with_cap(value: object, name: str, default: float, cap: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"Config field '{name}' must be a non-negative number.")
    if value > cap:
        raise ValueError(f"Config field '{name}' must be <= {cap}.")
    return float(value)


def merge_config(
    base: DaemonConfig, project_payload: dict[str, object], overrides: CliOverrides
) -> DaemonConfig:
    """Merge defaults, project config, then CLI/startup overrides."""
    watch_payload = _get_table(project_payload, "watch")
    run_payload = _get_table(project_payload, "run")

    directories = base.watch.directories
    if "directories" in watch_payload:
        directories = _tuple_of_strings(watch_payload["directories"], "watch", "directories")
        if not directories:
            raise ValueError("Config field 'watch.directories' must not be empty.")
    extra_files = base.watch.extra_files
    if "extra_files" in watch_payload:
        extra_files = _tuple_of_strings(watch_payload["extra_files"], "watch", "extra_files")
    exclude_patterns = base.watch.exclude_patterns
    if "exclude_patterns" in watch_payload:
        exclude_patterns = _tuple_of_strings(
            watch_payload["exclude_patterns"], "watch", "exclude_patterns"
        )
    sleep_seconds = _optional_seconds_with_cap(
        watch_payload.get("sleep_seconds"),
        "watch.sleep_seconds",
        base.watch.sleep_seconds,
        MAX_SLEEP_SECONDS,
    )

    pytest_args = base.run.pytest_args
    if "pytest_args" in run_payload:
        pytest_args = _tuple_of_strings(run_payload["pytest_args"], "run", "pytest_args")

    merged = DaemonConfig(
        project_root=base.project_root,
        data_dir=base.data_dir,
        watch=WatchConfig(
            directories=directories,
            extra_files=extra_files,
            exclude_patterns=exclude_patterns,
            sleep_seconds=sleep_seconds,
        ),
        run=RunConfig(
            python=_optional_string(run_payload.get("python"), "run.python", base.run.python),
            prefix=_optional_string(run_payload.get("prefix"), "run.prefix", base.run.prefix),
            pytest_args=pytest_args,
            full_after_start=_optional_bool(
                run_payload.get("full_after_start"),
                "run.full_after_start",
                base.run.full_after_start,
            ),
            full_after_failed=_optional_bool(
                run_payload.get("full_after_failed"),
                "run.full_after_failed",
                base.run.full_after_failed,
            ),
            interrupt_grace_seconds=_optional_seconds_with_cap(
                run_payload.get("interrupt_grace_seconds"),
                "run.interrupt_grace_seconds",
                base.run.interrupt_grace_seconds,
                MAX_INTERRUPT_GRACE_SECONDS,
            ),
        ),
    )
    return apply_cli_overrides(merged, overrides)


def apply_cli_overrides(config: DaemonConfig, overrides: CliOverrides) -> DaemonConfig:
    """Apply startup overrides at highest precedence."""
    sleep_seconds = _optional_seconds_with_cap(
        overrides.sleep_seconds,
        "overrides.sleep_seconds",
        config.watch.sleep_seconds,
        MAX_SLEEP_SECONDS,
    )
    directories = overrides.directories or config.watch.directories
    watch = WatchConfig(
        directories=directories,
        extra_files=config.watch.extra_files,
        exclude_patterns=config.watch.exclude_patterns,
        sleep_seconds=sleep_seconds,
    )
    run = RunConfig(
        python=config.run.python,
        prefix=config.run.prefix,
        pytest_args=config.run.pytest_args,
        full_after_start=(
            overrides.full_after_start
            if overrides.full_after_start is not None
            else config.run.full_after_start
        ),
        full_after_failed=(
            overrides.full_after_failed
            if overrides.full_after_failed is not None
            else config.run.full_after_failed
        ),
        interrupt_grace_seconds=config.run.interrupt_grace_seconds,
    )
    data_dir = overrides.data_dir or config.data_dir
    return DaemonConfig(
        project_root=config.project_root,
        data_dir=data_dir.resolve(),
        watch=watch,
        run=run,
        verbose=overrides.verbose if overrides.verbose is not None else config.verbose,
        quiet=overrides.quiet if overrides.quiet is not None else config.quiet,
        debug=overrides.debug if overrides.debug is not None else config.debug,
    )


def load_effective_config(
    project_root: Path, overrides: CliOverrides | None = None
) -> DaemonConfig:
    """Load effective config using merge order defaults -> project config -> overrides."""
    resolved_root = project_root.resolve()
    effective_overrides = overrides or CliOverrides()
    base = default_config(resolved_root)
    payload = load_project_config_file(resolved_root, effective_overrides.config_path)
    return merge_config(base, payload, effective_overrides)
