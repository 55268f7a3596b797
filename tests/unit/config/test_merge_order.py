from __future__ import annotations

import sys
from pathlib import Path

from redgreen.config import CliOverrides, DEFAULT_EXCLUDE_PATTERNS, load_effective_config
from redgreen.daemon import create_daemon


def test_defaults_without_config_file(tmp_path: Path) -> None:
    config = load_effective_config(tmp_path)

    assert config.project_root == tmp_path.resolve()
    assert config.data_dir == tmp_path.resolve() / ".redgreen"
    assert config.watch.directories == (".",)
    assert config.watch.exclude_patterns == DEFAULT_EXCLUDE_PATTERNS
    assert config.watch.sleep_seconds == 1.0
    assert config.run.python == sys.executable
    assert config.run.full_after_start is True
    assert config.run.full_after_failed is True
    assert config.run.interrupt_grace_seconds == 1.5


def test_merge_order_defaults_then_project_then_cli(tmp_path: Path) -> None:
    (tmp_path / "redgreen.toml").write_text(
        "\n".join(
            [
                "[watch]",
                'directories = ["src", "tests"]',
                "sleep_seconds = 2.5",
                "",
                "[run]",
                'pytest_args = ["-q", "-x"]',
                "full_after_failed = false",
            ]
        ),
        encoding="utf-8",
    )
    overrides = CliOverrides(sleep_seconds=0.25, full_after_start=False)

    config = load_effective_config(tmp_path, overrides)

    assert config.watch.directories == ("src", "tests")
    assert config.watch.sleep_seconds == 0.25
    assert config.run.pytest_args == ("-q", "-x")
    assert config.run.full_after_failed is False
    assert config.run.full_after_start is False


def test_explicit_rc_file_replaces_project_file(tmp_path: Path) -> None:
    (tmp_path / "redgreen.toml").write_text('[run]\nprefix = "project "\n', encoding="utf-8")
    rc = tmp_path / "other.toml"
    rc.write_text('[run]\nprefix = "rc "\n', encoding="utf-8")

    config = load_effective_config(tmp_path, CliOverrides(config_path=rc))

    assert config.run.prefix == "rc "


def test_cli_directories_and_data_dir_override(tmp_path: Path) -> None:
    custom = tmp_path / "state"

    config = load_effective_config(
        tmp_path, CliOverrides(directories=("lib",), data_dir=custom, debug=True)
    )

    assert config.watch.directories == ("lib",)
    assert config.data_dir == custom.resolve()
    assert config.debug is True
    assert config.to_public_dict()["data_dir"] == str(custom.resolve())


def test_data_dir_inside_project_is_excluded_from_watching(tmp_path: Path) -> None:
    loop = create_daemon(tmp_path)

    (tmp_path / ".redgreen" / "events.jsonl").write_text("{}\n", encoding="utf-8")
    (tmp_path / "a.py").write_text("", encoding="utf-8")

    assert list(loop.index.scan()) == ["a.py"]
