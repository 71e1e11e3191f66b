"""Runtime configuration for the Stage 1 command-line tools.

Settings come from an optional YAML file:

    fail_on: error          # or: warning
    auto_repair: true
    indent: 2
    export_version: v1.1
    log_level: WARNING

Anything not set keeps its default. Unknown keys are rejected so typos do not
silently fall back to defaults.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

from stage1.diagnostics import Severity


class ConfigError(ValueError):
    pass


@dataclass
class Stage1Config:
    fail_on: str = "error"
    auto_repair: bool = True
    indent: int = 2
    export_version: str = "v1.1"
    log_level: str = "WARNING"

    @property
    def fail_severity(self) -> Severity:
        return Severity(self.fail_on)


_FAIL_ON_VALUES = ("error", "warning")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _check(cfg: Stage1Config) -> Stage1Config:
    if cfg.fail_on not in _FAIL_ON_VALUES:
        raise ConfigError(f"fail_on must be one of {_FAIL_ON_VALUES}, got {cfg.fail_on!r}")
    if not isinstance(cfg.auto_repair, bool):
        raise ConfigError(f"auto_repair must be true or false, got {cfg.auto_repair!r}")
    if isinstance(cfg.indent, bool) or not isinstance(cfg.indent, int) or cfg.indent < 0:
        raise ConfigError(f"indent must be a non-negative integer, got {cfg.indent!r}")
    if not isinstance(cfg.export_version, str) or not cfg.export_version:
        raise ConfigError(f"export_version must be a non-empty string, got {cfg.export_version!r}")
    cfg.log_level = str(cfg.log_level).upper()
    if cfg.log_level not in _LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {_LOG_LEVELS}, got {cfg.log_level!r}")
    return cfg


def config_from_dict(data: dict | None) -> Stage1Config:
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a YAML mapping at the top level")
    known = {f.name for f in fields(Stage1Config)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config key(s): {', '.join(map(str, unknown))}")
    return _check(Stage1Config(**data))


def load_config(path: str | None) -> Stage1Config:
    if path is None:
        return Stage1Config()
    try:
        with open(Path(path), encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML: {e}") from e
    return config_from_dict(data)


def configure_logging(level: str = "WARNING") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
