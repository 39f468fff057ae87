#!/usr/bin/env python3

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

# Resolved against the working directory when no path is given
DEFAULT_CONFIG_NAME = "config.json"
CONFIG_ENV_VAR = "SF_PIPELINE_CONFIG"

REQUIRED_KEYS = [
    "recordsPath",
    "reportsPath",
    "spreadsheetPath",
    "fieldDescriptionsPath",
    "pollTimeout",
    "pollInterval",
]

DEFAULT_API_VERSION = "58.0"
DEFAULT_CREATED_WITHIN_YEARS = 2
DEFAULT_REPORT_WORKERS = 4
DEFAULT_LOG_LEVEL = "INFO"


class ConfigError(Exception):
    """Raised when the pipeline configuration file is missing or invalid."""


@dataclass(frozen=True)
class PipelineConfig:
    """Paths and bulk settings shared by every stage of a run."""

    records_path: Path
    reports_path: Path
    spreadsheet_path: Path
    field_descriptions_path: Path
    poll_timeout: int
    poll_interval: int
    api_version: str = DEFAULT_API_VERSION
    created_within_years: int = DEFAULT_CREATED_WITHIN_YEARS
    report_workers: int = DEFAULT_REPORT_WORKERS
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def spreadsheet_file(self) -> Path:
        return self.spreadsheet_path / "Salesforce_Report.xlsx"


def _positive_int(data: Dict[str, Any], key: str, default: Optional[int] = None) -> int:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"'{key}' must be a positive integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be a positive integer, got {value!r}")
    if number <= 0:
        raise ConfigError(f"'{key}' must be a positive integer, got {value!r}")
    return number


def _resolve(base_dir: Path, raw: Any, key: str) -> Path:
    if not isinstance(raw, str) or not raw.strip():
        raise ConfigError(f"'{key}' must be a non-empty path string")
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    return path


def config_from_dict(data: Dict[str, Any], base_dir: Union[str, Path]) -> PipelineConfig:
    """Build a PipelineConfig from parsed JSON.

    Relative paths are resolved against base_dir, normally the folder holding
    the config file.
    """
    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a JSON object")

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise ConfigError(f"Missing configuration keys: {', '.join(missing)}")

    base_dir = Path(base_dir)
    return PipelineConfig(
        records_path=_resolve(base_dir, data["recordsPath"], "recordsPath"),
        reports_path=_resolve(base_dir, data["reportsPath"], "reportsPath"),
        spreadsheet_path=_resolve(base_dir, data["spreadsheetPath"], "spreadsheetPath"),
        field_descriptions_path=_resolve(base_dir, data["fieldDescriptionsPath"], "fieldDescriptionsPath"),
        poll_timeout=_positive_int(data, "pollTimeout"),
        poll_interval=_positive_int(data, "pollInterval"),
        api_version=str(data.get("apiVersion", DEFAULT_API_VERSION)),
        created_within_years=_positive_int(data, "createdWithinYears", DEFAULT_CREATED_WITHIN_YEARS),
        report_workers=_positive_int(data, "reportWorkers", DEFAULT_REPORT_WORKERS),
        log_level=str(data.get("logLevel", DEFAULT_LOG_LEVEL)).upper(),
    )


def load_config(config_path: Optional[Union[str, Path]] = None) -> PipelineConfig:
    """Load the pipeline configuration from a JSON file.

    Args:
        config_path: Path to the JSON file. Falls back to the SF_PIPELINE_CONFIG
            environment variable, then to config.json in the working directory.

    Returns:
        PipelineConfig with absolute paths
    """
    if config_path is None:
        config_path = os.getenv(CONFIG_ENV_VAR) or Path.cwd() / DEFAULT_CONFIG_NAME
    config_path = Path(config_path).expanduser().resolve()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {config_path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {config_path}: {e}")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Could not read config file {config_path}: {e}")

    return config_from_dict(data, config_path.parent)
