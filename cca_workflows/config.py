#!/usr/bin/env python3
"""
Configuration management for the Claude Code Auto Workflows toolkit.

Settings are layered once at startup: built-in defaults, then an optional
KEY=value override file, then environment variables. The result is an
immutable Config that is validated as a whole; every violation found is
reported together in a single ConfigError.
"""

import logging
import math
import os
import re
import tempfile
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .exceptions import REDACTED, ConfigError, ConfigViolation, register_secret
from .models import LogLevel, OutputFormat


HIGH_REQUEST_RATE = 60
LOW_REQUEST_DELAY = 0.1
MIN_BENCHMARK_ITERATIONS = 3

_REPOSITORY_RE = re.compile(r'^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$')


def _default_cache_dir() -> str:
    return os.path.join(tempfile.gettempdir(), "github-api-cache")


# Valid (minimum, maximum) for each numeric setting
NUMERIC_RANGES: Dict[str, Tuple[float, float]] = {
    "max_parallel_jobs": (1, 32),
    "cache_ttl": (60, 86400),
    "cache_cleanup_interval": (60, 604800),
    "rate_limit_requests_per_minute": (1, 120),
    "rate_limit_delay": (0, 60),
    "rate_limit_burst_size": (0, 100),
    "rate_limit_buffer": (0, 5000),
    "benchmark_iterations": (1, 100),
    "request_timeout": (1, 300),
    "max_retries": (0, 10),
    "retry_base_delay": (0, 60),
    "task_timeout": (1, 3600),
    "shutdown_grace_period": (0, 300),
    "workflow_analysis_limit": (1, 1000),
}


@dataclass(frozen=True)
class Config:
    """Validated, read-only settings for one process run"""
    max_parallel_jobs: int = 4
    cache_ttl: int = 300
    cache_cleanup_interval: int = 3600
    rate_limit_requests_per_minute: int = 60
    rate_limit_delay: float = 1.0
    rate_limit_burst_size: int = 10
    rate_limit_buffer: int = 100
    log_level: LogLevel = LogLevel.INFO
    output_format: OutputFormat = OutputFormat.CONSOLE
    enable_cache: bool = True
    enable_schema_validation: bool = True
    enable_security_checks: bool = True
    enable_performance_checks: bool = True
    enable_benchmark: bool = False
    benchmark_iterations: int = 5
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    task_timeout: float = 300.0
    shutdown_grace_period: float = 10.0
    workflow_analysis_limit: int = 50
    cache_dir: str = field(default_factory=_default_cache_dir)
    github_api_url: str = "https://api.github.com"
    github_token: str = field(default="", repr=False)
    github_repository: str = ""
    warnings: Tuple[str, ...] = field(default=(), compare=False)

    def __post_init__(self):
        violations, _ = validate_settings(self._values())
        if violations:
            raise ConfigError(violations)

    def _values(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "warnings"}

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()

    def with_overrides(self, **changes) -> "Config":
        """Return a copy with some settings replaced (re-validated)"""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view with the token redacted"""
        data = {}
        for name, value in self._values().items():
            if name == "github_token":
                value = REDACTED if value else ""
            elif isinstance(value, (LogLevel, OutputFormat)):
                value = value.value
            data[name] = value
        data["warnings"] = list(self.warnings)
        return data


# Environment variable for each field; override files use the same keys
ENV_VARS: Dict[str, str] = {
    f.name: f.name.upper() for f in fields(Config) if f.name != "warnings"
}


def _format_bound(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _parse_int(raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise ValueError(f"expected an integer, got {raw!r}")


def _parse_float(raw: str) -> float:
    try:
        return float(raw.strip())
    except ValueError:
        raise ValueError(f"expected a number, got {raw!r}")


def _parse_bool(raw: str) -> bool:
    value = raw.strip().lower()
    if value == "true":
        return True
    if value == "false":
        return False
    raise ValueError(f"expected true or false, got {raw!r}")


def _parse_log_level(raw: str) -> LogLevel:
    try:
        return LogLevel(raw.strip().upper())
    except ValueError:
        choices = ", ".join(level.value for level in LogLevel)
        raise ValueError(f"must be one of {choices}, got {raw!r}")


def _parse_output_format(raw: str) -> OutputFormat:
    try:
        return OutputFormat(raw.strip().lower())
    except ValueError:
        choices = ", ".join(fmt.value for fmt in OutputFormat)
        raise ValueError(f"must be one of {choices}, got {raw!r}")


def _parse_str(raw: str) -> str:
    return raw.strip()


_PARSERS: Dict[type, Callable[[str], Any]] = {
    int: _parse_int,
    float: _parse_float,
    bool: _parse_bool,
    LogLevel: _parse_log_level,
    OutputFormat: _parse_output_format,
    str: _parse_str,
}

_FIELD_TYPES: Dict[str, type] = {
    f.name: f.type for f in fields(Config) if f.name != "warnings"
}


def validate_settings(values: Mapping[str, Any]) -> Tuple[List[ConfigViolation], List[str]]:
    """Check ranges, enum membership and cross-field rules.

    Returns (violations, warnings); warnings never fail a load.
    """
    violations: List[ConfigViolation] = []
    warnings: List[str] = []

    for name, (minimum, maximum) in NUMERIC_RANGES.items():
        value = values.get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            violations.append(ConfigViolation(name, f"expected a number, got {value!r}"))
            continue
        if not math.isfinite(value):
            violations.append(ConfigViolation(name, f"expected a finite number, got {value!r}"))
        elif value < minimum:
            violations.append(ConfigViolation(name, f"below minimum {_format_bound(minimum)}"))
        elif value > maximum:
            violations.append(ConfigViolation(name, f"above maximum {_format_bound(maximum)}"))

    if not isinstance(values.get("log_level"), LogLevel):
        violations.append(ConfigViolation(
            "log_level", "must be one of " + ", ".join(level.value for level in LogLevel)
        ))
    if not isinstance(values.get("output_format"), OutputFormat):
        violations.append(ConfigViolation(
            "output_format", "must be one of " + ", ".join(fmt.value for fmt in OutputFormat)
        ))

    for name in ("enable_cache", "enable_schema_validation", "enable_security_checks",
                 "enable_performance_checks", "enable_benchmark"):
        if not isinstance(values.get(name), bool):
            violations.append(ConfigViolation(name, "expected true or false"))

    iterations = values.get("benchmark_iterations")
    if (values.get("enable_benchmark") is True and isinstance(iterations, int)
            and iterations < MIN_BENCHMARK_ITERATIONS):
        violations.append(ConfigViolation(
            "benchmark_iterations",
            f"must be at least {MIN_BENCHMARK_ITERATIONS} when enable_benchmark is true"
        ))

    api_url = values.get("github_api_url") or ""
    if not str(api_url).startswith(("http://", "https://")):
        violations.append(ConfigViolation("github_api_url", "must start with http:// or https://"))

    repository = values.get("github_repository") or ""
    if repository and not _REPOSITORY_RE.match(str(repository)):
        violations.append(ConfigViolation("github_repository", "must look like owner/repo"))

    if not str(values.get("cache_dir") or "").strip():
        violations.append(ConfigViolation("cache_dir", "must not be empty"))

    rate = values.get("rate_limit_requests_per_minute")
    delay = values.get("rate_limit_delay")
    if (isinstance(rate, int) and isinstance(delay, (int, float))
            and rate > HIGH_REQUEST_RATE and delay < LOW_REQUEST_DELAY):
        warnings.append(
            f"rate_limit_requests_per_minute={rate} with rate_limit_delay={delay} "
            "may trigger secondary rate limits"
        )

    return violations, warnings


def parse_config_file(path: Path) -> Dict[str, str]:
    """Read KEY=value lines, ignoring blank lines and # comments"""
    values: Dict[str, str] = {}
    for lineno, raw_line in enumerate(path.read_text().splitlines(), start=1):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if "=" not in line:
            logging.warning(f"Ignoring malformed line {lineno} in {path}")
            continue
        key, value = line.split("=", 1)
        key, value = key.strip(), value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        elif " #" in value:
            value = value.split(" #", 1)[0].rstrip()
        values[key] = value
    return values


def load_config(
    override_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None
) -> Config:
    """Build the run's Config from defaults, the override file and the environment.

    Environment variables take precedence over the override file. All
    violations are collected before failing.

    Raises:
        ConfigError: if any hard validation rule is violated
    """
    if environ is None:
        environ = os.environ

    raw: Dict[str, str] = {}

    if override_path:
        path = Path(override_path).expanduser()
        try:
            file_values = parse_config_file(path)
        except OSError as e:
            logging.warning(f"Override config {path} not readable, skipping: {e.strerror or e}")
        else:
            for key, value in file_values.items():
                name = key.lower()
                if name in ENV_VARS:
                    raw[name] = value
                else:
                    logging.debug(f"Ignoring unknown setting {key} in {path}")
            logging.debug(f"Loaded {len(file_values)} setting(s) from {path}")

    for name, env_name in ENV_VARS.items():
        if env_name in environ:
            raw[name] = environ[env_name]

    violations: List[ConfigViolation] = []
    values: Dict[str, Any] = {}
    defaults = Config()
    for name in ENV_VARS:
        if name not in raw:
            values[name] = getattr(defaults, name)
            continue
        try:
            values[name] = _PARSERS[_FIELD_TYPES[name]](raw[name])
        except ValueError as e:
            violations.append(ConfigViolation(name, str(e)))

    if violations:
        # Only check rules for fields that parsed, so each bad value is reported once
        parsed_ok = {**defaults._values(), **values}
        more, _ = validate_settings(parsed_ok)
        bad = {v.field for v in violations}
        violations.extend(v for v in more if v.field not in bad)
        raise ConfigError(violations)

    violations, warnings = validate_settings(values)
    if violations:
        raise ConfigError(violations)

    for warning in warnings:
        logging.warning(f"Configuration warning: {warning}")

    register_secret(values.get("github_token"))
    return Config(**values, warnings=tuple(warnings))
