"""Unit tests for configuration loading and validation"""

import logging
import sys
import os

import pytest

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cca_workflows.config import Config, ENV_VARS, load_config, parse_config_file, validate_settings
from cca_workflows.exceptions import ConfigError, REDACTED
from cca_workflows.models import LogLevel, OutputFormat


TOKEN = "ghp_" + "x" * 36


class TestDefaults:
    """Loading with nothing set"""

    def test_empty_environment_gives_defaults(self):
        config = load_config(environ={})
        assert config == Config()
        assert config.max_parallel_jobs == 4
        assert config.cache_ttl == 300
        assert config.rate_limit_requests_per_minute == 60
        assert config.rate_limit_buffer == 100
        assert config.log_level == LogLevel.INFO
        assert config.output_format == OutputFormat.CONSOLE
        assert config.enable_cache is True
        assert config.enable_benchmark is False
        assert config.workflow_analysis_limit == 50

    def test_load_is_idempotent(self):
        env = {"CACHE_TTL": "600", "MAX_PARALLEL_JOBS": "8", "LOG_LEVEL": "DEBUG"}
        assert load_config(environ=env) == load_config(environ=env)

    def test_every_field_has_an_env_var(self):
        assert ENV_VARS["cache_ttl"] == "CACHE_TTL"
        assert ENV_VARS["rate_limit_requests_per_minute"] == "RATE_LIMIT_REQUESTS_PER_MINUTE"
        assert "warnings" not in ENV_VARS


class TestValidation:
    """Range, enum and cross-field rules"""

    def test_cache_ttl_below_minimum(self):
        with pytest.raises(ConfigError) as exc_info:
            load_config(environ={"CACHE_TTL": "30"})
        assert exc_info.value.field == "cache_ttl"
        assert exc_info.value.reason == "below minimum 60"

    def test_boundaries_are_inclusive(self):
        config = load_config(environ={
            "CACHE_TTL": "60",
            "MAX_PARALLEL_JOBS": "32",
            "RATE_LIMIT_REQUESTS_PER_MINUTE": "1",
        })
        assert config.cache_ttl == 60
        assert config.max_parallel_jobs == 32

    def test_above_maximum(self):
        with pytest.raises(ConfigError) as exc_info:
            load_config(environ={"MAX_PARALLEL_JOBS": "33"})
        assert exc_info.value.reason == "above maximum 32"

    def test_all_violations_are_reported(self):
        with pytest.raises(ConfigError) as exc_info:
            load_config(environ={
                "CACHE_TTL": "30",
                "MAX_PARALLEL_JOBS": "0",
                "ENABLE_CACHE": "yes",
                "OUTPUT_FORMAT": "xml",
            })
        assert set(exc_info.value.fields) == {
            "cache_ttl", "max_parallel_jobs", "enable_cache", "output_format"
        }

    def test_unparseable_integer(self):
        with pytest.raises(ConfigError) as exc_info:
            load_config(environ={"MAX_PARALLEL_JOBS": "abc"})
        assert exc_info.value.field == "max_parallel_jobs"
        assert exc_info.value.reason == "expected an integer, got 'abc'"

    @pytest.mark.parametrize("raw", ["nan", "inf", "-inf"])
    @pytest.mark.parametrize("env_name,field_name", [
        ("RATE_LIMIT_DELAY", "rate_limit_delay"),
        ("REQUEST_TIMEOUT", "request_timeout"),
        ("TASK_TIMEOUT", "task_timeout"),
    ])
    def test_non_finite_numbers_are_rejected(self, env_name, field_name, raw):
        with pytest.raises(ConfigError) as exc_info:
            load_config(environ={env_name: raw})
        assert exc_info.value.field == field_name
        assert exc_info.value.reason.startswith("expected a finite number")

    def test_booleans_must_be_literal(self):
        assert load_config(environ={"ENABLE_CACHE": "false"}).enable_cache is False
        assert load_config(environ={"ENABLE_CACHE": "TRUE"}).enable_cache is True
        with pytest.raises(ConfigError):
            load_config(environ={"ENABLE_CACHE": "1"})

    def test_log_level_accepts_any_case(self):
        config = load_config(environ={"LOG_LEVEL": "warn"})
        assert config.log_level == LogLevel.WARN
        assert config.log_level.logging_level == "WARNING"

    def test_benchmark_needs_three_iterations(self):
        with pytest.raises(ConfigError) as exc_info:
            load_config(environ={"ENABLE_BENCHMARK": "true", "BENCHMARK_ITERATIONS": "2"})
        assert exc_info.value.field == "benchmark_iterations"
        # Fine when benchmarking is off
        assert load_config(environ={"BENCHMARK_ITERATIONS": "2"}).benchmark_iterations == 2

    def test_repository_format(self):
        with pytest.raises(ConfigError) as exc_info:
            load_config(environ={"GITHUB_REPOSITORY": "not-a-repo"})
        assert exc_info.value.field == "github_repository"
        assert load_config(environ={"GITHUB_REPOSITORY": "octo/hello"}).github_repository == "octo/hello"

    def test_api_url_scheme(self):
        with pytest.raises(ConfigError):
            load_config(environ={"GITHUB_API_URL": "ftp://example.com"})

    def test_aggressive_rate_is_only_a_warning(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = load_config(environ={
                "RATE_LIMIT_REQUESTS_PER_MINUTE": "100",
                "RATE_LIMIT_DELAY": "0.05",
            })
        assert config.warnings
        assert "secondary rate limits" in caplog.text

    def test_direct_construction_is_validated(self):
        with pytest.raises(ConfigError):
            Config(cache_ttl=10)
        with pytest.raises(ConfigError):
            Config().with_overrides(max_parallel_jobs=0)

    def test_validate_settings_returns_violations(self):
        values = Config()._values()
        values["cache_ttl"] = 5
        violations, warnings = validate_settings(values)
        assert [v.field for v in violations] == ["cache_ttl"]
        assert warnings == []


class TestOverrideFile:
    """KEY=value override file handling"""

    def test_file_values_are_applied(self, tmp_path):
        path = tmp_path / "override.conf"
        path.write_text("CACHE_TTL=600\nMAX_PARALLEL_JOBS=2\n")
        config = load_config(str(path), environ={})
        assert config.cache_ttl == 600
        assert config.max_parallel_jobs == 2

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "override.conf"
        path.write_text("CACHE_TTL=600\n")
        config = load_config(str(path), environ={"CACHE_TTL": "900"})
        assert config.cache_ttl == 900

    def test_file_syntax(self, tmp_path):
        path = tmp_path / "override.conf"
        path.write_text(
            "# comment\n"
            "\n"
            "export LOG_LEVEL=DEBUG\n"
            'OUTPUT_FORMAT="json"\n'
            "CACHE_TTL=120 # two minutes\n"
            "not a setting\n"
        )
        values = parse_config_file(path)
        assert values == {"LOG_LEVEL": "DEBUG", "OUTPUT_FORMAT": "json", "CACHE_TTL": "120"}

    def test_missing_file_is_skipped(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            config = load_config(str(tmp_path / "missing.conf"), environ={})
        assert config == Config()
        assert "not readable" in caplog.text

    def test_invalid_file_value_fails(self, tmp_path):
        path = tmp_path / "override.conf"
        path.write_text("CACHE_TTL=30\n")
        with pytest.raises(ConfigError) as exc_info:
            load_config(str(path), environ={})
        assert exc_info.value.field == "cache_ttl"


class TestSecrets:
    """The token never leaks through the config object"""

    def test_repr_hides_token(self):
        config = load_config(environ={"GITHUB_TOKEN": TOKEN})
        assert config.github_token == TOKEN
        assert TOKEN not in repr(config)

    def test_to_dict_redacts_token(self):
        data = load_config(environ={"GITHUB_TOKEN": TOKEN}).to_dict()
        assert data["github_token"] == REDACTED
        assert data["log_level"] == "INFO"
        assert data["output_format"] == "console"
