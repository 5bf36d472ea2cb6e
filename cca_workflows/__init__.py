#!/usr/bin/env python3
"""
Claude Code Auto Workflows toolkit.

A caching, rate-limited GitHub API access layer with a bounded parallel task
runner, plus the workflow analysis built on top of it.
"""

__version__ = "2.1.0"

from .models import (
    LogLevel,
    OutputFormat,
    TaskStatus,
    ApiErrorKind,
    CacheEntry,
    ApiResponse,
    TaskResult,
    WorkflowStats,
    ApiUsage,
    Finding,
    BenchmarkResult,
    AnalysisReport,
)
from .exceptions import (
    WorkflowToolkitError,
    ConfigError,
    ConfigViolation,
    CacheError,
    RateLimitError,
    ApiError,
    TaskError,
)
from .config import Config, load_config

# Define what's available for import
__all__ = [
    # Models
    "LogLevel",
    "OutputFormat",
    "TaskStatus",
    "ApiErrorKind",
    "CacheEntry",
    "ApiResponse",
    "TaskResult",
    "WorkflowStats",
    "ApiUsage",
    "Finding",
    "BenchmarkResult",
    "AnalysisReport",

    # Errors
    "WorkflowToolkitError",
    "ConfigError",
    "ConfigViolation",
    "CacheError",
    "RateLimitError",
    "ApiError",
    "TaskError",

    # Core components
    "Config",
    "load_config",
    "CacheStore",
    "RateBudget",
    "RetryPolicy",
    "GitHubClient",
    "TaskRunner",
    "WorkflowAnalyzer",
]


# Components that pull in aiohttp/aiofiles are imported on first use
def _import_cache_store():
    from .cache_store import CacheStore
    return CacheStore

def _import_rate_budget():
    from .rate_limiter import RateBudget
    return RateBudget

def _import_retry_policy():
    from .retry import RetryPolicy
    return RetryPolicy

def _import_github_client():
    from .github_client import GitHubClient
    return GitHubClient

def _import_task_runner():
    from .task_runner import TaskRunner
    return TaskRunner

def _import_analyzer():
    from .analyzer import WorkflowAnalyzer
    return WorkflowAnalyzer


class _LazyImport:
    def __init__(self, import_func, name):
        self._import_func = import_func
        self._name = name
        self._module = None

    def _load(self):
        if self._module is None:
            self._module = self._import_func()
        return self._module

    def __getattr__(self, name):
        return getattr(self._load(), name)

    def __call__(self, *args, **kwargs):
        return self._load()(*args, **kwargs)

    def __repr__(self):
        return f"<lazy {self._name}>"


CacheStore = _LazyImport(_import_cache_store, "CacheStore")
RateBudget = _LazyImport(_import_rate_budget, "RateBudget")
RetryPolicy = _LazyImport(_import_retry_policy, "RetryPolicy")
GitHubClient = _LazyImport(_import_github_client, "GitHubClient")
TaskRunner = _LazyImport(_import_task_runner, "TaskRunner")
WorkflowAnalyzer = _LazyImport(_import_analyzer, "WorkflowAnalyzer")
