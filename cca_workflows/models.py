#!/usr/bin/env python3
"""
Data models for the Claude Code Auto Workflows toolkit.

This module contains the enums and data classes shared by the cache,
API client, task runner and workflow analyzer.
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class LogLevel(Enum):
    """Log levels accepted by the LOG_LEVEL setting"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @property
    def logging_level(self) -> str:
        """Name understood by the logging module"""
        return "WARNING" if self is LogLevel.WARN else self.value


class OutputFormat(Enum):
    """Report output formats"""
    CONSOLE = "console"
    JSON = "json"
    MARKDOWN = "markdown"


class TaskStatus(Enum):
    """Outcome of one task in a batch"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ApiErrorKind(Enum):
    """Classification of remote API failures"""
    AUTH = "auth"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    REQUEST = "request"
    SERVER = "server"
    NETWORK = "network"
    TIMEOUT = "timeout"

    @property
    def retryable(self) -> bool:
        return self in (ApiErrorKind.SERVER, ApiErrorKind.NETWORK, ApiErrorKind.TIMEOUT)


@dataclass(frozen=True)
class CacheEntry:
    """One memoized API response"""
    key: str
    payload: Any
    stored_at: float
    ttl: int

    def is_valid(self, now: float) -> bool:
        return now - self.stored_at < self.ttl

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "CacheEntry":
        return cls(
            key=str(data["key"]),
            payload=data["payload"],
            stored_at=float(data["stored_at"]),
            ttl=int(data["ttl"]),
        )


@dataclass
class CacheStats:
    """Hit/miss counters for a cache store"""
    hits: int = 0
    misses: int = 0
    writes: int = 0
    errors: int = 0

    @property
    def hit_rate_percent(self) -> int:
        lookups = self.hits + self.misses
        return self.hits * 100 // lookups if lookups else 0

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["hit_rate_percent"] = self.hit_rate_percent
        return data


@dataclass
class ApiResponse:
    """Response returned by the API client"""
    status: int
    payload: Any
    headers: Dict[str, str] = field(default_factory=dict)
    from_cache: bool = False


@dataclass
class TaskResult:
    """Tagged result of a single task in a batch"""
    index: int
    item: Any
    status: TaskStatus
    value: Any = None
    error: Optional[Exception] = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED


@dataclass
class WorkflowStats:
    """Aggregated runtime statistics for one workflow"""
    name: str
    count: int
    avg_duration_minutes: float
    success_rate: float
    failure_rate: float
    repository: Optional[str] = None

    def to_dict(self) -> Dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class ApiUsage:
    """Snapshot of the remote core quota"""
    used: int
    limit: int
    remaining: int
    reset_at: Optional[int] = None

    @property
    def usage_percent(self) -> int:
        return self.used * 100 // self.limit if self.limit else 0

    @property
    def level(self) -> str:
        if self.usage_percent > 80:
            return "high"
        if self.usage_percent > 60:
            return "moderate"
        return "healthy"

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["usage_percent"] = self.usage_percent
        data["level"] = self.level
        return data


@dataclass
class Finding:
    """An issue or recommendation produced by an analysis"""
    category: str
    severity: str
    message: str
    subject: Optional[str] = None

    def to_dict(self) -> Dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class BenchmarkResult:
    """Timing summary for a repeated operation"""
    name: str
    iterations: int
    successful: int
    avg_seconds: float
    min_seconds: float
    max_seconds: float

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class AnalysisReport:
    """Everything produced by one analyzer run"""
    workflows: List[WorkflowStats] = field(default_factory=list)
    api_usage: Optional[ApiUsage] = None
    findings: List[Finding] = field(default_factory=list)
    failed_repositories: Dict[str, str] = field(default_factory=dict)
    skipped_runs: int = 0
    api_metrics: Dict[str, Any] = field(default_factory=dict)
    cache_stats: Dict[str, Any] = field(default_factory=dict)
    benchmark: Optional[BenchmarkResult] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict:
        """Convert report to dictionary format."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "workflows": [w.to_dict() for w in self.workflows],
            "api_usage": self.api_usage.to_dict() if self.api_usage else None,
            "findings": [f.to_dict() for f in self.findings],
            "failed_repositories": dict(self.failed_repositories),
            "skipped_runs": self.skipped_runs,
            "api_metrics": dict(self.api_metrics),
            "cache_stats": dict(self.cache_stats),
            "benchmark": self.benchmark.to_dict() if self.benchmark else None,
        }
