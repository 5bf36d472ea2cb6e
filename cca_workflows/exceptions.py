#!/usr/bin/env python3
"""
Exception hierarchy for the Claude Code Auto Workflows toolkit.

Every error message passes through redact() so that credentials never end up
in logs or printed diagnostics.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from .models import ApiErrorKind


REDACTED = "[REDACTED]"

_SENSITIVE_PATTERNS = [
    re.compile(r'gh[pousr]_[A-Za-z0-9]{36,}'),
    re.compile(r'github_pat_[A-Za-z0-9_]{22,}'),
    re.compile(r'(?i)(authorization["\s]*[:=]\s*)(bearer|token)\s+[^\s"\']+'),
    re.compile(r'(?i)\b(bearer\s+)[A-Za-z0-9._\-]{8,}'),
    re.compile(r'(?i)((?:password|token|secret|api[_-]?key)["\s]*[:=]\s*)[^\s"\',}]+'),
]

# Exact secret values registered at runtime (e.g. the configured token)
_registered_secrets: List[str] = []


def register_secret(value: Optional[str]):
    """Redact this exact value wherever it appears from now on"""
    if value and len(value) >= 4 and value not in _registered_secrets:
        _registered_secrets.append(value)


def redact(text: Any) -> str:
    """Return text with known credential shapes replaced by [REDACTED]"""
    result = str(text)
    for secret in _registered_secrets:
        result = result.replace(secret, REDACTED)
    for pattern in _SENSITIVE_PATTERNS:
        if pattern.groups:
            result = pattern.sub(lambda m: m.group(1) + REDACTED, result)
        else:
            result = pattern.sub(REDACTED, result)
    return result


class RedactingFilter(logging.Filter):
    """Logging filter that scrubs credentials from every record"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        record.msg = redact(message)
        record.args = None
        return True


class WorkflowToolkitError(Exception):
    """Base exception for all toolkit errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = redact(message)
        self.details = {
            key: (REDACTED if key.lower() in ("token", "password", "secret", "authorization")
                  else redact(value) if isinstance(value, str) else value)
            for key, value in (details or {}).items()
        }
        super().__init__(self.message)

    def __str__(self) -> str:
        if not self.details:
            return self.message
        details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
        return f"{self.message} ({details_str})"


@dataclass(frozen=True)
class ConfigViolation:
    """One invalid configuration value"""
    field: str
    reason: str

    def __str__(self) -> str:
        return f"{self.field}: {self.reason}"


class ConfigError(WorkflowToolkitError):
    """Raised when the merged configuration violates one or more invariants."""

    def __init__(self, violations: Iterable[ConfigViolation]):
        self.violations = list(violations)
        summary = "; ".join(str(v) for v in self.violations)
        super().__init__(f"Invalid configuration: {summary}")

    @property
    def fields(self) -> List[str]:
        return [v.field for v in self.violations]

    @property
    def field(self) -> Optional[str]:
        return self.violations[0].field if self.violations else None

    @property
    def reason(self) -> Optional[str]:
        return self.violations[0].reason if self.violations else None


class CacheError(WorkflowToolkitError):
    """Raised by cache I/O helpers; always handled inside the cache store."""


class RateLimitError(WorkflowToolkitError):
    """Raised when the remote quota is exhausted."""

    def __init__(
        self,
        detail: str,
        endpoint: Optional[str] = None,
        retry_after: Optional[float] = None,
        attempts: int = 0,
        retryable: bool = True
    ):
        self.detail = redact(detail)
        self.endpoint = endpoint
        self.retry_after = retry_after
        self.attempts = attempts
        self.retryable = retryable
        details = {}
        if endpoint:
            details["endpoint"] = endpoint
        if retry_after is not None:
            details["retry_after"] = f"{retry_after:.0f}s"
        super().__init__(f"Rate limit exceeded: {detail}", details)

    def __str__(self) -> str:
        text = super().__str__()
        if self.attempts:
            text += f" after {self.attempts} attempt(s)"
        return text


class ApiError(WorkflowToolkitError):
    """Raised when a remote call fails for reasons other than rate limiting."""

    def __init__(
        self,
        kind: ApiErrorKind,
        detail: str,
        endpoint: Optional[str] = None,
        status: Optional[int] = None,
        attempts: int = 0
    ):
        self.kind = kind
        self.detail = redact(detail)
        self.endpoint = endpoint
        self.status = status
        self.attempts = attempts
        details = {}
        if endpoint:
            details["endpoint"] = endpoint
        if status is not None:
            details["status"] = status
        super().__init__(f"GitHub API {kind.value} error: {detail}", details)

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __str__(self) -> str:
        text = super().__str__()
        if self.attempts:
            text += f" after {self.attempts} attempt(s)"
        return text


class TaskError(WorkflowToolkitError):
    """Failure of one task in a batch."""

    def __init__(self, index: int, reason: str, cause: Optional[BaseException] = None):
        self.index = index
        self.reason = redact(reason)
        self.cause = cause
        super().__init__(f"Task {index} failed: {reason}")
