#!/usr/bin/env python3
"""
Workflow performance analyzer for the Claude Code Auto Workflows toolkit.

This module ties the API client, the task runner and the cache together:
recent workflow runs are fetched for each repository in parallel, grouped
by workflow and summarized, and optional checks scan the local workflow
files for efficiency and security problems.
"""

import asyncio
import logging
import re
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import aiohttp

from .benchmark import benchmark_cache
from .exceptions import ApiError, RateLimitError
from .github_client import GitHubClient
from .models import AnalysisReport, ApiUsage, Finding, WorkflowStats
from .task_runner import TaskRunner


SLOW_WORKFLOW_MINUTES = 15
MIN_SUCCESS_RATE = 90
REQUIRED_RUN_FIELDS = ("name", "created_at", "updated_at")
WORKFLOW_PATTERNS = ("*.yml", "*.yaml")

HARDCODED_SECRET_PATTERNS = [
    re.compile(r'''password\s*[:=]\s*['"][^'"]{8,}['"]''', re.IGNORECASE),
    re.compile(r'''api_key\s*[:=]\s*['"][^'"]{20,}['"]''', re.IGNORECASE),
    re.compile(r'''secret\s*[:=]\s*['"][^'"]{16,}['"]''', re.IGNORECASE),
    re.compile(r'''token\s*[:=]\s*['"][^'"]{20,}['"]''', re.IGNORECASE),
    re.compile(r'ghp_[A-Za-z0-9]{36}'),
    re.compile(r'github_pat_[A-Za-z0-9_]{82}'),
    re.compile(r'sk-[A-Za-z0-9]{48}'),
]
_SECRET_REF_RE = re.compile(r'\$\{\{[^}]*secrets\.([A-Za-z0-9_]+)[^}]*\}\}')


def _parse_time(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def run_duration_minutes(run: Dict) -> float:
    """Wall time of a run in minutes; 0 if the timestamps are unusable"""
    start = _parse_time(run.get("run_started_at")) or _parse_time(run.get("created_at"))
    end = _parse_time(run.get("updated_at"))
    if start is None or end is None or end < start:
        return 0.0
    return (end - start).total_seconds() / 60


def validate_runs(runs: Iterable[Dict]) -> Tuple[List[Dict], int]:
    """Drop runs missing required fields; returns (valid runs, skipped count)"""
    valid, skipped = [], 0
    for run in runs:
        if isinstance(run, dict) and all(run.get(name) for name in REQUIRED_RUN_FIELDS):
            valid.append(run)
        else:
            skipped += 1
    if skipped:
        logging.warning(f"Skipped {skipped} workflow run(s) with missing fields")
    return valid, skipped


def summarize_runs(runs: Iterable[Dict]) -> List[WorkflowStats]:
    """Group runs by repository and workflow name, slowest first"""
    groups: "OrderedDict[Tuple[Optional[str], str], List[Dict]]" = OrderedDict()
    for run in runs:
        key = (run.get("repository_name"), run.get("name") or "unknown")
        groups.setdefault(key, []).append(run)

    stats = []
    for (repository, name), group in groups.items():
        count = len(group)
        durations = [run_duration_minutes(run) for run in group]
        successes = sum(1 for run in group if run.get("conclusion") == "success")
        failures = sum(1 for run in group if run.get("conclusion") == "failure")
        stats.append(WorkflowStats(
            name=name,
            count=count,
            avg_duration_minutes=round(sum(durations) / count, 1),
            success_rate=round(successes * 100 / count, 1),
            failure_rate=round(failures * 100 / count, 1),
            repository=repository,
        ))

    stats.sort(key=lambda s: s.avg_duration_minutes, reverse=True)
    return stats


def performance_findings(stats: Iterable[WorkflowStats]) -> List[Finding]:
    findings = []
    for workflow in stats:
        subject = f"{workflow.repository}:{workflow.name}" if workflow.repository else workflow.name
        if workflow.avg_duration_minutes > SLOW_WORKFLOW_MINUTES:
            findings.append(Finding(
                "slow", "warning",
                f"averages {workflow.avg_duration_minutes:g} min per run "
                f"(threshold {SLOW_WORKFLOW_MINUTES} min)",
                subject,
            ))
        if workflow.success_rate < MIN_SUCCESS_RATE:
            findings.append(Finding(
                "unreliable", "warning",
                f"success rate {workflow.success_rate:g}% is below {MIN_SUCCESS_RATE}%",
                subject,
            ))
    return findings


def analyze_api_usage(usage: ApiUsage) -> List[Finding]:
    message = f"{usage.used}/{usage.limit} core requests used ({usage.usage_percent}%)"
    if usage.level == "high":
        return [Finding("api_usage", "warning", f"High API usage: {message}")]
    if usage.level == "moderate":
        return [Finding("api_usage", "info", f"Moderate API usage: {message}")]
    return []


def _workflow_files(workflows_dir: Path) -> List[Path]:
    files = []
    for pattern in WORKFLOW_PATTERNS:
        files.extend(workflows_dir.glob(pattern))
    return sorted(files)


def _read_workflows(workflows_dir: Path) -> List[Tuple[Path, str]]:
    if not workflows_dir.is_dir():
        logging.warning(f"Workflow directory {workflows_dir} not found, skipping file checks")
        return []
    contents = []
    for path in _workflow_files(workflows_dir):
        try:
            contents.append((path, path.read_text(errors="replace")))
        except OSError as e:
            logging.warning(f"Could not read {path}: {e}")
    return contents


def analyze_workflow_efficiency(workflows_dir: Path) -> List[Finding]:
    """Count workflows using caching, conditionals and matrix builds"""
    workflows = _read_workflows(Path(workflows_dir))
    if not workflows:
        return []

    total = len(workflows)
    caching = sum(1 for _, text in workflows if "cache:" in text or "actions/cache" in text)
    conditional = sum(1 for _, text in workflows if "if:" in text)
    matrix = sum(1 for _, text in workflows if "strategy:" in text and "matrix:" in text)

    findings = [Finding(
        "efficiency", "info",
        f"{caching}/{total} workflows use caching, {conditional}/{total} use conditionals, "
        f"{matrix}/{total} use matrix builds",
    )]
    if caching * 2 < total:
        findings.append(Finding(
            "efficiency", "warning",
            "fewer than half of the workflows cache dependencies; consider actions/cache",
        ))
    return findings


def check_workflow_security(workflows_dir: Path) -> List[Finding]:
    """Look for hardcoded secrets, broad permissions and custom secrets"""
    findings = []
    for path, text in _read_workflows(Path(workflows_dir)):
        for pattern in HARDCODED_SECRET_PATTERNS:
            if pattern.search(text):
                findings.append(Finding(
                    "security", "error",
                    f"possible hardcoded secret matching {pattern.pattern[:24]}...",
                    path.name,
                ))

        if "permissions:" not in text:
            findings.append(Finding(
                "security", "warning", "no explicit permissions block", path.name
            ))
        elif re.search(r'permissions:\s*write-all', text):
            findings.append(Finding(
                "security", "warning", "uses write-all permissions; grant the minimum needed", path.name
            ))

        custom = sorted({name for name in _SECRET_REF_RE.findall(text) if name != "GITHUB_TOKEN"})
        if custom:
            findings.append(Finding(
                "security", "info", f"uses custom secrets: {', '.join(custom)}", path.name
            ))
    return findings


class WorkflowAnalyzer:
    """Collects run statistics and checks for one or more repositories"""

    def __init__(
        self,
        config,
        client: Optional[GitHubClient] = None,
        runner: Optional[TaskRunner] = None
    ):
        self.config = config
        self.client = client or GitHubClient(config)
        self.runner = runner or TaskRunner.from_config(config)

    async def fetch_runs(
        self,
        session: aiohttp.ClientSession,
        repositories: List[str],
        cancel_event: Optional[asyncio.Event] = None
    ) -> Tuple[List[Dict], Dict[str, str]]:
        """Fetch recent runs of every repository in parallel.

        Returns (all runs, {repository: error}) for repositories that failed.
        """
        limit = self.config.workflow_analysis_limit

        async def fetch(repo: str) -> List[Dict]:
            return await self.client.list_workflow_runs(session, repo, limit)

        results = await self.runner.run_all(repositories, fetch, cancel_event=cancel_event)

        runs: List[Dict] = []
        failed: Dict[str, str] = {}
        for result in results:
            if result.ok:
                runs.extend(result.value)
            else:
                failed[result.item] = result.error.reason if result.error else result.status.value
                logging.error(f"Could not fetch workflow runs for {result.item}: {failed[result.item]}")
        return runs, failed

    async def analyze(
        self,
        session: aiohttp.ClientSession,
        repositories: Optional[List[str]] = None,
        workflows_dir: Optional[Path] = None,
        efficiency: bool = False,
        security: bool = False,
        benchmark: bool = False,
        cancel_event: Optional[asyncio.Event] = None
    ) -> AnalysisReport:
        """Run the full analysis and return a report"""
        await self.client.cache.maybe_sweep()
        report = AnalysisReport()

        repositories = list(repositories or [])
        if not repositories and self.config.github_repository:
            repositories = [self.config.github_repository]

        if repositories:
            logging.info(f"Analyzing workflow runs for {len(repositories)} repositor"
                         f"{'y' if len(repositories) == 1 else 'ies'}")
            runs, report.failed_repositories = await self.fetch_runs(session, repositories, cancel_event)
            if self.config.enable_schema_validation:
                runs, report.skipped_runs = validate_runs(runs)
            report.workflows = summarize_runs(runs)
            if self.config.enable_performance_checks:
                report.findings.extend(performance_findings(report.workflows))
        else:
            logging.warning("No repository given; skipping workflow run analysis")

        try:
            report.api_usage = await self.client.get_api_usage(session)
        except (ApiError, RateLimitError) as e:
            logging.warning(f"Could not read API rate limit: {e}")
        if report.api_usage:
            report.findings.extend(analyze_api_usage(report.api_usage))

        if workflows_dir is not None:
            if efficiency and self.config.enable_performance_checks:
                report.findings.extend(analyze_workflow_efficiency(workflows_dir))
            if security and self.config.enable_security_checks:
                report.findings.extend(check_workflow_security(workflows_dir))

        if benchmark or self.config.enable_benchmark:
            report.benchmark = await benchmark_cache(self.config.benchmark_iterations)

        report.api_metrics = self.client.get_metrics()
        report.cache_stats = self.client.cache.get_stats()
        return report
