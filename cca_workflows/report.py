#!/usr/bin/env python3
"""
Report rendering for analyzer results.

There is exactly one renderer per OutputFormat member.
"""

import json
from typing import Any, Callable, Dict, List

from .models import AnalysisReport, OutputFormat


def render_console(report: AnalysisReport) -> str:
    lines: List[str] = [f"Workflow analysis ({report.timestamp.strftime('%Y-%m-%d %H:%M:%S')})", ""]

    if report.workflows:
        lines.append("Workflow performance:")
        for w in report.workflows:
            name = f"{w.repository}:{w.name}" if w.repository else w.name
            lines.append(
                f"  {name}: {w.avg_duration_minutes:g}min avg, "
                f"{w.success_rate:g}% success rate ({w.count} runs)"
            )
    else:
        lines.append("No workflow run data available")
    if report.skipped_runs:
        lines.append(f"  ({report.skipped_runs} run(s) skipped for missing fields)")

    if report.failed_repositories:
        lines.append("")
        lines.append("Failed repositories:")
        for repo, error in report.failed_repositories.items():
            lines.append(f"  {repo}: {error}")

    if report.api_usage:
        usage = report.api_usage
        lines.append("")
        lines.append(
            f"API usage: {usage.used}/{usage.limit} ({usage.usage_percent}%, {usage.level}), "
            f"{usage.remaining} remaining"
        )

    if report.findings:
        lines.append("")
        lines.append("Findings:")
        for f in report.findings:
            subject = f" [{f.subject}]" if f.subject else ""
            lines.append(f"  {f.severity.upper()} {f.category}{subject}: {f.message}")

    if report.benchmark:
        b = report.benchmark
        lines.append("")
        lines.append(
            f"Benchmark {b.name}: avg {b.avg_seconds:.3f}s, best {b.min_seconds:.3f}s, "
            f"worst {b.max_seconds:.3f}s ({b.successful}/{b.iterations} successful)"
        )

    if report.api_metrics:
        m = report.api_metrics
        lines.append("")
        lines.append(
            f"API calls: {m.get('api_calls_total', 0)} total, {m.get('cache_hits', 0)} from cache "
            f"({m.get('cache_hit_rate_percent', 0)}%), {m.get('retries', 0)} retries, "
            f"{m.get('rate_limit_warnings', 0)} rate limit warnings"
        )
    return "\n".join(lines)


def render_json(report: AnalysisReport) -> str:
    return json.dumps(report.to_dict(), indent=2)


def render_markdown(report: AnalysisReport) -> str:
    lines: List[str] = ["# Workflow Analysis Report", "",
                        f"_Generated {report.timestamp.isoformat(timespec='seconds')}_", ""]

    lines.append("## Workflow Performance")
    lines.append("")
    if report.workflows:
        lines.append("| Repository | Workflow | Runs | Avg (min) | Success % | Failure % |")
        lines.append("| --- | --- | ---: | ---: | ---: | ---: |")
        for w in report.workflows:
            lines.append(
                f"| {w.repository or '-'} | {w.name} | {w.count} | {w.avg_duration_minutes:g} "
                f"| {w.success_rate:g} | {w.failure_rate:g} |"
            )
    else:
        lines.append("No workflow run data available.")

    if report.failed_repositories:
        lines.extend(["", "## Failed Repositories", ""])
        lines.extend(f"- `{repo}`: {error}" for repo, error in report.failed_repositories.items())

    if report.api_usage:
        usage = report.api_usage
        lines.extend(["", "## API Usage", "",
                      f"- Used: {usage.used}/{usage.limit} ({usage.usage_percent}%)",
                      f"- Remaining: {usage.remaining}",
                      f"- Level: **{usage.level}**"])

    if report.findings:
        lines.extend(["", "## Findings", ""])
        for f in report.findings:
            subject = f" `{f.subject}`" if f.subject else ""
            lines.append(f"- **{f.severity}** {f.category}{subject}: {f.message}")

    if report.benchmark:
        b = report.benchmark
        lines.extend(["", "## Benchmark", "",
                      f"- {b.name}: avg {b.avg_seconds:.3f}s, min {b.min_seconds:.3f}s, "
                      f"max {b.max_seconds:.3f}s ({b.successful}/{b.iterations} successful)"])

    if report.api_metrics:
        lines.extend(["", "## API Client Metrics", ""])
        lines.extend(f"- {name}: {value}" for name, value in report.api_metrics.items())
    return "\n".join(lines) + "\n"


RENDERERS: Dict[OutputFormat, Callable[[AnalysisReport], str]] = {
    OutputFormat.CONSOLE: render_console,
    OutputFormat.JSON: render_json,
    OutputFormat.MARKDOWN: render_markdown,
}


def render_report(report: AnalysisReport, output_format: OutputFormat) -> str:
    return RENDERERS[output_format](report)


def _data_console(data: Dict[str, Any], title: str) -> str:
    return "\n".join([f"{title}:"] + [f"  {key}: {value}" for key, value in data.items()])


def _data_json(data: Dict[str, Any], title: str) -> str:
    return json.dumps(data, indent=2)


def _data_markdown(data: Dict[str, Any], title: str) -> str:
    return "\n".join([f"## {title}", ""] + [f"- {key}: {value}" for key, value in data.items()])


DATA_RENDERERS: Dict[OutputFormat, Callable[[Dict[str, Any], str], str]] = {
    OutputFormat.CONSOLE: _data_console,
    OutputFormat.JSON: _data_json,
    OutputFormat.MARKDOWN: _data_markdown,
}


def render_data(data: Dict[str, Any], output_format: OutputFormat, title: str) -> str:
    """Render a flat key/value result such as rate limit or cache statistics"""
    return DATA_RENDERERS[output_format](data, title)
