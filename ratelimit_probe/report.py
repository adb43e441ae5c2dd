"""
📊 Summary reporting
====================
Turns a metrics snapshot into the end-of-run report: a rich console panel,
a JSON artifact with a ``rate_limit_analysis`` block, and an optional
Markdown file. Everything here is derived from the snapshot; nothing writes
back to the sinks, so reporting the same snapshot twice gives the same result.
"""

import json
import operator
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .endpoints import CATEGORY_BUDGETS, Category
from .errors import ConfigError


class ReportFormat(Enum):
    CONSOLE = "console"
    JSON = "json"
    MARKDOWN = "markdown"


# =============================================================================
# THRESHOLDS
# =============================================================================

_THRESHOLD_RE = re.compile(
    r"^\s*(?P<stat>avg|min|med|max|count|rate|p\((?P<pct>\d+)\))\s*"
    r"(?P<op><=|>=|<|>|==)\s*(?P<limit>-?\d+(?:\.\d+)?)\s*$"
)
_OPERATORS = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
}
_PERCENTILES = {"50": "med", "90": "p(90)", "95": "p(95)", "99": "p(99)"}


@dataclass(frozen=True)
class Threshold:
    """A pass criterion such as ``http_req_duration: p(95)<2000``."""
    metric: str
    stat: str
    op: str
    limit: float

    @property
    def expression(self) -> str:
        limit = int(self.limit) if float(self.limit).is_integer() else self.limit
        return f"{self.stat}{self.op}{limit}"

    @classmethod
    def parse(cls, metric: str, expression: str) -> "Threshold":
        match = _THRESHOLD_RE.match(expression)
        if not match:
            raise ConfigError(f"invalid threshold for {metric}: {expression!r}")
        stat = match.group("stat")
        if match.group("pct") is not None:
            pct = match.group("pct")
            if pct not in _PERCENTILES:
                raise ConfigError(
                    f"unsupported percentile p({pct}) for {metric}; "
                    f"use one of {sorted(_PERCENTILES)}"
                )
        return cls(metric, stat, match.group("op"), float(match.group("limit")))

    def evaluate(self, metric_snapshot: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        values = (metric_snapshot or {}).get("values", {})
        # p(50) is reported as "med"
        key = _PERCENTILES[self.stat[2:-1]] if self.stat.startswith("p(") else self.stat
        if _is_empty(metric_snapshot):
            return {"expression": self.expression, "actual": None, "passed": True}
        if key not in values:
            raise ConfigError(f"metric {self.metric} has no {self.stat} value")
        actual = values[key]
        return {
            "expression": self.expression,
            "actual": round(actual, 4),
            "passed": bool(_OPERATORS[self.op](actual, self.limit)),
        }


def parse_thresholds(criteria: Mapping[str, str]) -> List[Threshold]:
    return [Threshold.parse(metric, expression) for metric, expression in criteria.items()]


# Statistics each metric kind can be judged on.
_KIND_STATS = {
    "counter": {"count"},
    "rate": {"rate"},
    "trend": {"count", "avg", "min", "med", "max", "p(50)", "p(90)", "p(95)", "p(99)"},
}


def check_thresholds(thresholds: List[Threshold], sinks) -> List[Threshold]:
    """Reject thresholds on unknown metrics or on statistics the metric kind lacks."""
    known = set(sinks.names())
    for threshold in thresholds:
        if threshold.metric not in known:
            raise ConfigError(
                f"threshold on unknown metric {threshold.metric!r}; choose from {sorted(known)}"
            )
        kind = sinks[threshold.metric].kind
        if threshold.stat not in _KIND_STATS[kind]:
            raise ConfigError(
                f"{threshold.metric} is a {kind} metric and has no {threshold.stat} value; "
                f"use one of {sorted(_KIND_STATS[kind])}"
            )
    return thresholds


def _is_empty(metric_snapshot: Optional[Mapping[str, Any]]) -> bool:
    if not metric_snapshot:
        return True
    values = metric_snapshot.get("values", {})
    if metric_snapshot.get("type") == "rate":
        return values.get("passes", 0) + values.get("fails", 0) == 0
    return values.get("count", 0) == 0


# =============================================================================
# REPORTER
# =============================================================================

class SummaryReporter:
    """
    Derives every report from one metrics snapshot.

    ``snapshot`` is what ``MetricSinks.snapshot()`` returns; ``metadata``
    carries run facts the sinks do not know (duration, target, stages).
    """

    def __init__(
        self,
        snapshot: Mapping[str, Mapping[str, Any]],
        metadata: Optional[Mapping[str, Any]] = None,
        thresholds: Optional[List[Threshold]] = None,
    ):
        self.snapshot = snapshot
        self.metadata = dict(metadata or {})
        self.thresholds = list(thresholds or [])

    # -------------------------------------------------------------------------
    # Snapshot accessors
    # -------------------------------------------------------------------------

    def _values(self, name: str, **tag) -> Dict[str, Any]:
        metric = self.snapshot.get(name) or {}
        if not tag:
            return metric.get("values", {})
        (key, value), = tag.items()
        return metric.get("tags", {}).get(key, {}).get(value, {})

    def _count(self, name: str, **tag) -> int:
        return self._values(name, **tag).get("count", 0)

    def _stat(self, name: str, stat: str, **tag) -> float:
        return self._values(name, **tag).get(stat, 0)

    @property
    def duration(self) -> float:
        return float(self.metadata.get("duration_seconds", 0) or 0)

    # -------------------------------------------------------------------------
    # Derived figures
    # -------------------------------------------------------------------------

    def rate_limit_analysis(self) -> Dict[str, Any]:
        total = self._count("http_reqs")
        hits = self._count("rate_limit_hits")
        return {
            "total_requests": total,
            "rate_limit_hits": hits,
            "rate_limit_percentage": round(hits / total * 100, 1) if total else 0.0,
            "auth_requests": self._count("auth_requests"),
            "read_requests": self._count("read_requests"),
            "write_requests": self._count("write_requests"),
            "avg_response_time": round(self._stat("http_req_duration", "avg")),
            "p95_response_time": round(self._stat("http_req_duration", "p(95)")),
        }

    def threshold_results(self) -> Dict[str, Dict[str, Any]]:
        return {
            threshold.metric: threshold.evaluate(self.snapshot.get(threshold.metric))
            for threshold in self.thresholds
        }

    def passed(self) -> bool:
        return all(result["passed"] for result in self.threshold_results().values())

    def stage_breakdown(self) -> Dict[str, Dict[str, Any]]:
        stages = self.snapshot.get("http_reqs", {}).get("tags", {}).get("stage", {})
        breakdown = {}
        for stage in stages:
            requests = self._count("http_reqs", stage=stage)
            hits = self._count("rate_limit_hits", stage=stage)
            breakdown[stage] = {
                "requests": requests,
                "rate_limit_hits": hits,
                "rate_limit_percentage": round(hits / requests * 100, 1) if requests else 0.0,
                "error_rate": round(self._stat("errors", "rate", stage=stage), 4),
                "p95_response_time": round(self._stat("http_req_duration", "p(95)", stage=stage)),
                "iterations": self._count("iterations", stage=stage),
            }
        return breakdown

    def _metrics_with_rates(self) -> Dict[str, Any]:
        metrics = {}
        for name, metric in self.snapshot.items():
            values = dict(metric.get("values", {}))
            if metric.get("type") == "counter":
                values["rate"] = values.get("count", 0) / self.duration if self.duration else 0
            metrics[name] = {
                "type": metric.get("type"),
                "values": values,
                "tags": {k: dict(v) for k, v in metric.get("tags", {}).items()},
            }
        return metrics

    def summary(self) -> Dict[str, Any]:
        """The structured artifact written to JSON."""
        return {
            "summary": {
                "metadata": dict(self.metadata),
                "metrics": self._metrics_with_rates(),
                "stages": self.stage_breakdown(),
                "thresholds": self.threshold_results(),
                "passed": self.passed(),
            },
            "rate_limit_analysis": self.rate_limit_analysis(),
        }

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    def to_json(self) -> str:
        return json.dumps(self.summary(), indent=2, sort_keys=True)

    def write_json(self, output_path: str) -> Path:
        path = Path(output_path)
        path.write_text(self.to_json(), encoding="utf-8")
        return path

    def format_text(self) -> str:
        """Human report body (rich markup)."""
        a = self.rate_limit_analysis()
        error_rate = self._stat("http_req_failed", "rate") * 100

        lines = [
            "[bold]🔥 RATE LIMIT ANALYSIS SUMMARY[/bold]",
            "",
            f"[cyan]✅ Total Requests:[/cyan]      {a['total_requests']:,}",
            f"[cyan]📊 Avg Response Time:[/cyan]   {a['avg_response_time']}ms",
            f"[cyan]🎯 95th Percentile:[/cyan]     {a['p95_response_time']}ms",
            f"[red]❌ Error Rate:[/red]           {error_rate:.2f}%",
            f"[yellow]🚫 Rate Limit Hits:[/yellow]     {a['rate_limit_hits']:,} ({a['rate_limit_percentage']:.1f}%)",
            "",
            "[bold]📈 REQUEST BREAKDOWN:[/bold]",
            f"  🔐 Auth Requests:  {a['auth_requests']:,} (Limit: {CATEGORY_BUDGETS[Category.AUTH]}/min)",
            f"  👁️  Read Requests:  {a['read_requests']:,} (Limit: {CATEGORY_BUDGETS[Category.READ]}/min)",
            f"  ✏️  Write Requests: {a['write_requests']:,} (Limit: {CATEGORY_BUDGETS[Category.WRITE]}/min)",
            "",
            "[bold]💡 RATE LIMIT ANALYSIS:[/bold]",
        ]
        if a["rate_limit_hits"] > 0:
            lines += [
                "  [yellow]⚠️  Rate limiting is ACTIVE and working as expected[/yellow]",
                "  📉 Consider optimizing client-side request spacing",
                "  🔄 Implement exponential backoff in production",
            ]
            for category in Category:
                hits = self._values("rate_limit_errors", category=category.value).get("passes", 0)
                if hits:
                    lines.append(f"  🚫 {category.value}: {hits:,} rejected")
            retry_avg = self._stat("retry_after_seconds", "avg")
            if retry_avg:
                lines.append(f"  ⏳ Avg server Retry-After: {retry_avg:.1f}s")
        else:
            lines.append("  [green]✅ No rate limits hit - API handled load well[/green]")

        lines += [
            "",
            f"🔐 Avg Login Time:    {round(self._stat('login_duration', 'avg'))}ms",
            f"📝 Avg Register Time: {round(self._stat('register_duration', 'avg'))}ms",
        ]

        stages = self.stage_breakdown()
        if stages:
            lines += ["", "[bold]🧭 STAGES:[/bold]"]
            for stage, figures in stages.items():
                lines.append(
                    f"  {stage:<18} {figures['requests']:>6,} req  "
                    f"{figures['rate_limit_percentage']:>5.1f}% limited  "
                    f"p95 {figures['p95_response_time']}ms"
                )
        dropped = self._count("dropped_iterations")
        if dropped:
            lines.append(f"  [yellow]Dropped iterations: {dropped:,}[/yellow]")

        return "\n".join(lines)

    def thresholds_table(self) -> Table:
        table = Table(title="Thresholds", expand=True)
        table.add_column("Metric", style="cyan")
        table.add_column("Criterion")
        table.add_column("Actual", style="green")
        table.add_column("Result")
        for metric, result in self.threshold_results().items():
            actual = "no samples" if result["actual"] is None else f"{result['actual']:g}"
            verdict = "[green]✓ PASS[/green]" if result["passed"] else "[red]✗ FAIL[/red]"
            table.add_row(metric, result["expression"], actual, verdict)
        return table

    def render_console(self, console: Optional[Console] = None) -> None:
        console = console or Console()
        passed = self.passed()
        result = "[green]✓ PASSED[/green]" if passed else "[red]✗ FAILED[/red]"
        console.print()
        console.print(Panel(
            f"{self.format_text()}\n\n[bold]Test Result:[/bold] {result}",
            title="📊 Final Results",
            border_style="green" if passed else "red",
        ))
        if self.thresholds:
            console.print(self.thresholds_table())

    def to_markdown(self) -> str:
        a = self.rate_limit_analysis()
        meta = self.metadata
        rows = "".join(
            f"| {metric} | `{r['expression']}` | "
            f"{'no samples' if r['actual'] is None else r['actual']} | "
            f"{'✅' if r['passed'] else '❌'} |\n"
            for metric, r in self.threshold_results().items()
        )
        stage_rows = "".join(
            f"| {stage} | {f['requests']:,} | {f['rate_limit_hits']:,} | "
            f"{f['rate_limit_percentage']:.1f}% | {f['p95_response_time']} |\n"
            for stage, f in self.stage_breakdown().items()
        )
        return f"""# 📊 Rate Limit Probe Report

**Target:** `{meta.get('base_url', '-')}`
**Started:** {meta.get('started_at', '-')}
**Duration:** {self.duration:.2f}s

---

## Rate Limit Analysis

| Metric | Value |
|--------|-------|
| Total Requests | {a['total_requests']:,} |
| Rate Limit Hits | {a['rate_limit_hits']:,} ({a['rate_limit_percentage']:.1f}%) |
| Auth Requests | {a['auth_requests']:,} |
| Read Requests | {a['read_requests']:,} |
| Write Requests | {a['write_requests']:,} |
| Avg Response Time | {a['avg_response_time']} ms |
| P95 Response Time | {a['p95_response_time']} ms |

---

## Stages

| Stage | Requests | Rate Limited | % | P95 (ms) |
|-------|----------|--------------|---|----------|
{stage_rows}
---

## Thresholds

| Metric | Criterion | Actual | Result |
|--------|-----------|--------|--------|
{rows}
**Status:** {'✅ **PASSED**' if self.passed() else '❌ **FAILED**'}
"""

    def write_markdown(self, output_path: str) -> Path:
        path = Path(output_path)
        path.write_text(self.to_markdown(), encoding="utf-8")
        return path


# =============================================================================
# LIVE VIEW
# =============================================================================

def live_table(sinks, elapsed_seconds: float) -> Table:
    """Table refreshed while the run is in progress."""
    table = Table(title="📊 Live Rate Limit Probe Metrics", expand=True)
    table.add_column("Metric", style="cyan", width=22)
    table.add_column("Value", style="green", width=15)
    table.add_column("Metric", style="cyan", width=22)
    table.add_column("Value", style="green", width=15)

    requests = sinks.http_reqs.count
    rps = requests / elapsed_seconds if elapsed_seconds > 0 else 0
    duration = sinks.http_req_duration.values()

    table.add_row("Total Requests", f"{requests:,}", "Current RPS", f"{rps:,.1f}")
    table.add_row(
        "Rate Limited", f"[yellow]{sinks.rate_limit_hits.count:,}[/yellow]",
        "Error Rate", f"[red]{sinks.errors.rate * 100:.1f}%[/red]",
    )
    table.add_row(
        "Auth / Read / Write",
        f"{sinks.auth_requests.count:,} / {sinks.read_requests.count:,} / {sinks.write_requests.count:,}",
        "Iterations", f"{sinks.iterations.count:,}",
    )
    table.add_row(
        "Avg Latency", f"{duration['avg']:.0f}ms",
        "P95 Latency", f"{duration['p(95)']:.0f}ms",
    )
    table.add_row(
        "Dropped Iterations", f"{sinks.dropped_iterations.count:,}",
        "Elapsed", f"{elapsed_seconds:.1f}s",
    )
    return table
