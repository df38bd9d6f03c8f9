"""
Markdown report generation. Human-readable score table, per-protocol details and recommendations.
"""
from datetime import datetime, timezone
from typing import Any

from core.context import AnalysisContext
from reporting.json_report import report_path

PROTOCOL_TITLES = {
    "dmarc": "DMARC",
    "spf": "SPF",
    "dkim": "DKIM",
    "mx": "MX",
}


def _escape_md(s: Any) -> str:
    if not isinstance(s, str):
        s = str(s)
    return s.replace("|", "\\|").replace("\n", " ")


def _score_cell(report: dict[str, Any]) -> str:
    score = report.get("score")
    if not report.get("success"):
        return "Failed"
    if not score:
        return "n/a"
    return f"{score['value']}/{score['outOf']} ({score['level']})"


def _bullets(title: str, items: list[str]) -> list[str]:
    if not items:
        return []
    lines = [f"**{title}:**", ""]
    lines.extend(f"- {_escape_md(i)}" for i in items)
    lines.append("")
    return lines


def render_protocol(name: str, report: dict[str, Any]) -> list[str]:
    """Section for one ProtocolReport."""
    lines = [f"## {PROTOCOL_TITLES.get(name, name.upper())}", ""]
    if not report.get("success"):
        lines.append(f"**Status:** Failed: {_escape_md(report.get('error', 'unknown error'))}")
        lines.append("")
        if report.get("rawRecord"):
            lines.extend([f"**Record(s):** `{_escape_md(report['rawRecord'])}`", ""])
        lines.extend(_bullets("Recommendations", report.get("recommendations") or []))
        return lines
    lines.append(f"**Score:** {_score_cell(report)}")
    lines.append("")
    if report.get("rawRecord"):
        lines.extend([f"**Record:** `{_escape_md(report['rawRecord'])}`", ""])
    if name == "mx" and report.get("records"):
        lines.append("| Priority | Exchange |")
        lines.append("|----------|----------|")
        for r in report["records"]:
            lines.append(f"| {r['priority']} | {_escape_md(r['exchange'] or '.')} |")
        lines.append("")
    score = report.get("score") or {}
    lines.extend(_bullets("Score details", score.get("details") or []))
    lines.extend(_bullets("Warnings", report.get("warnings") or []))
    lines.extend(_bullets("Recommendations", report.get("recommendations") or []))
    return lines


def render(ctx: AnalysisContext, scan_date: str) -> str:
    report = ctx.report
    lines = [
        "# MailPosture Email Authentication Report",
        "",
        f"**Target:** `{_escape_md(ctx.target_domain)}`  |  **Scan date:** {scan_date}  |  **Check:** {ctx.check}",
        "",
    ]
    if ctx.is_aggregate:
        overall = report["overallScore"]
        summary = report["summary"]
        lines.extend([
            "## Summary",
            "",
            f"**Overall score:** {overall['value']}/{overall['outOf']} ({overall['level']})  |  "
            f"**Passed checks:** {summary['passedChecks']}/{summary['totalChecks']}",
            "",
            "| Protocol | Score |",
            "|----------|-------|",
        ])
        for name, title in PROTOCOL_TITLES.items():
            lines.append(f"| {title} | {_score_cell(report[name])} |")
        lines.append("")
        lines.extend(_bullets("Priority recommendations", summary["priorityRecommendations"]))
        for name in PROTOCOL_TITLES:
            lines.extend(render_protocol(name, report[name]))
    else:
        lines.extend(render_protocol(ctx.check, report))
    if ctx.step_errors:
        lines.extend(["## Step errors", ""])
        for err in ctx.step_errors:
            lines.append(f"- {_escape_md(err.get('step'))}: {_escape_md(err.get('error', ''))}")
        lines.append("")
    return "\n".join(lines)


def generate(ctx: AnalysisContext) -> str:
    """Generate Markdown report; return path to saved file. Uses ctx.output_dir if set. Filename includes UTC timestamp."""
    now = datetime.now(timezone.utc)
    out_path = report_path(ctx, "md", now)
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(render(ctx, now.strftime("%Y-%m-%d %H:%M UTC")))
    return out_path
