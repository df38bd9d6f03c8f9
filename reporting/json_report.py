"""
JSON report generation. The analysis report plus run metadata for CI/automation.
"""
import json
import os
from datetime import datetime, timezone
from typing import Any

from core.context import AnalysisContext


def report_path(ctx: AnalysisContext, extension: str, now: datetime) -> str:
    """Output path under ctx.output_dir (or reports/), named by domain and UTC timestamp."""
    timestamp = now.strftime("%Y%m%d_%H%M%S")
    if ctx.output_dir:
        out_dir = os.path.abspath(ctx.output_dir)
    else:
        base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        out_dir = os.path.join(base_dir, "reports")
    os.makedirs(out_dir, exist_ok=True)
    safe_domain = "".join(c if c.isalnum() or c in ".-" else "_" for c in ctx.target_domain)
    return os.path.join(out_dir, f"mailposture_report_{safe_domain}_{timestamp}.{extension}")


def build_payload(ctx: AnalysisContext, now: datetime) -> dict[str, Any]:
    return {
        "target_domain": ctx.target_domain,
        "scan_date": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "tool": "MailPosture",
        "check": ctx.check,
        "dkim_selector": ctx.dkim_selector,
        "step_errors_count": len(ctx.step_errors),
        "step_errors": ctx.step_errors,
        "report": ctx.report,
    }


def generate(ctx: AnalysisContext) -> str:
    """Generate JSON report; return path to saved file. Uses ctx.output_dir if set. Filename includes UTC timestamp."""
    now = datetime.now(timezone.utc)
    out_path = report_path(ctx, "json", now)
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(build_payload(ctx, now), f, indent=2, ensure_ascii=False)
    return out_path
