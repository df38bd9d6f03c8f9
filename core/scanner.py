"""
Analysis orchestration: configures the resolver, runs the aggregate or a single protocol
analysis on one event loop, then writes reports.
Steps run in try/except; failures are recorded and the run continues.
"""
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable

from core import constants
from core.context import AnalysisContext
from core.utils import DnsResolver, configure_default_resolver

logger = logging.getLogger("mailposture")


def _single_check(ctx: AnalysisContext, resolver: DnsResolver) -> Awaitable[dict[str, Any]]:
    from dns_checks import dkim, dmarc, mx, spf

    runners: dict[str, Callable[[], Awaitable[dict[str, Any]]]] = {
        "spf": lambda: spf.analyze_spf(ctx.target_domain, resolver=resolver),
        "dkim": lambda: dkim.analyze_dkim(ctx.target_domain, ctx.dkim_selector, resolver=resolver),
        "dmarc": lambda: dmarc.analyze_dmarc(ctx.target_domain, resolver=resolver),
        "mx": lambda: mx.analyze_mx(ctx.target_domain, resolver=resolver),
    }
    if ctx.check not in runners:
        raise ValueError(f"Unknown check {ctx.check!r}")
    return runners[ctx.check]()


async def _analyze(ctx: AnalysisContext, resolver: DnsResolver) -> dict[str, Any]:
    from analysis.aggregator import analyze_all

    if ctx.is_aggregate:
        work = analyze_all(ctx.target_domain, ctx.dkim_selector, resolver=resolver)
    else:
        work = _single_check(ctx, resolver)
    timeout_sec = ctx.scan_timeout_seconds
    if timeout_sec and float(timeout_sec) > 0:
        return await asyncio.wait_for(work, timeout=float(timeout_sec))
    return await work


def run_checks(ctx: AnalysisContext) -> None:
    """Run the requested analysis and store the report in ctx.report."""
    resolver = configure_default_resolver(nameservers=ctx.nameservers, timeout=ctx.dns_timeout)
    step = "Analysis: " + ("all protocols" if ctx.is_aggregate else ctx.check.upper())
    try:
        ctx.report = asyncio.run(_analyze(ctx, resolver))
    except asyncio.TimeoutError:
        ctx.add_step_error(step, f"Analysis timed out after {ctx.scan_timeout_seconds}s")
        logger.warning("Analysis timed out after %s seconds", ctx.scan_timeout_seconds)
    except Exception as e:
        logger.exception("Step %s failed: %s", step, e)
        ctx.add_step_error(step, str(e))


def run_reporting(ctx: AnalysisContext) -> None:
    """Generate report(s) from ctx.report (JSON, Markdown per ctx.output_format)."""
    from reporting.json_report import generate as generate_json
    from reporting.markdown_report import generate as generate_markdown

    if not ctx.report:
        return
    fmt = (ctx.output_format or "json").lower()
    generators = []
    if fmt in ("json", "all"):
        generators.append(("Reporting: Generate JSON report", generate_json))
    if fmt in ("markdown", "all"):
        generators.append(("Reporting: Generate Markdown report", generate_markdown))
    for name, generate in generators:
        try:
            path = generate(ctx)
            ctx.report_paths.append(path)
            logger.debug("%s: %s", name, path)
        except Exception as e:
            logger.exception("%s failed: %s", name, e)
            ctx.add_step_error(name, str(e))


def _log_summary(ctx: AnalysisContext) -> None:
    report = ctx.report
    if not report:
        return
    if ctx.is_aggregate:
        overall = report["overallScore"]
        summary = report["summary"]
        logger.info(
            "Overall score: %s/%s (%s) | Passed checks: %d/%d",
            overall["value"],
            overall["outOf"],
            overall["level"],
            summary["passedChecks"],
            summary["totalChecks"],
        )
        for item in summary["priorityRecommendations"]:
            logger.info("  %s", item)
        return
    if report.get("success"):
        score = report.get("score")
        if score:
            logger.info("%s score: %s/%s (%s)", ctx.check.upper(), score["value"], score["outOf"], score["level"])
        else:
            logger.info("%s: record found", ctx.check.upper())
    else:
        logger.info("%s: %s", ctx.check.upper(), report.get("error", "failed"))


def main_scan(ctx: AnalysisContext) -> None:
    """Entry point for an analysis run; handles logging, log file, timeout, and errors."""
    log_format = "%(name)s %(levelname)s %(message)s" if ctx.verbose else "%(message)s"
    if ctx.verbose:
        log_level = logging.DEBUG
    elif ctx.quiet:
        log_level = logging.WARNING
    else:
        log_level = logging.INFO
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if ctx.log_file:
        try:
            fh = logging.FileHandler(ctx.log_file, encoding="utf-8")
            fh.setFormatter(logging.Formatter(log_format))
            handlers.append(fh)
        except OSError as e:
            logger.warning("Could not open log file %s: %s", ctx.log_file, e)
    logging.basicConfig(level=log_level, format=log_format, handlers=handlers, force=True)

    logger.info("MailPosture | Target: %s | Check: %s", ctx.target_domain, ctx.check)
    if ctx.check in ("all", "dkim"):
        logger.debug("DKIM selector: %s", ctx.dkim_selector or constants.DEFAULT_DKIM_SELECTOR)

    run_checks(ctx)
    run_reporting(ctx)

    if ctx.print_json and ctx.report:
        print(json.dumps(ctx.report, indent=2, ensure_ascii=False))

    _log_summary(ctx)
    for path in ctx.report_paths:
        logger.info("Report written: %s", path)
    if ctx.step_errors:
        logger.warning("Step errors: %d", len(ctx.step_errors))
        for err in ctx.step_errors:
            logger.warning("  %s: %s", err.get("step"), err.get("error", ""))
