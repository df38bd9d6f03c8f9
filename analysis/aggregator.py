"""
Overall email-authentication posture: runs DMARC, SPF, DKIM and MX analyses concurrently,
isolates failures per protocol, and merges scores, warnings and recommendations.
"""
import logging
from typing import Any, Optional

from analysis.scoring import round1, score_level
from core import constants
from core.utils import DnsResolver, gather_settled, get_default_resolver
from dns_checks import dkim, dmarc, mx, spf

logger = logging.getLogger("mailposture.analysis")

# Fixed protocol order for merging and reporting
PROTOCOLS = ("dmarc", "spf", "dkim", "mx")

PRIORITY_DMARC_MISSING = "CRITICAL: Set up DMARC policy to prevent email spoofing"
PRIORITY_DMARC_NONE = 'IMPORTANT: Upgrade DMARC policy from "none" to "quarantine" or "reject"'
PRIORITY_SPF_MISSING = "CRITICAL: Configure SPF record to authorize mail servers"
PRIORITY_DKIM_MISSING = "IMPORTANT: Enable DKIM signing for email authentication"
PRIORITY_MX_MISSING = "CRITICAL: Configure MX records for email delivery"


def _failed_report(domain: str, error: BaseException) -> dict[str, Any]:
    return {
        "success": False,
        "domain": domain,
        "error": str(error) or error.__class__.__name__,
        "warnings": [],
        "recommendations": [],
    }


def overall_score(reports: list[dict[str, Any]]) -> dict[str, Any]:
    """(sum of achieved / sum of applicable outOf) x 10 over successful, scored reports; 0 if none."""
    total = 0.0
    maximum = 0.0
    for r in reports:
        score = r.get("score")
        if r.get("success") and score:
            total += score["value"]
            maximum += score["outOf"]
    value = (total / maximum) * constants.OVERALL_OUT_OF if maximum > 0 else 0.0
    value = round1(value)
    return {
        "value": value,
        "outOf": constants.OVERALL_OUT_OF,
        "level": score_level(value, constants.OVERALL_OUT_OF),
    }


def priority_recommendations(results: dict[str, dict[str, Any]]) -> list[str]:
    """At most one fixed priority item per protocol, independent of the numeric score."""
    items = []
    dmarc_result = results["dmarc"]
    if not dmarc_result.get("success"):
        items.append(PRIORITY_DMARC_MISSING)
    elif (dmarc_result.get("parsed") or {}).get("p") == "none":
        items.append(PRIORITY_DMARC_NONE)
    if not results["spf"].get("success"):
        items.append(PRIORITY_SPF_MISSING)
    if not results["dkim"].get("success"):
        items.append(PRIORITY_DKIM_MISSING)
    if not results["mx"].get("success"):
        items.append(PRIORITY_MX_MISSING)
    return items


def build_aggregate(domain: str, results: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """Assemble the AggregateReport from the four protocol reports."""
    ordered = [results[p] for p in PROTOCOLS]
    warnings: list[str] = []
    recommendations: list[str] = []
    for r in ordered:
        warnings.extend(r.get("warnings") or [])
        recommendations.extend(r.get("recommendations") or [])
    return {
        "domain": domain,
        **results,
        "overallScore": overall_score(ordered),
        "summary": {
            "totalChecks": len(PROTOCOLS),
            "passedChecks": sum(1 for r in ordered if r.get("success")),
            "warnings": warnings,
            "recommendations": recommendations,
            "priorityRecommendations": priority_recommendations(results),
        },
    }


async def analyze_all(
    domain: str,
    dkim_selector: str = constants.DEFAULT_DKIM_SELECTOR,
    resolver: Optional[DnsResolver] = None,
) -> dict[str, Any]:
    """Run all four analyses concurrently; a failing analysis is replaced by a failure placeholder."""
    resolver = resolver or get_default_resolver()
    settled = await gather_settled(
        dmarc.analyze_dmarc(domain, resolver=resolver),
        spf.analyze_spf(domain, resolver=resolver),
        dkim.analyze_dkim(domain, dkim_selector, resolver=resolver),
        mx.analyze_mx(domain, resolver=resolver),
    )
    results: dict[str, dict[str, Any]] = {}
    for name, outcome in zip(PROTOCOLS, settled):
        if outcome.ok:
            results[name] = outcome.value
        else:
            logger.warning("%s analysis for %s raised: %s", name.upper(), domain, outcome.error)
            results[name] = _failed_report(domain, outcome.error)
    report = build_aggregate(domain, results)
    logger.debug(
        "Aggregate %s: %s/10 (%s), passed %d/4",
        domain,
        report["overallScore"]["value"],
        report["overallScore"]["level"],
        report["summary"]["passedChecks"],
    )
    return report
