"""
MX analysis: records sorted by priority, redundancy, priority sanity, known providers, null MX (RFC 7505).
"""
import logging
from typing import Any, Optional

from analysis.scoring import build_score, points_label
from core import constants
from core.utils import DnsResolver, get_default_resolver

logger = logging.getLogger("mailposture.dns")

# Absolute level thresholds on the 0-3 scale
MX_THRESHOLDS = (
    (2.5, "Excellent"),
    (2.0, "Good"),
    (1.0, "Fair"),
)
NULL_MX_DETAIL = "Null MX record - domain explicitly rejects email"


def sort_mx(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Lower priority value first (most preferred); ties keep resolver order."""
    return sorted(records, key=lambda r: int(r["priority"]))


def is_null_mx(record: dict[str, Any]) -> bool:
    return (record.get("exchange") or "").strip() in (".", "")


def detect_providers(records: list[dict[str, Any]]) -> list[str]:
    """Known provider names whose hostname markers appear in any exchange (case-insensitive)."""
    exchanges = [(r.get("exchange") or "").lower() for r in records]
    return [
        provider
        for provider, markers in constants.MX_PROVIDERS.items()
        if any(marker in ex for ex in exchanges for marker in markers)
    ]


def score_mx(records: list[dict[str, Any]]) -> dict[str, Any]:
    """Score a sorted, non-empty MX set. Returns {warnings, recommendations, providers, score}."""
    base = 0.0
    details: list[str] = []
    warnings: list[str] = []
    recommendations: list[str] = []

    base += 1
    details.append(f"MX records present ({points_label(1)})")

    if len(records) >= 2:
        base += 1
        details.append(f"Multiple MX records for redundancy ({points_label(1)})")
    else:
        recommendations.append("Consider adding backup MX records for redundancy")

    priorities = [r["priority"] for r in records]
    if len(set(priorities)) == len(records):
        base += 1
        details.append(f"Proper priority configuration ({points_label(1)})")
    else:
        warnings.append("Some MX records have the same priority")
        recommendations.append("Use unique priority values for better load balancing")

    providers = detect_providers(records)
    if providers:
        details.append(f"Detected providers: {', '.join(providers)}")

    if any(p == 0 for p in priorities):
        warnings.append("Priority 0 detected - ensure this is intentional")
    if any(p > constants.MX_HIGH_PRIORITY for p in priorities):
        recommendations.append("Consider using lower priority values (closer to 0) for better delivery")

    has_null = any(is_null_mx(r) for r in records)
    if has_null and len(records) == 1:
        warnings = ["Null MX record detected - domain explicitly rejects email"]
        recommendations = []
        base = 0
        details = [NULL_MX_DETAIL]
    elif has_null:
        warnings.append("Mixed null and regular MX records - this configuration may cause issues")

    return {
        "warnings": warnings,
        "recommendations": recommendations,
        "providers": providers,
        "score": build_score(base, constants.MX_OUT_OF, details, thresholds=MX_THRESHOLDS),
    }


async def analyze_mx(domain: str, resolver: Optional[DnsResolver] = None) -> dict[str, Any]:
    """Analyze the MX records of domain. Always returns a report; never raises."""
    resolver = resolver or get_default_resolver()
    try:
        mx_records = await resolver.resolve_mx(domain)
        if not mx_records:
            return {
                "success": False,
                "error": "No MX records found",
                "domain": domain,
                "warnings": [],
                "recommendations": [
                    "Add MX records to enable email delivery to your domain",
                    "MX records specify which mail servers handle email for your domain",
                    "Ensure proper priority values for load balancing and redundancy",
                ],
            }
        records = sort_mx(mx_records)
        analysis = score_mx(records)
        logger.debug("MX %s: %d record(s), score %s", domain, len(records), analysis["score"]["value"])
        return {
            "success": True,
            "domain": domain,
            "records": records,
            **analysis,
        }
    except Exception as e:
        logger.debug("MX analysis for %s failed: %s", domain, e)
        return {
            "success": False,
            "error": str(e),
            "domain": domain,
            "warnings": [],
            "recommendations": [],
        }
