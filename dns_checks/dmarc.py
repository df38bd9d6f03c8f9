"""
DMARC policy: record at _dmarc.domain, policy (none/quarantine/reject), coverage,
reporting addresses and identifier alignment.
"""
import logging
from typing import Any, Optional

from analysis.scoring import RuleOutcome, ScoringRule, apply_rules, build_score, points_label
from core import constants
from core.utils import DnsResolver, get_default_resolver

logger = logging.getLogger("mailposture.dns")

# Tags whose values are case-insensitive keywords
_KEYWORD_TAGS = ("p", "sp", "adkim", "aspf", "fo", "rf")
_POLICY_RANK = {p: rank for rank, p in enumerate(constants.DMARC_POLICIES)}


def is_dmarc_record(txt: str) -> bool:
    """True if the TXT string starts with the v=DMARC1 version tag (case-insensitive)."""
    return txt.strip().lower().replace(" ", "").startswith(constants.DMARC_PREFIX)


def parse_dmarc_tags(record: str) -> dict[str, str]:
    """'v=DMARC1; p=reject; rua=mailto:a@x' -> {'v': 'DMARC1', 'p': 'reject', 'rua': 'mailto:a@x'}."""
    tags: dict[str, str] = {}
    for part in record.split(";"):
        part = part.strip()
        if not part or "=" not in part:
            continue
        k, v = part.split("=", 1)
        k, v = k.strip().lower(), v.strip()
        if k in _KEYWORD_TAGS:
            v = v.lower()
        tags.setdefault(k, v)
    return tags


def reporting_uris(value: str) -> list[str]:
    """Split a rua/ruf value into its comma-separated URIs."""
    return [u.strip() for u in (value or "").split(",") if u.strip()]


def _rule_record(parsed: dict) -> RuleOutcome:
    return RuleOutcome(points=1, details=[f"Valid DMARC record found ({points_label(1)})"])


def _rule_policy(parsed: dict) -> RuleOutcome:
    policy = parsed.get("p")
    if policy == "reject":
        return RuleOutcome(points=2, details=[f"Policy reject ({points_label(2)})"])
    if policy == "quarantine":
        return RuleOutcome(
            points=1.5,
            details=[f"Policy quarantine ({points_label(1.5)})"],
            recommendations=['Consider moving to "p=reject" once legitimate mail passes SPF/DKIM alignment.'],
        )
    if policy == "none":
        return RuleOutcome(
            warnings=['DMARC policy is "none" (monitoring only); spoofed mail is not blocked.'],
            recommendations=['Upgrade DMARC policy from "none" to "quarantine" or "reject" after reviewing reports.'],
        )
    return RuleOutcome(
        warnings=["DMARC record has a missing or invalid p= policy tag."],
        recommendations=['Add a policy tag: "p=none", "p=quarantine" or "p=reject".'],
    )


def _rule_coverage(parsed: dict) -> RuleOutcome:
    pct = parsed.get("pct")
    if pct is None:
        return RuleOutcome(points=0.5, details=[f"Policy applies to all mail ({points_label(0.5)})"])
    try:
        value = int(pct)
    except ValueError:
        return RuleOutcome(warnings=[f"Invalid pct value '{pct}'; receivers may ignore it."])
    if value >= 100:
        return RuleOutcome(points=0.5, details=[f"Policy applies to all mail ({points_label(0.5)})"])
    return RuleOutcome(
        warnings=[f"DMARC policy applies to only {max(value, 0)}% of messages."],
        recommendations=["Increase pct to 100 once you are confident in your configuration."],
    )


def _rule_reporting(parsed: dict) -> RuleOutcome:
    out = RuleOutcome()
    rua = reporting_uris(parsed.get("rua", ""))
    if rua:
        out.points = 1
        out.details.append(f"Aggregate reports enabled: {', '.join(rua)} ({points_label(1)})")
    else:
        out.recommendations.append(
            "Add a rua= address to receive aggregate reports and gain visibility into who sends mail as your domain."
        )
    ruf = reporting_uris(parsed.get("ruf", ""))
    if ruf:
        out.details.append(f"Forensic reports enabled: {', '.join(ruf)}")
    return out


def _rule_alignment(parsed: dict) -> Optional[RuleOutcome]:
    out = RuleOutcome()
    if parsed.get("adkim") == "s":
        out.points += 0.25
        out.details.append(f"Strict DKIM alignment ({points_label(0.25)})")
    if parsed.get("aspf") == "s":
        out.points += 0.25
        out.details.append(f"Strict SPF alignment ({points_label(0.25)})")
    return out if out.points else None


def _rule_subdomain_policy(parsed: dict) -> Optional[RuleOutcome]:
    policy, sub = parsed.get("p"), parsed.get("sp")
    if sub is None or policy not in _POLICY_RANK:
        return None
    if sub not in _POLICY_RANK:
        return RuleOutcome(warnings=[f"Invalid subdomain policy sp={sub}."])
    if _POLICY_RANK[sub] < _POLICY_RANK[policy]:
        return RuleOutcome(
            warnings=[f'Subdomain policy "{sub}" is weaker than the domain policy "{policy}".'],
            recommendations=["Align sp= with p= so subdomains cannot be used for spoofing."],
        )
    return None


DMARC_RULES = (
    ScoringRule("record", _rule_record),
    ScoringRule("policy", _rule_policy),
    ScoringRule("coverage", _rule_coverage),
    ScoringRule("reporting", _rule_reporting),
    ScoringRule("alignment", _rule_alignment),
    ScoringRule("subdomain-policy", _rule_subdomain_policy),
)


async def analyze_dmarc(domain: str, resolver: Optional[DnsResolver] = None) -> dict[str, Any]:
    """Analyze the DMARC record of domain. Always returns a report; never raises."""
    resolver = resolver or get_default_resolver()
    checked = f"_dmarc.{domain}"
    try:
        txts = await resolver.resolve_txt(checked)
        records = [t.strip() for t in txts if is_dmarc_record(t)]
        if not records:
            return {
                "success": False,
                "error": "No DMARC record found.",
                "domain": domain,
                "checkedRecord": checked,
                "warnings": [],
                "recommendations": [
                    f'Create a TXT record at {checked} starting with "v=DMARC1".',
                    'Start with monitoring: "v=DMARC1; p=none; rua=mailto:dmarc-reports@' + domain + '"',
                    'Move to "p=quarantine" and then "p=reject" once reports show aligned mail.',
                ],
            }
        if len(records) > 1:
            return {
                "success": False,
                "error": "Fatal: Multiple DMARC records found.",
                "domain": domain,
                "checkedRecord": checked,
                "rawRecord": " | ".join(records),
                "warnings": ["Receivers ignore DMARC entirely when multiple records are published (RFC 7489)."],
                "recommendations": ["Merge the DMARC records into a single \"v=DMARC1\" record."],
            }

        record = records[0]
        parsed = parse_dmarc_tags(record)
        rules = apply_rules(DMARC_RULES, parsed)
        logger.debug("DMARC policy: %s | rules=%s", parsed.get("p"), rules.applied)
        return {
            "success": True,
            "domain": domain,
            "checkedRecord": checked,
            "rawRecord": record,
            "parsed": parsed,
            "policy": parsed.get("p"),
            "warnings": rules.warnings,
            "recommendations": rules.recommendations,
            "score": build_score(rules.points, constants.DMARC_OUT_OF, rules.details),
        }
    except Exception as e:
        logger.debug("DMARC analysis for %s failed: %s", domain, e)
        return {
            "success": False,
            "error": str(e),
            "domain": domain,
            "checkedRecord": checked,
            "warnings": [],
            "recommendations": [
                "Check your DNS configuration.",
                "Try again in a few minutes if this is a temporary DNS issue.",
            ],
        }
