"""
SPF record analysis: presence, record cardinality, mechanisms, lookup cost, policy strength.
Also probes how the published policy evaluates for a fixed set of sender IPs.
"""
import logging
import re
from typing import Any, Optional

from analysis.scoring import RuleOutcome, ScoringRule, apply_rules, build_score, points_label
from core import constants
from core.utils import DnsResolver, gather_settled, get_default_resolver
from dns_checks.spf_eval import check_host

logger = logging.getLogger("mailposture.dns")

NOT_FOUND_RECOMMENDATIONS = [
    'Create a TXT record for your domain starting with "v=spf1".',
    'Example: "v=spf1 include:_spf.google.com ~all"',
    "Test your SPF record before deploying to production.",
]

DNS_FAILURE_RECOMMENDATIONS = [
    "Check your DNS configuration.",
    "Ensure your domain is properly configured.",
    "Try again in a few minutes if this is a temporary DNS issue.",
]

NO_POLICY = "No policy specified"

_TYPE_SPLIT_RE = re.compile(r"[:/=]")


def is_spf_record(txt: str) -> bool:
    """True if the TXT string starts with the v=spf1 version tag (case-insensitive)."""
    return txt.strip().lower().startswith(constants.SPF_PREFIX)


def classify_mechanism(term: str) -> dict[str, Any]:
    """'~include:_spf.google.com' -> {original, type: 'include', requiresLookup: True}."""
    mech_type = _TYPE_SPLIT_RE.split(term.lower(), 1)[0]
    if mech_type[:1] and mech_type[0] in constants.SPF_QUALIFIERS:
        mech_type = mech_type[1:]
    return {
        "original": term,
        "type": mech_type,
        "requiresLookup": mech_type in constants.SPF_LOOKUP_TYPES or mech_type == "redirect",
    }


def parse_spf(record: str, domain: str = "") -> dict[str, Any]:
    """
    Tokenize an SPF record into ordered mechanisms and derive lookup count, policy,
    include targets and redirect target. The v=spf1 token is dropped.
    Mechanism types are classified with the qualifier stripped, so the policy is the first
    term of type "all" whatever its qualifier; include:allmail.example.net is not a policy.
    """
    terms = record.split()[1:]
    mechanisms = [classify_mechanism(t) for t in terms]
    lookups = sum(1 for m in mechanisms if m["requiresLookup"])
    policy = next((m["original"] for m in mechanisms if m["type"] == "all"), None)
    includes = [m["original"].split(":", 1)[1] for m in mechanisms if m["type"] == "include" and ":" in m["original"]]
    redirect = next(
        (m["original"].split("=", 1)[1] for m in mechanisms if m["type"] == "redirect" and "=" in m["original"]),
        None,
    )
    return {
        "raw": record,
        "domain": domain,
        "mechanisms": mechanisms,
        "lookups": lookups,
        "policy": policy,
        "includes": includes,
        "redirect": redirect,
    }


def _rule_record(parsed: dict) -> RuleOutcome:
    return RuleOutcome(points=1, details=[f"Single SPF record found ({points_label(1)})"])


_POLICY_POINTS = {"-all": 2, "~all": 1.5, "?all": 0.5, "+all": 0}


def _rule_policy(parsed: dict) -> RuleOutcome:
    policy = parsed["policy"]
    if not policy:
        return RuleOutcome(
            warnings=['Record does not contain a terminating "all" mechanism.'],
            recommendations=['Add "-all" (fail), "~all" (softfail), or "?all" (neutral) to specify a default policy.'],
        )
    key = policy.lower()
    if key == "all":
        key = "+all"
    points = _POLICY_POINTS.get(key, 0)
    out = RuleOutcome(points=points)
    if key == "+all":
        out.warnings.append('The "+all" mechanism is highly discouraged as it allows any server to send email.')
        out.recommendations.append('Replace "+all" with "-all" for strict policy or "~all" for gradual deployment.')
    elif key == "?all":
        out.warnings.append('Neutral policy "?all" provides no protection against spoofing.')
        out.recommendations.append('Consider using "~all" (softfail) or "-all" (fail) for better security.')
    elif key == "~all":
        out.recommendations.append(
            'Good: Using "~all" allows gradual SPF deployment. Consider "-all" for stricter security once confident.'
        )
    elif key == "-all":
        out.recommendations.append('Excellent: Using "-all" provides the strongest SPF protection.')
    if points:
        out.details.append(f"Policy {policy} ({points_label(points)})")
    return out


def _rule_mechanisms(parsed: dict) -> RuleOutcome:
    out = RuleOutcome()
    for m in parsed["mechanisms"]:
        if m["type"] == "redirect" and "=" in m["original"]:
            target = m["original"].split("=", 1)[1]
            if target:
                out.recommendations.append(
                    f"Redirect to {target} detected. Ensure the target domain has a valid SPF record."
                )
        elif m["type"] in ("mx", "a") and ":" not in m["original"]:
            out.recommendations.append(
                f'Using bare "{m["type"]}" mechanism. Consider specifying {m["type"].upper()} records '
                "explicitly for better performance."
            )
        elif m["type"] == "ptr":
            out.warnings.append('The "ptr" mechanism is deprecated and should not be used (RFC 7208).')
            out.recommendations.append('Remove the "ptr" mechanism. Use "a", "mx", or "ip4/ip6" instead.')
    return out


def _rule_deprecated_ptr(parsed: dict) -> Optional[RuleOutcome]:
    """Awards the point only; ptr warnings are emitted in record order by the mechanism walk."""
    if any(m["type"] == "ptr" for m in parsed["mechanisms"]):
        return None
    return RuleOutcome(points=0.5, details=[f"No deprecated ptr mechanism ({points_label(0.5)})"])


def _rule_lookup_budget(parsed: dict) -> RuleOutcome:
    lookups = parsed["lookups"]
    limit = constants.SPF_MAX_LOOKUPS
    if lookups > limit:
        return RuleOutcome(
            warnings=[f"Fatal: Exceeded {limit} DNS lookup limit. Found {lookups} lookups (RFC 7208)."],
            recommendations=[
                "Reduce DNS lookups by: 1) Flattening SPF records, 2) Using IP ranges instead of includes, "
                "3) Consolidating mechanisms."
            ],
            urgent=True,
        )
    out = RuleOutcome(points=1, details=[f"{lookups}/{limit} DNS lookups ({points_label(1)})"])
    if lookups > constants.SPF_LOOKUP_WARN:
        out.warnings.append(f"Approaching DNS lookup limit: {lookups}/{limit} lookups used.")
        out.recommendations.append(
            "Consider optimizing your SPF record to reduce DNS lookups before hitting the limit."
        )
    elif lookups > constants.SPF_LOOKUP_NOTICE:
        out.recommendations.append(
            f"Currently using {lookups}/{limit} DNS lookups. Monitor this as you add more mechanisms."
        )
    return out


def _rule_record_length(parsed: dict) -> RuleOutcome:
    if len(parsed["raw"]) > constants.SPF_MAX_RECORD_LENGTH:
        return RuleOutcome(
            warnings=["SPF record exceeds 255 characters. This may cause DNS issues."],
            recommendations=["Shorten your SPF record by using shorter domain names or consolidating mechanisms."],
        )
    return RuleOutcome(points=0.25, details=[f"Record length within 255 characters ({points_label(0.25)})"])


def _rule_self_include(parsed: dict) -> RuleOutcome:
    domain = (parsed.get("domain") or "").lower()
    if domain and any(inc.lower() == domain for inc in parsed["includes"]):
        return RuleOutcome(
            warnings=["Potential SPF include loop detected (domain includes itself)."],
            recommendations=["Remove self-referential includes to prevent infinite loops."],
        )
    return RuleOutcome(points=0.25, details=[f"No self-referential include ({points_label(0.25)})"])


SPF_RULES = (
    ScoringRule("record", _rule_record),
    ScoringRule("policy", _rule_policy),
    ScoringRule("mechanisms", _rule_mechanisms),
    ScoringRule("deprecated-ptr", _rule_deprecated_ptr),
    ScoringRule("lookup-budget", _rule_lookup_budget),
    ScoringRule("record-length", _rule_record_length),
    ScoringRule("self-include", _rule_self_include),
)


async def _probe(ip: str, domain: str, resolver: DnsResolver) -> dict[str, Any]:
    result = await check_host(ip, domain, resolver)
    return {
        "ip": ip,
        "result": result["result"],
        "explanation": result["explanation"],
        "details": result,
    }


async def probe_test_ips(domain: str, resolver: DnsResolver, ips=constants.SPF_TEST_IPS) -> list[dict[str, Any]]:
    """Evaluate the policy for each test IP concurrently. Output order follows ips; a failed probe is 'error'."""
    settled = await gather_settled(*(_probe(ip, domain, resolver) for ip in ips))
    results = []
    for ip, outcome in zip(ips, settled):
        if outcome.ok:
            results.append(outcome.value)
        else:
            logger.debug("SPF probe %s for %s failed: %s", ip, domain, outcome.error)
            results.append({
                "ip": ip,
                "result": "error",
                "explanation": f"Error testing with IP {ip}: {outcome.error}",
                "details": None,
            })
    return results


def _verification_result(ip_results: list[dict[str, Any]]) -> dict[str, Any]:
    primary = next((r for r in ip_results if r["details"] and r["result"] != "error"), None)
    if primary is None:
        return {
            "status": "error",
            "explanation": "Unable to perform SPF analysis with any test IP",
            "details": None,
        }
    return {
        "status": primary["result"],
        "explanation": primary["explanation"] or "No additional explanation available",
        "details": primary["details"],
    }


def _not_found(domain: str) -> dict[str, Any]:
    return {
        "success": False,
        "error": "No SPF record found.",
        "domain": domain,
        "warnings": [],
        "recommendations": list(NOT_FOUND_RECOMMENDATIONS),
    }


async def analyze_spf(domain: str, resolver: Optional[DnsResolver] = None) -> dict[str, Any]:
    """Analyze the SPF record of domain. Always returns a report; never raises."""
    resolver = resolver or get_default_resolver()
    try:
        txts = await resolver.resolve_txt(domain)
        spf_records = [t.strip() for t in txts if is_spf_record(t)]
        if not spf_records:
            return _not_found(domain)
        if len(spf_records) > 1:
            return {
                "success": False,
                "error": "Fatal: Multiple SPF records found.",
                "domain": domain,
                "rawRecord": " | ".join(spf_records),
                "warnings": [
                    "Multiple SPF records will cause authentication failures.",
                    "Email delivery may be severely impacted.",
                ],
                "recommendations": [
                    "A domain MUST NOT have multiple SPF records as per RFC 7208.",
                    'Merge all mechanisms into a single "v=spf1" record.',
                    "Remove duplicate or conflicting SPF records immediately.",
                ],
            }

        spf_record = spf_records[0]
        parsed = parse_spf(spf_record, domain)
        ip_results = await probe_test_ips(domain, resolver)
        rules = apply_rules(SPF_RULES, parsed)
        logger.debug("SPF: %s | lookups %d | policy=%s", spf_record[:80], parsed["lookups"], parsed["policy"])
        return {
            "success": True,
            "domain": domain,
            "rawRecord": spf_record,
            "lookups": parsed["lookups"],
            "policy": parsed["policy"] or NO_POLICY,
            "warnings": rules.warnings,
            "recommendations": rules.recommendations,
            "mechanisms": parsed["mechanisms"],
            "ipTestResults": ip_results,
            "verificationResult": _verification_result(ip_results),
            "score": build_score(rules.points, constants.SPF_OUT_OF, rules.details),
        }
    except Exception as e:
        logger.debug("SPF analysis for %s failed: %s", domain, e)
        return {
            "success": False,
            "error": str(e),
            "domain": domain,
            "warnings": [],
            "recommendations": list(DNS_FAILURE_RECOMMENDATIONS),
        }
