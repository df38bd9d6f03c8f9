"""
DKIM key record analysis via TXT lookup on selector._domainkey.domain.
Parses the tag-value record, scores key presence, type, hash, service restriction and
key length, and runs a best-effort structural verification against a synthetic message.
"""
import base64
import binascii
import logging
from typing import Any, Optional

from analysis.scoring import RuleOutcome, ScoringRule, apply_rules, build_score, points_label
from core import constants
from core.utils import DnsResolver, get_default_resolver
from dns_checks.dkim_verify import (
    build_probe_message,
    load_public_key,
    parse_tag_list,
    public_key_size,
    verify_message,
)

logger = logging.getLogger("mailposture.dns")


def parse_dkim_tags(record: str) -> dict[str, str]:
    """'v=DKIM1; k=rsa; p=MIIB...' -> {'v': 'DKIM1', 'k': 'rsa', 'p': 'MIIB...'}."""
    return parse_tag_list(record)


def is_dkim_record(tags: dict[str, str]) -> bool:
    """A record is DKIM-shaped when it declares v=DKIM1, k=rsa, or carries a p= tag."""
    return tags.get("v") == "DKIM1" or tags.get("k") == "rsa" or "p" in tags


def _tag_list(tags: dict[str, str], name: str) -> list[str]:
    return [v.strip().lower() for v in tags.get(name, "").split(":") if v.strip()]


def public_key_bits(public_key: str, key_type: str = "rsa") -> Optional[int]:
    """Key size in bits from the loaded p= key (RSA modulus size; 256 for Ed25519), None if it does not load."""
    try:
        key = load_public_key(key_type, base64.b64decode(public_key, validate=True))
    except (binascii.Error, ValueError):
        return None
    return public_key_size(key)


def _has_key(parsed: dict) -> bool:
    return bool(parsed["tags"].get("p"))


def _rule_record(parsed: dict) -> RuleOutcome:
    return RuleOutcome(points=1, details=[f"Valid DKIM record found ({points_label(1)})"])


def _rule_public_key(parsed: dict) -> RuleOutcome:
    if _has_key(parsed):
        return RuleOutcome(points=2, details=[f"Public key present ({points_label(2)})"])
    return RuleOutcome(warnings=["No public key found in DKIM record"])


def _rule_key_type(parsed: dict) -> Optional[RuleOutcome]:
    if not _has_key(parsed):
        return None
    key_type = parsed["tags"].get("k", "").lower()
    if key_type == "rsa":
        return RuleOutcome(points=1, details=[f"RSA key type ({points_label(1)})"])
    if key_type == "ed25519":
        return RuleOutcome(points=1.5, details=[f"Ed25519 key type - excellent security ({points_label(1.5)})"])
    return None


def _rule_hash(parsed: dict) -> Optional[RuleOutcome]:
    if not _has_key(parsed):
        return None
    hashes = _tag_list(parsed["tags"], "h")
    if "sha256" in hashes:
        return RuleOutcome(points=1, details=[f"SHA-256 hash algorithm ({points_label(1)})"])
    if "sha1" in hashes:
        return RuleOutcome(
            points=0.5,
            details=[f"SHA-1 hash algorithm ({points_label(0.5)})"],
            recommendations=["Consider upgrading to SHA-256 for better security"],
        )
    return None


def _rule_service_type(parsed: dict) -> Optional[RuleOutcome]:
    if _has_key(parsed) and "email" in _tag_list(parsed["tags"], "s"):
        return RuleOutcome(points=0.5, details=[f"Restricted to email service ({points_label(0.5)})"])
    return None


def _rule_flags(parsed: dict) -> RuleOutcome:
    flags = _tag_list(parsed["tags"], "t")
    out = RuleOutcome()
    if "y" in flags:
        out.warnings.append("Testing mode enabled (t=y). Remove this flag for production.")
    if "s" in flags:
        out.warnings.append("Strict mode enabled. This may cause issues with some email systems.")
    return out


def _rule_key_length(parsed: dict) -> Optional[RuleOutcome]:
    if not _has_key(parsed):
        return None
    key_length = len(parsed["tags"]["p"])
    if key_length > constants.DKIM_STRONG_KEY_CHARS:
        return RuleOutcome(points=0.5, details=[f"Strong key length ({points_label(0.5)})"])
    if key_length < constants.DKIM_WEAK_KEY_CHARS:
        return RuleOutcome(
            warnings=["Potentially weak key length detected"],
            recommendations=["Consider using a stronger RSA key (2048+ bits)"],
        )
    return None


def _rule_structural_check(parsed: dict) -> Optional[RuleOutcome]:
    verification = parsed.get("verification")
    if not _has_key(parsed) or not verification:
        return None
    status = verification.get("result")
    out = RuleOutcome(details=[f"Structural DKIM check: {status}"])
    if status == "pass":
        out.points = 0.5
        out.details.append(f"DKIM verification passed ({points_label(0.5)})")
    elif status == "neutral":
        out.details.append("DKIM verification neutral (no penalty)")
    if verification.get("info"):
        out.details.append(f"DKIM info: {verification['info']}")
    return out


DKIM_RULES = (
    ScoringRule("record", _rule_record),
    ScoringRule("public-key", _rule_public_key),
    ScoringRule("key-type", _rule_key_type),
    ScoringRule("hash", _rule_hash),
    ScoringRule("service-type", _rule_service_type),
    ScoringRule("flags", _rule_flags),
    ScoringRule("key-length", _rule_key_length),
    ScoringRule("structural-check", _rule_structural_check),
)


def _not_found(domain: str, selector: str, checked: str) -> dict[str, Any]:
    return {
        "success": False,
        "error": f"DKIM record not found for selector '{selector}'",
        "domain": domain,
        "selector": selector,
        "checkedRecord": checked,
        "warnings": [],
        "recommendations": [
            "Set up DKIM signing for your domain",
            "Common selectors to try: " + ", ".join(constants.COMMON_SELECTORS),
            "Contact your email provider for DKIM setup instructions",
        ],
    }


async def _structural_check(domain: str, selector: str, resolver: DnsResolver) -> Optional[dict[str, Any]]:
    """Best effort: any failure is logged and ignored."""
    try:
        return await verify_message(build_probe_message(domain, selector), resolver)
    except Exception as e:
        logger.debug("DKIM structural check for %s/%s failed: %s", domain, selector, e)
        return None


async def analyze_dkim(
    domain: str,
    selector: str = constants.DEFAULT_DKIM_SELECTOR,
    resolver: Optional[DnsResolver] = None,
) -> dict[str, Any]:
    """Analyze the DKIM key published for selector. Always returns a report; never raises."""
    resolver = resolver or get_default_resolver()
    checked = f"{selector}._domainkey.{domain}"
    try:
        try:
            txts = await resolver.resolve_txt(checked)
        except Exception as e:
            logger.debug("DKIM lookup %s failed: %s", checked, e)
            return _not_found(domain, selector, checked)
        if not txts:
            return _not_found(domain, selector, checked)

        candidates = [(t, parse_dkim_tags(t)) for t in txts]
        match = next(((t, tags) for t, tags in candidates if is_dkim_record(tags)), None)
        if match is None:
            return {
                "success": False,
                "error": f"Invalid DKIM record format for selector '{selector}'",
                "domain": domain,
                "selector": selector,
                "checkedRecord": checked,
                "rawRecord": txts[0],
                "warnings": ["Invalid DKIM record format"],
                "recommendations": ["Publish a DKIM key record (v=DKIM1; k=rsa; p=<public key>)"],
            }
        record, tags = match

        verification = await _structural_check(domain, selector, resolver) if tags.get("p") else None
        parsed = {"tags": tags, "verification": verification}
        rules = apply_rules(DKIM_RULES, parsed)
        logger.debug("DKIM %s: rules=%s points=%.1f", checked, rules.applied, rules.points)
        return {
            "success": True,
            "domain": domain,
            "selector": selector,
            "checkedRecord": checked,
            "rawRecord": record,
            "parsed": tags,
            "keyBits": public_key_bits(tags["p"], tags.get("k", "rsa").lower()) if tags.get("p") else None,
            "verificationResult": verification,
            "warnings": rules.warnings,
            "recommendations": rules.recommendations,
            "score": build_score(rules.points, constants.DKIM_OUT_OF, rules.details),
        }
    except Exception as e:
        logger.debug("DKIM analysis for %s failed: %s", domain, e)
        return {
            "success": False,
            "error": f"Failed to analyze DKIM for {domain}: {e}",
            "domain": domain,
            "selector": selector,
            "warnings": [],
            "recommendations": [],
        }
