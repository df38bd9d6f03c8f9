"""
Bounded SPF evaluation (RFC 7208 check_host) used to probe how a policy treats a sender IP.
Single level only: include/redirect targets are evaluated once, their own include/redirect
terms are not followed. Macros are not expanded (permerror).
Results: pass | fail | softfail | neutral | none | permerror | temperror.
"""
import ipaddress
import logging
import re
from typing import Any, Optional

from core import constants
from core.utils import DnsError

logger = logging.getLogger("mailposture.dns")

QUALIFIER_RESULTS = {
    "+": "pass",
    "-": "fail",
    "~": "softfail",
    "?": "neutral",
}

# Nested include/redirect depth followed by the evaluator
MAX_DEPTH = 1
MAX_MX_HOSTS = 10

_TERM_RE = re.compile(r"^([+\-~?]?)([a-z][a-z0-9_.-]*)(.*)$", re.IGNORECASE)
_MODIFIER_RE = re.compile(r"^([a-z][a-z0-9_.-]*)=(.*)$", re.IGNORECASE)


class SpfPermError(Exception):
    """Record cannot be evaluated (syntax, multiple records, too many lookups, macros)."""


class SpfTempError(Exception):
    """DNS failure while evaluating."""


def _split_cidr(arg: str) -> tuple[str, Optional[int], Optional[int]]:
    """'example.com/24//64' -> ('example.com', 24, 64); '/24' -> ('', 24, None)."""
    idx = arg.find("/")
    if idx < 0:
        return (arg, None, None)
    target, cidr = arg[:idx], arg[idx:]
    v4: Optional[str] = None
    v6: Optional[str] = None
    if cidr.startswith("//"):
        v6 = cidr[2:]
    else:
        parts = cidr[1:].split("//", 1)
        v4 = parts[0]
        v6 = parts[1] if len(parts) > 1 else None
    try:
        v4_len = int(v4) if v4 else None
        v6_len = int(v6) if v6 else None
    except ValueError:
        raise SpfPermError(f"Invalid CIDR length in '{arg}'")
    if (v4_len is not None and not 0 <= v4_len <= 32) or (v6_len is not None and not 0 <= v6_len <= 128):
        raise SpfPermError(f"CIDR length out of range in '{arg}'")
    return (target, v4_len, v6_len)


def _in_network(ip, address: str, v4_len: Optional[int], v6_len: Optional[int]) -> bool:
    try:
        addr = ipaddress.ip_address(address)
    except ValueError:
        return False
    if addr.version != ip.version:
        return False
    prefix = (v4_len if v4_len is not None else 32) if ip.version == 4 else (v6_len if v6_len is not None else 128)
    return ip in ipaddress.ip_network(f"{addr}/{prefix}", strict=False)


class _Evaluation:
    """Lookup budget and resolver shared across one check_host call."""

    def __init__(self, ip, resolver):
        self.ip = ip
        self.resolver = resolver
        self.lookups = 0
        self.notes: list[str] = []

    def count_lookup(self) -> None:
        self.lookups += 1
        if self.lookups > constants.SPF_MAX_LOOKUPS:
            raise SpfPermError(f"Exceeded {constants.SPF_MAX_LOOKUPS} DNS lookup limit")

    async def query(self, name: str, rtype: str) -> list[Any]:
        try:
            return await self.resolver.resolve(name, rtype)
        except DnsError as e:
            raise SpfTempError(str(e)) from e

    async def addresses(self, name: str) -> list[str]:
        return await self.query(name, "A" if self.ip.version == 4 else "AAAA")

    async def fetch_record(self, domain: str) -> Optional[str]:
        txts = await self.query(domain, "TXT")
        records = [t.strip() for t in txts if t.strip().lower().split(" ")[0] == constants.SPF_PREFIX]
        if len(records) > 1:
            raise SpfPermError(f"Multiple SPF records for {domain}")
        return records[0] if records else None

    async def evaluate(self, domain: str, depth: int) -> tuple[str, Optional[str]]:
        """Returns (result, matched term)."""
        record = await self.fetch_record(domain)
        if record is None:
            return ("none", None)
        redirect: Optional[str] = None
        for term in record.split()[1:]:
            if "%" in term:
                raise SpfPermError(f"Macro expansion is not supported: '{term}'")
            modifier = _MODIFIER_RE.match(term)
            if modifier:
                if modifier.group(1).lower() == "redirect":
                    redirect = modifier.group(2)
                continue
            m = _TERM_RE.match(term)
            if not m:
                raise SpfPermError(f"Invalid SPF term '{term}'")
            qualifier = m.group(1) or "+"
            name = m.group(2).lower()
            rest = m.group(3)
            arg = rest[1:] if rest.startswith(":") else rest
            if await self._matches(name, arg, domain, depth, term):
                return (QUALIFIER_RESULTS[qualifier], term)
        if redirect:
            if depth >= MAX_DEPTH:
                self.notes.append(f"redirect={redirect} not followed (nested)")
                return ("neutral", None)
            self.count_lookup()
            result, matched = await self.evaluate(redirect, depth + 1)
            if result == "none":
                raise SpfPermError(f"Redirect target {redirect} has no SPF record")
            return (result, matched)
        return ("neutral", None)

    async def _matches(self, name: str, arg: str, domain: str, depth: int, term: str) -> bool:
        ip = self.ip
        if name == "all":
            return True
        if name in ("ip4", "ip6"):
            try:
                network = ipaddress.ip_network(arg, strict=False)
            except ValueError:
                raise SpfPermError(f"Invalid network in '{term}'")
            if (name == "ip4") != (network.version == 4):
                raise SpfPermError(f"Address family mismatch in '{term}'")
            return network.version == ip.version and ip in network
        if name == "a":
            target, v4_len, v6_len = _split_cidr(arg)
            self.count_lookup()
            return any(_in_network(ip, a, v4_len, v6_len) for a in await self.addresses(target or domain))
        if name == "mx":
            target, v4_len, v6_len = _split_cidr(arg)
            self.count_lookup()
            for mx in (await self.query(target or domain, "MX"))[:MAX_MX_HOSTS]:
                host = mx.get("exchange") or ""
                if host and any(_in_network(ip, a, v4_len, v6_len) for a in await self.addresses(host)):
                    return True
            return False
        if name == "exists":
            if not arg:
                raise SpfPermError("exists requires a domain")
            self.count_lookup()
            return bool(await self.query(arg, "A"))
        if name == "include":
            if not arg:
                raise SpfPermError("include requires a domain")
            self.count_lookup()
            if depth >= MAX_DEPTH:
                self.notes.append(f"include:{arg} not followed (nested)")
                return False
            result, _ = await self.evaluate(arg, depth + 1)
            if result == "none":
                raise SpfPermError(f"Included domain {arg} has no SPF record")
            return result == "pass"
        if name == "ptr":
            # Deprecated (RFC 7208 5.5); counted but never matched here.
            self.count_lookup()
            return False
        raise SpfPermError(f"Unknown mechanism '{term}'")


async def check_host(ip: str, domain: str, resolver) -> dict[str, Any]:
    """Evaluate the SPF policy of domain for a sender at ip. Never raises for SPF/DNS conditions."""
    ev = _Evaluation(ipaddress.ip_address(ip), resolver)
    matched: Optional[str] = None
    try:
        result, matched = await ev.evaluate(domain, 0)
        if result == "none":
            explanation = f"No SPF record found for {domain}"
        elif matched:
            explanation = f"{ip} matched '{matched}' ({result})"
        else:
            explanation = f"No mechanism matched {ip}; default result {result}"
    except SpfPermError as e:
        result, explanation = "permerror", str(e)
    except SpfTempError as e:
        result, explanation = "temperror", str(e)
    if ev.notes:
        explanation = f"{explanation}; " + "; ".join(ev.notes)
    logger.debug("check_host(%s, %s) -> %s", ip, domain, result)
    return {
        "ip": ip,
        "domain": domain,
        "result": result,
        "explanation": explanation,
        "mechanism": matched,
        "lookups": ev.lookups,
    }
