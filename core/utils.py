"""
Common utilities: async DNS resolution with fixed upstream servers, the all-settle
join used for concurrent checks, and target domain normalization.
Not-found answers (NXDOMAIN / no data) are empty results; any other resolver
failure raises DnsError so callers can tell "record absent" from "lookup failed".
"""
import asyncio
import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Iterable, Optional

import dns.asyncresolver
import dns.exception
import dns.resolver

from core import constants

logger = logging.getLogger("mailposture.utils")


class DnsError(Exception):
    """Resolver failure other than NXDOMAIN / no answer. The dnspython error is chained as __cause__."""

    def __init__(self, name: str, rtype: str, message: str):
        super().__init__(f"{rtype} lookup for {name} failed: {message}")
        self.name = name
        self.rtype = rtype


def _extract_mx(answers) -> list[dict[str, Any]]:
    return [{"priority": int(r.preference), "exchange": str(r.exchange).rstrip(".")} for r in answers]


def _extract_txt(answers) -> list[str]:
    return [b"".join(r.strings).decode("utf-8", errors="replace") for r in answers]


def _extract_address(answers) -> list[str]:
    return [str(r.address) for r in answers]


_EXTRACTORS = {
    "MX": _extract_mx,
    "TXT": _extract_txt,
    "A": _extract_address,
    "AAAA": _extract_address,
}


class DnsResolver:
    """dnspython async resolver pinned to a fixed set of upstream servers."""

    def __init__(
        self,
        nameservers: Iterable[str] = constants.DEFAULT_NAMESERVERS,
        timeout: float = constants.DNS_TIMEOUT,
        lifetime: float = constants.DNS_LIFETIME,
        retries: int = 1,
    ):
        self.nameservers = list(nameservers)
        self.retries = max(0, int(retries))
        self._resolver = dns.asyncresolver.Resolver(configure=False)
        self._resolver.nameservers = self.nameservers
        self._resolver.timeout = float(timeout)
        self._resolver.lifetime = max(float(lifetime), float(timeout))

    async def resolve(self, name: str, rtype: str) -> list[Any]:
        """
        Resolve name/rtype. Returns [] for NXDOMAIN and NoAnswer.
        Timeouts and server failures are retried, then raised as DnsError.
        """
        rtype = rtype.upper()
        extract = _EXTRACTORS.get(rtype, lambda answers: [r.to_text() for r in answers])
        last_exc: Optional[BaseException] = None
        for attempt in range(self.retries + 1):
            try:
                answers = await self._resolver.resolve(name, rtype)
                return extract(answers)
            except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
                return []
            except (dns.resolver.NoNameservers, dns.exception.Timeout) as e:
                last_exc = e
                logger.debug("%s %s attempt %d failed: %s", rtype, name, attempt + 1, e)
            except dns.exception.DNSException as e:
                raise DnsError(name, rtype, str(e) or e.__class__.__name__) from e
        message = str(last_exc) or last_exc.__class__.__name__
        raise DnsError(name, rtype, message) from last_exc

    async def resolve_txt(self, name: str) -> list[str]:
        return await self.resolve(name, "TXT")

    async def resolve_mx(self, name: str) -> list[dict[str, Any]]:
        return await self.resolve(name, "MX")


_default_resolver: Optional[DnsResolver] = None


def configure_default_resolver(
    nameservers: Optional[Iterable[str]] = None,
    timeout: Optional[float] = None,
    lifetime: Optional[float] = None,
) -> DnsResolver:
    """Replace the process-wide resolver (None = keep constant defaults)."""
    global _default_resolver
    t = float(timeout) if timeout is not None else constants.DNS_TIMEOUT
    lt = float(lifetime) if lifetime is not None else max(t * 2, constants.DNS_LIFETIME)
    _default_resolver = DnsResolver(
        nameservers=nameservers or constants.DEFAULT_NAMESERVERS,
        timeout=t,
        lifetime=lt,
    )
    logger.debug("Resolver configured: servers=%s timeout=%.1fs lifetime=%.1fs", _default_resolver.nameservers, t, lt)
    return _default_resolver


def get_default_resolver() -> DnsResolver:
    """Return the process-wide resolver, building it from defaults on first use."""
    if _default_resolver is None:
        return configure_default_resolver()
    return _default_resolver


@dataclass
class Settled:
    """Outcome of one task joined by gather_settled: ok with value, or failed with error."""

    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


async def gather_settled(*aws: Awaitable[Any]) -> list[Settled]:
    """
    Run awaitables concurrently; wait for all of them. One task failing never cancels the others.
    Results are in input order, not completion order.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    settled = []
    for r in results:
        if isinstance(r, BaseException):
            settled.append(Settled(ok=False, error=r))
        else:
            settled.append(Settled(ok=True, value=r))
    return settled


# RFC 1035: max label 63, total domain 253; label: [a-zA-Z0-9]([a-zA-Z0-9-]*[a-zA-Z0-9])?
DOMAIN_LABEL_RE = re.compile(r"^[a-zA-Z0-9_]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
MAX_DOMAIN_LENGTH = 253
_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)


def normalize_domain(value: str) -> str:
    """Lower-case and strip scheme, leading www. and any path: 'https://www.Example.com/x' -> 'example.com'."""
    domain = (value or "").strip().lower()
    domain = _SCHEME_RE.sub("", domain)
    if domain.startswith("www."):
        domain = domain[4:]
    return domain.split("/")[0]


def _is_ip_address(s: str) -> bool:
    """Return True if s is a valid IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(s.strip())
        return True
    except ValueError:
        return False


def validate_domain(domain: str) -> None:
    """Validate a normalized domain (format and length); reject IP addresses. Raises ValueError."""
    if not domain:
        raise ValueError("Please enter a valid domain name. Example: example.com")
    if len(domain) > MAX_DOMAIN_LENGTH:
        raise ValueError(f"Domain length exceeds {MAX_DOMAIN_LENGTH} characters.")
    if _is_ip_address(domain):
        raise ValueError("Target must be a domain name, not an IP address. Example: example.com")
    for label in domain.split("."):
        if not label:
            raise ValueError("Domain must not have empty or trailing dots. Example: example.com")
        if len(label) > 63:
            raise ValueError("Domain label length exceeds 63 characters.")
        if not DOMAIN_LABEL_RE.match(label):
            raise ValueError("Domain has an invalid label (use letters, digits, hyphens; no leading/trailing hyphen).")
