"""
Shared fixtures: an in-memory resolver so analyzers run without network access.
"""
import base64

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa


class FakeResolver:
    """
    Maps (name, rtype) to a list of answers or an exception instance to raise.
    Unknown names resolve to [] (not found).
    """

    def __init__(self, records=None):
        self.records = {}
        self.queries = []
        for (name, rtype), value in (records or {}).items():
            self.add(name, rtype, value)

    def add(self, name, rtype, value):
        self.records[(name.lower(), rtype.upper())] = value

    async def resolve(self, name, rtype):
        key = (name.lower(), rtype.upper())
        self.queries.append(key)
        value = self.records.get(key, [])
        if isinstance(value, BaseException):
            raise value
        return list(value)

    async def resolve_txt(self, name):
        return await self.resolve(name, "TXT")

    async def resolve_mx(self, name):
        return await self.resolve(name, "MX")


def _spki_b64(public_key):
    der = public_key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)
    return base64.b64encode(der).decode("ascii")


RSA_KEY_BITS = 2048
RSA_KEY_B64 = _spki_b64(rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_BITS).public_key())
# 512-bit modulus, too small to generate; built from its numbers instead
WEAK_RSA_KEY_B64 = _spki_b64(rsa.RSAPublicNumbers(65537, (1 << 511) + 1).public_key())
ED25519_KEY_B64 = base64.b64encode(
    ed25519.Ed25519PrivateKey.generate().public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )
).decode("ascii")


@pytest.fixture
def fake_resolver():
    return FakeResolver()


@pytest.fixture
def strong_domain_resolver():
    """example.com with the strongest configuration of all four protocols."""
    return FakeResolver({
        ("example.com", "TXT"): ["v=spf1 ip4:8.8.8.0/24 -all", "google-site-verification=abc"],
        ("default._domainkey.example.com", "TXT"): [f"v=DKIM1; k=rsa; h=sha256; p={RSA_KEY_B64}"],
        ("_dmarc.example.com", "TXT"): [
            "v=DMARC1; p=reject; rua=mailto:dmarc@example.com; adkim=s; aspf=s"
        ],
        ("example.com", "MX"): [
            {"priority": 10, "exchange": "aspmx.l.google.com"},
            {"priority": 20, "exchange": "alt1.aspmx.l.google.com"},
        ],
    })
