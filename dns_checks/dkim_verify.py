"""
Structural DKIM verification against a synthetic signed-message skeleton.
Checks the signature tags, key record, key/algorithm agreement, relaxed body hash
and that the key material loads as the declared key type. The b= signature value is
not cryptographically verified.
Results: pass | neutral | fail | permerror | temperror.
"""
import base64
import binascii
import hashlib
import logging
import re
from email import message_from_bytes
from email.policy import compat32
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from core.utils import DnsError

logger = logging.getLogger("mailposture.dns")

REQUIRED_SIGNATURE_TAGS = ("v", "a", "b", "bh", "d", "s", "h")
PROBE_BODY = "Test message for DKIM analysis\r\n"
ED25519_RAW_KEY_BYTES = 32

_KEY_CLASSES = {
    "rsa": rsa.RSAPublicKey,
    "ed25519": ed25519.Ed25519PublicKey,
}

_HASHES = {
    "sha256": hashlib.sha256,
    "sha1": hashlib.sha1,
}
_WSP_RUN_RE = re.compile(r"[ \t]+")


def parse_tag_list(text: str) -> dict[str, str]:
    """
    Parse a DKIM tag-list ('v=DKIM1; k=rsa; p=MIIB...') into a tag -> value map.
    Whitespace is removed from the b, bh and p values; empty segments are skipped.
    """
    tags: dict[str, str] = {}
    for part in text.split(";"):
        part = part.strip()
        if not part or "=" not in part:
            continue
        name, value = part.split("=", 1)
        name = name.strip()
        value = value.strip()
        if name in ("b", "bh", "p"):
            value = re.sub(r"\s+", "", value)
        tags.setdefault(name, value)
    return tags


def relaxed_body(body: str) -> bytes:
    """RFC 6376 3.4.4 relaxed body canonicalization."""
    lines = body.replace("\r\n", "\n").split("\n")
    lines = [_WSP_RUN_RE.sub(" ", line).rstrip(" \t") for line in lines]
    while lines and lines[-1] == "":
        lines.pop()
    if not lines:
        return b""
    return ("\r\n".join(lines) + "\r\n").encode("utf-8")


def body_hash(body: str, algorithm: str = "sha256") -> str:
    digest = _HASHES[algorithm](relaxed_body(body)).digest()
    return base64.b64encode(digest).decode("ascii")


def build_probe_message(domain: str, selector: str) -> bytes:
    """Synthetic message whose DKIM-Signature skeleton points at selector._domainkey.domain."""
    bh = body_hash(PROBE_BODY)
    headers = [
        f"DKIM-Signature: v=1; a=rsa-sha256; c=relaxed/relaxed; d={domain}; s={selector}; "
        f"h=from:to:subject; bh={bh}; b=dGVzdA==",
        f"From: test@{domain}",
        "To: test@example.com",
        "Subject: DKIM Test",
    ]
    return ("\r\n".join(headers) + "\r\n\r\n" + PROBE_BODY).encode("utf-8")


def _result(result: str, info: str, **extra: Any) -> dict[str, Any]:
    out = {"result": result, "info": info}
    out.update(extra)
    return out


def load_public_key(key_type: str, key: bytes):
    """
    Load DKIM p= key material (already base64-decoded) with cryptography.
    RSA keys are DER SubjectPublicKeyInfo; Ed25519 keys are the raw 32 bytes (RFC 8463)
    or SubjectPublicKeyInfo. Raises ValueError when the bytes are not a key of key_type.
    """
    key_class = _KEY_CLASSES.get(key_type)
    if key_class is None:
        raise ValueError(f"Unsupported key type {key_type}")
    try:
        if key_type == "ed25519" and len(key) == ED25519_RAW_KEY_BYTES:
            public_key = ed25519.Ed25519PublicKey.from_public_bytes(key)
        else:
            public_key = serialization.load_der_public_key(key)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise ValueError(f"Malformed {key_type} public key: {e}") from e
    if not isinstance(public_key, key_class):
        raise ValueError(f"Malformed {key_type} public key: found {type(public_key).__name__}")
    return public_key


def public_key_size(public_key) -> int:
    """Modulus size for RSA; Ed25519 keys are always 256 bits."""
    if isinstance(public_key, rsa.RSAPublicKey):
        return public_key.key_size
    return 256


async def verify_message(message: bytes, resolver) -> dict[str, Any]:
    """Structurally verify the first DKIM-Signature of message using keys fetched through resolver."""
    msg = message_from_bytes(message, policy=compat32)
    header = msg.get("DKIM-Signature")
    if not header:
        return _result("none", "No DKIM-Signature header")
    sig = parse_tag_list(str(header))
    missing = [t for t in REQUIRED_SIGNATURE_TAGS if not sig.get(t)]
    if missing:
        return _result("permerror", f"Signature missing tags: {', '.join(missing)}")
    domain, selector = sig["d"], sig["s"]
    algorithm = sig["a"].lower()
    if "-" not in algorithm or algorithm.split("-", 1)[1] not in _HASHES:
        return _result("permerror", f"Unsupported signing algorithm {sig['a']}", domain=domain, selector=selector)
    sig_key_type, hash_name = algorithm.split("-", 1)

    name = f"{selector}._domainkey.{domain}"
    try:
        txts = await resolver.resolve_txt(name)
    except DnsError as e:
        return _result("temperror", str(e), domain=domain, selector=selector)
    if not txts:
        return _result("permerror", f"No key record at {name}", domain=domain, selector=selector)
    key_tags = parse_tag_list(txts[0])
    if "p" not in key_tags:
        return _result("permerror", "Key record has no p= tag", domain=domain, selector=selector)
    if not key_tags["p"]:
        return _result("fail", "Key revoked (empty p=)", domain=domain, selector=selector)
    key_type = key_tags.get("k", "rsa").lower()
    if key_type != sig_key_type:
        return _result("fail", f"Key type {key_type} does not match algorithm {sig['a']}", domain=domain, selector=selector)
    accepted = [h.strip().lower() for h in key_tags.get("h", "").split(":") if h.strip()]
    if accepted and hash_name not in accepted:
        return _result("fail", f"Key does not accept hash {hash_name}", domain=domain, selector=selector)
    try:
        key = base64.b64decode(key_tags["p"], validate=True)
    except (binascii.Error, ValueError):
        return _result("permerror", "Public key is not valid base64", domain=domain, selector=selector)

    payload = msg.get_payload()
    body = payload if isinstance(payload, str) else ""
    if body_hash(body, hash_name) != sig["bh"]:
        return _result("neutral", "Body hash did not verify", domain=domain, selector=selector)
    try:
        public_key = load_public_key(key_type, key)
    except ValueError as e:
        return _result("permerror", str(e), domain=domain, selector=selector)
    logger.debug("DKIM structural check for %s passed (%d-bit %s key)", name, public_key_size(public_key), key_type)
    return _result(
        "pass",
        "Key record and body hash verified; signature value not checked",
        domain=domain,
        selector=selector,
    )
