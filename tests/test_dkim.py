import asyncio

from core.utils import DnsError
from dns_checks import dkim
from dns_checks.dkim import analyze_dkim, is_dkim_record, parse_dkim_tags, public_key_bits
from tests.conftest import ED25519_KEY_B64, RSA_KEY_B64, RSA_KEY_BITS, WEAK_RSA_KEY_B64, FakeResolver


def _analyze(value, selector="default"):
    name = (f"{selector}._domainkey.example.com", "TXT")
    return asyncio.run(analyze_dkim("example.com", selector, resolver=FakeResolver({name: value})))


def test_is_dkim_record():
    assert is_dkim_record(parse_dkim_tags("v=DKIM1; p="))
    assert is_dkim_record(parse_dkim_tags("k=rsa"))
    assert is_dkim_record(parse_dkim_tags("p=MIIB"))
    assert not is_dkim_record(parse_dkim_tags("google-site-verification=abc"))


def test_public_key_bits_reads_key_size():
    assert public_key_bits(RSA_KEY_B64) == RSA_KEY_BITS
    assert public_key_bits(WEAK_RSA_KEY_B64) == 512
    assert public_key_bits(ED25519_KEY_B64, "ed25519") == 256
    assert public_key_bits(ED25519_KEY_B64, "rsa") is None
    assert public_key_bits("MIIB" + "A" * 256) is None
    assert public_key_bits("!!!") is None


def test_strong_rsa_key_scores_full_marks():
    report = _analyze([f"v=DKIM1; k=rsa; h=sha256; p={RSA_KEY_B64}"])
    assert report["success"] is True
    assert report["checkedRecord"] == "default._domainkey.example.com"
    assert report["score"]["value"] == 5
    assert report["score"]["level"] == "Excellent"
    assert report["verificationResult"]["result"] == "pass"
    assert report["parsed"]["k"] == "rsa"
    assert report["keyBits"] == RSA_KEY_BITS
    assert report["warnings"] == []


def test_record_without_key_scores_one():
    report = _analyze(["v=DKIM1; p="])
    assert report["success"] is True
    assert report["score"]["value"] == 1
    assert report["score"]["level"] == "Poor"
    assert report["warnings"] == ["No public key found in DKIM record"]
    assert report["verificationResult"] is None


def test_weak_key_and_sha1():
    report = _analyze([f"v=DKIM1; k=rsa; h=sha1; p={WEAK_RSA_KEY_B64}"])
    assert "Potentially weak key length detected" in report["warnings"]
    assert "Consider using a stronger RSA key (2048+ bits)" in report["recommendations"]
    assert "Consider upgrading to SHA-256 for better security" in report["recommendations"]
    # record 1 + key 2 + rsa 1 + sha1 0.5; the sha1-only key rejects the rsa-sha256 probe
    assert report["verificationResult"]["result"] == "fail"
    assert report["score"]["value"] == 4.5


def test_testing_flag_and_service_type():
    report = _analyze([f"v=DKIM1; k=rsa; s=email; t=y; p={RSA_KEY_B64}"])
    assert "Testing mode enabled (t=y). Remove this flag for production." in report["warnings"]
    assert any("Restricted to email service" in d for d in report["score"]["details"])


def test_custom_selector_is_queried():
    report = _analyze([f"v=DKIM1; p={RSA_KEY_B64}"], selector="google")
    assert report["selector"] == "google"
    assert report["checkedRecord"] == "google._domainkey.example.com"


def test_record_not_found():
    report = _analyze([])
    assert report["success"] is False
    assert report["error"] == "DKIM record not found for selector 'default'"
    assert any("selector1" in r for r in report["recommendations"])


def test_dns_failure_reads_as_not_found():
    report = _analyze(DnsError("default._domainkey.example.com", "TXT", "SERVFAIL"))
    assert report["success"] is False
    assert report["error"] == "DKIM record not found for selector 'default'"


def test_non_dkim_record_is_invalid_format():
    report = _analyze(["some-other=thing"])
    assert report["success"] is False
    assert report["error"] == "Invalid DKIM record format for selector 'default'"
    assert "score" not in report


def test_testing_flag_reported_without_key():
    report = _analyze(["v=DKIM1; t=y; p="])
    assert report["score"]["value"] == 1
    assert report["warnings"] == [
        "No public key found in DKIM record",
        "Testing mode enabled (t=y). Remove this flag for production.",
    ]


def test_garbage_key_material_is_not_verified():
    # long enough to score as a strong key, but not a DER public key
    report = _analyze(["v=DKIM1; k=rsa; p=MIIB" + "A" * 256])
    assert report["keyBits"] is None
    assert report["verificationResult"]["result"] == "permerror"
    assert "Malformed rsa public key" in report["verificationResult"]["info"]
    assert not any("DKIM verification passed" in d for d in report["score"]["details"])
    # record 1 + key 2 + rsa 1; no hash tag, below strong length, no verification bonus
    assert report["score"]["value"] == 4


def test_ed25519_key_is_loaded():
    report = _analyze([f"v=DKIM1; k=ed25519; p={ED25519_KEY_B64}"])
    assert report["keyBits"] == 256
    assert report["parsed"]["k"] == "ed25519"


def test_structural_check_failure_leaves_report_intact(monkeypatch):
    async def broken_verify(message, resolver):
        raise RuntimeError("verifier crashed")

    monkeypatch.setattr(dkim, "verify_message", broken_verify)
    report = _analyze([f"v=DKIM1; k=rsa; p={RSA_KEY_B64}"])
    assert report["success"] is True
    assert report["verificationResult"] is None
    # record 1 + key 2 + rsa 1 + strong length 0.5
    assert report["score"]["value"] == 4.5
    assert not any("Structural DKIM check" in d for d in report["score"]["details"])
