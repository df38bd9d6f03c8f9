import asyncio

from core.utils import DnsError
from dns_checks.mx import NULL_MX_DETAIL, analyze_mx, detect_providers, sort_mx
from tests.conftest import FakeResolver


def _analyze(value):
    return asyncio.run(analyze_mx("example.com", resolver=FakeResolver({("example.com", "MX"): value})))


def test_sort_mx_is_stable():
    records = [
        {"priority": 20, "exchange": "b.example.com"},
        {"priority": 10, "exchange": "a.example.com"},
        {"priority": 20, "exchange": "c.example.com"},
    ]
    assert [r["exchange"] for r in sort_mx(records)] == ["a.example.com", "b.example.com", "c.example.com"]


def test_detect_providers():
    records = [{"priority": 1, "exchange": "ASPMX.L.GOOGLE.COM"}, {"priority": 5, "exchange": "mx.zoho.eu"}]
    assert detect_providers(records) == ["google.com", "zoho.com"]


def test_redundant_unique_priorities_score_full_marks():
    report = _analyze([
        {"priority": 20, "exchange": "alt1.aspmx.l.google.com"},
        {"priority": 10, "exchange": "aspmx.l.google.com"},
    ])
    assert report["success"] is True
    assert report["records"][0]["exchange"] == "aspmx.l.google.com"
    assert report["score"]["value"] == 3
    assert report["score"]["level"] == "Excellent"
    assert report["providers"] == ["google.com"]


def test_duplicate_priorities():
    report = _analyze([
        {"priority": 10, "exchange": "mx1.example.com"},
        {"priority": 10, "exchange": "mx2.example.com"},
    ])
    assert report["score"]["value"] == 2
    assert report["score"]["level"] == "Good"
    assert "Some MX records have the same priority" in report["warnings"]
    assert "Use unique priority values for better load balancing" in report["recommendations"]


def test_single_record_suggests_backup():
    report = _analyze([{"priority": 100, "exchange": "mx.example.com"}])
    assert report["score"]["value"] == 2
    assert "Consider adding backup MX records for redundancy" in report["recommendations"]
    assert "Consider using lower priority values (closer to 0) for better delivery" in report["recommendations"]


def test_priority_zero_warns():
    report = _analyze([
        {"priority": 0, "exchange": "mx1.example.com"},
        {"priority": 10, "exchange": "mx2.example.com"},
    ])
    assert "Priority 0 detected - ensure this is intentional" in report["warnings"]


def test_sole_null_mx_scores_zero():
    report = _analyze([{"priority": 0, "exchange": ""}])
    assert report["success"] is True
    assert report["warnings"] == ["Null MX record detected - domain explicitly rejects email"]
    assert report["recommendations"] == []
    assert report["score"]["value"] == 0
    assert report["score"]["level"] == "Poor"
    assert report["score"]["details"] == [NULL_MX_DETAIL]


def test_mixed_null_and_regular_mx_warns():
    report = _analyze([
        {"priority": 0, "exchange": "."},
        {"priority": 10, "exchange": "mx.example.com"},
    ])
    assert "Mixed null and regular MX records - this configuration may cause issues" in report["warnings"]


def test_no_records():
    report = _analyze([])
    assert report["success"] is False
    assert report["error"] == "No MX records found"
    assert len(report["recommendations"]) == 3


def test_dns_failure():
    report = _analyze(DnsError("example.com", "MX", "SERVFAIL"))
    assert report["success"] is False
    assert "MX lookup for example.com failed" in report["error"]
