import asyncio

from analysis import aggregator
from analysis.aggregator import (
    PRIORITY_DKIM_MISSING,
    PRIORITY_DMARC_MISSING,
    PRIORITY_DMARC_NONE,
    PRIORITY_MX_MISSING,
    PRIORITY_SPF_MISSING,
    analyze_all,
    overall_score,
)
from dns_checks import dmarc
from tests.conftest import FakeResolver


def test_strongest_configuration_scores_ten(strong_domain_resolver):
    report = asyncio.run(analyze_all("example.com", resolver=strong_domain_resolver))
    assert report["domain"] == "example.com"
    assert report["overallScore"] == {"value": 10.0, "outOf": 10, "level": "Excellent"}
    assert report["summary"]["totalChecks"] == 4
    assert report["summary"]["passedChecks"] == 4
    assert report["summary"]["priorityRecommendations"] == []
    for name in ("dmarc", "spf", "dkim", "mx"):
        assert report[name]["success"] is True


def test_nothing_configured_scores_zero():
    report = asyncio.run(analyze_all("example.com", resolver=FakeResolver()))
    assert report["overallScore"]["value"] == 0
    assert report["overallScore"]["level"] == "Poor"
    assert report["summary"]["passedChecks"] == 0
    assert report["summary"]["priorityRecommendations"] == [
        PRIORITY_DMARC_MISSING,
        PRIORITY_SPF_MISSING,
        PRIORITY_DKIM_MISSING,
        PRIORITY_MX_MISSING,
    ]


def test_monitoring_only_dmarc_is_important(strong_domain_resolver):
    strong_domain_resolver.add("_dmarc.example.com", "TXT", ["v=DMARC1; p=none"])
    report = asyncio.run(analyze_all("example.com", resolver=strong_domain_resolver))
    assert report["summary"]["priorityRecommendations"] == [PRIORITY_DMARC_NONE]
    assert report["summary"]["warnings"][0].startswith('DMARC policy is "none"')


def test_summary_lists_follow_protocol_order(strong_domain_resolver):
    strong_domain_resolver.add("_dmarc.example.com", "TXT", ["v=DMARC1; p=none"])
    strong_domain_resolver.add("example.com", "TXT", ["v=spf1 ?all"])
    report = asyncio.run(analyze_all("example.com", resolver=strong_domain_resolver))
    warnings = report["summary"]["warnings"]
    dmarc_idx = next(i for i, w in enumerate(warnings) if "DMARC" in w)
    spf_idx = next(i for i, w in enumerate(warnings) if "?all" in w)
    assert dmarc_idx < spf_idx


def test_raising_analysis_is_isolated(strong_domain_resolver, monkeypatch):
    async def boom(domain, resolver=None):
        raise RuntimeError("resolver exploded")

    monkeypatch.setattr(dmarc, "analyze_dmarc", boom)
    report = asyncio.run(aggregator.analyze_all("example.com", resolver=strong_domain_resolver))
    assert report["dmarc"] == {
        "success": False,
        "domain": "example.com",
        "error": "resolver exploded",
        "warnings": [],
        "recommendations": [],
    }
    assert report["spf"]["success"] is True
    assert report["summary"]["passedChecks"] == 3
    assert report["summary"]["priorityRecommendations"] == [PRIORITY_DMARC_MISSING]
    # 5 + 5 + 3 out of 13 applicable points
    assert report["overallScore"]["value"] == 10.0


def test_overall_score_only_counts_scored_successes():
    reports = [
        {"success": True, "score": {"value": 2.5, "outOf": 5}},
        {"success": True, "score": {"value": 1, "outOf": 3}},
        {"success": False, "error": "x"},
    ]
    assert overall_score(reports) == {"value": 4.4, "outOf": 10, "level": "Fair"}
    assert overall_score([])["value"] == 0
