from analysis.scoring import (
    RuleOutcome,
    ScoringRule,
    apply_rules,
    build_score,
    points_label,
    round1,
    score_level,
)


def test_round1_rounds_half_up():
    assert round1(2.25) == 2.3
    assert round1(4.375) == 4.4
    assert round1(3.0) == 3.0


def test_score_level_bands_scale_with_out_of():
    assert score_level(4, 5) == "Excellent"
    assert score_level(3, 5) == "Good"
    assert score_level(2, 5) == "Fair"
    assert score_level(1.9, 5) == "Poor"
    assert score_level(8, 10) == "Excellent"
    assert score_level(0, 0) == "Poor"


def test_score_level_absolute_thresholds():
    thresholds = ((2.5, "Excellent"), (2.0, "Good"), (1.0, "Fair"))
    assert score_level(3, 3, thresholds) == "Excellent"
    assert score_level(2, 3, thresholds) == "Good"
    assert score_level(1, 3, thresholds) == "Fair"
    assert score_level(0, 3, thresholds) == "Poor"


def test_build_score_clamps_and_rounds():
    assert build_score(6.5, 5)["value"] == 5
    assert build_score(-1, 5)["value"] == 0
    score = build_score(3.75, 5, ["a"])
    assert score == {"value": 3.8, "outOf": 5, "level": "Good", "details": ["a"]}
    assert "details" not in build_score(1, 5)


def test_apply_rules_prepends_urgent_outcomes():
    rules = (
        ScoringRule("first", lambda p: RuleOutcome(points=1, warnings=["w1"], recommendations=["r1"])),
        ScoringRule("skipped", lambda p: None),
        ScoringRule("urgent", lambda p: RuleOutcome(warnings=["fatal"], recommendations=["fix"], urgent=True)),
        ScoringRule("last", lambda p: RuleOutcome(points=0.5, details=["d"])),
    )
    result = apply_rules(rules, {})
    assert result.points == 1.5
    assert result.warnings == ["fatal", "w1"]
    assert result.recommendations == ["fix", "r1"]
    assert result.details == ["d"]
    assert result.applied == ["first", "urgent", "last"]


def test_points_label():
    assert points_label(1) == "+1 point"
    assert points_label(2) == "+2 points"
    assert points_label(0.5) == "+0.5 points"
