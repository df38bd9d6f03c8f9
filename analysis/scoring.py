"""
Score construction and rule-based scoring shared by the protocol analyzers.
A Score is {value, outOf, level, details}; level is a step function of value/outOf.
Each analyzer declares an ordered list of named ScoringRule objects; apply_rules
runs them in order and accumulates points, details, warnings and recommendations.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

logger = logging.getLogger("mailposture.analysis")

# Level bands as a fraction of outOf (Excellent >= 80%, Good >= 60%, Fair >= 40%)
LEVEL_BANDS = (
    (0.8, "Excellent"),
    (0.6, "Good"),
    (0.4, "Fair"),
)
LEVEL_FLOOR = "Poor"


def round1(value: float) -> float:
    """Round half up to one decimal (2.25 -> 2.3)."""
    return math.floor(value * 10 + 0.5) / 10


def score_level(value: float, out_of: float, thresholds: Optional[Sequence[tuple[float, str]]] = None) -> str:
    """
    Map a score to Poor/Fair/Good/Excellent.
    thresholds: optional absolute (min_value, level) pairs, highest first; default is LEVEL_BANDS scaled to out_of.
    """
    if thresholds is not None:
        for minimum, level in thresholds:
            if value >= minimum:
                return level
        return LEVEL_FLOOR
    if out_of <= 0:
        return LEVEL_FLOOR
    ratio = value / out_of
    for fraction, level in LEVEL_BANDS:
        if ratio >= fraction:
            return level
    return LEVEL_FLOOR


def build_score(
    value: float,
    out_of: float,
    details: Optional[list[str]] = None,
    thresholds: Optional[Sequence[tuple[float, str]]] = None,
) -> dict[str, Any]:
    """Clamp to [0, out_of], round to one decimal, attach level. details=None omits the key."""
    final = round1(max(min(value, out_of), 0))
    score: dict[str, Any] = {
        "value": final,
        "outOf": out_of,
        "level": score_level(final, out_of, thresholds),
    }
    if details is not None:
        score["details"] = list(details)
    return score


@dataclass
class RuleOutcome:
    """What one rule contributes. urgent warnings/recommendations go to the front of the lists."""

    points: float = 0.0
    details: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    urgent: bool = False


@dataclass(frozen=True)
class ScoringRule:
    """A named, pure scoring step: parsed record -> RuleOutcome (or None when the rule does not apply)."""

    name: str
    evaluate: Callable[[dict[str, Any]], Optional[RuleOutcome]]


@dataclass
class RuleResult:
    points: float = 0.0
    details: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    applied: list[str] = field(default_factory=list)


def apply_rules(rules: Sequence[ScoringRule], parsed: dict[str, Any]) -> RuleResult:
    """Run rules in order against parsed; urgent outcomes are prepended, the rest appended."""
    result = RuleResult()
    for rule in rules:
        outcome = rule.evaluate(parsed)
        if outcome is None:
            continue
        result.applied.append(rule.name)
        result.points += outcome.points
        result.details.extend(outcome.details)
        if outcome.urgent:
            result.warnings[:0] = outcome.warnings
            result.recommendations[:0] = outcome.recommendations
        else:
            result.warnings.extend(outcome.warnings)
            result.recommendations.extend(outcome.recommendations)
        if outcome.points:
            logger.debug("rule %s: %+.2f", rule.name, outcome.points)
    return result


def points_label(points: float) -> str:
    """'+1 point', '+2 points', '+0.5 points'."""
    text = f"{points:g}"
    return f"+{text} point" if points == 1 else f"+{text} points"
