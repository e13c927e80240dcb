"""
Shared risk scoring — the single home of every cut point and proxy formula.

Forecast results, alert evaluation and dashboards all derive risk levels
through ``risk_level_from_score``; no call site keeps its own thresholds.
"""

from collections.abc import Iterable

# Upper bounds (exclusive) for low / medium / high; anything above is critical.
RISK_LEVEL_CUTS = (
    (0.25, "low"),
    (0.5, "medium"),
    (0.75, "high"),
)
RISK_LEVEL_ORDER = {"low": 0, "medium": 1, "high": 2, "critical": 3}

CONFIDENCE_HIGH_MIN_QUALITY = 82
CONFIDENCE_MEDIUM_MIN_QUALITY = 65


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def risk_level_from_score(score: float) -> str:
    """Map a 0-1 risk score to low / medium / high / critical."""
    for upper, level in RISK_LEVEL_CUTS:
        if score < upper:
            return level
    return "critical"


def is_elevated(level: str) -> bool:
    return RISK_LEVEL_ORDER[level] >= RISK_LEVEL_ORDER["high"]


def confidence_from_quality(quality_scores: Iterable[float]) -> str:
    """Forecast confidence from the mean data-quality score of its wells."""
    scores = list(quality_scores)
    if not scores:
        return "low"
    mean = sum(scores) / len(scores)
    if mean >= CONFIDENCE_HIGH_MIN_QUALITY:
        return "high"
    if mean >= CONFIDENCE_MEDIUM_MIN_QUALITY:
        return "medium"
    return "low"


# ─── Forecast formulas ──────────────────────────────────────────────────────


def base_drop_rate(risk_score: float) -> float:
    """Expected monthly water-table drop (m/month) used to project a well."""
    return clamp(0.18 + risk_score * 0.55, 0.08, 0.95)


def forecast_crossing_probability(risk_score: float, horizon_months: int) -> float:
    return clamp(0.12 + risk_score * 0.75 + (horizon_months / 120) * 0.1, 0.0, 0.99)


def forecast_risk_score(prob_cross: float, expected_drop_rate: float) -> float:
    return clamp(prob_cross * 0.7 + (expected_drop_rate / 0.9) * 0.3, 0.0, 1.0)


# ─── Alert proxies ──────────────────────────────────────────────────────────


def proxy_drop_rate(risk_score: float) -> float:
    return clamp(0.15 + risk_score * 0.85, 0.0, 1.3)


def proxy_crossing_probability(risk_score: float) -> float:
    return clamp(0.15 + risk_score * 0.75, 0.0, 0.99)
