from dataclasses import asdict, dataclass
from datetime import date, timedelta
from statistics import mean
from typing import Any, Optional, Sequence

# Minimum absolute change between half-period means per metric before a trend counts.
TREND_THRESHOLDS: dict[str, float] = {
    "mood": 1.0,
    "sleep": 0.75,
    "calm_index": 8.0,
    "productivity_index": 8.0,
}

METRIC_LABELS: dict[str, tuple[str, str]] = {
    "mood": ("Mood Trend", "mood"),
    "sleep": ("Sleep Pattern", "sleep duration"),
    "calm_index": ("Calm Index Trend", "Calm Index"),
    "productivity_index": ("Productivity Index Trend", "Productivity Index"),
}

CONSISTENCY_WINDOW_DAYS = 7
CONSISTENCY_MIN_DAYS = 5


@dataclass
class Trend:
    direction: str
    change: float
    significance: str


@dataclass
class HistoryPoint:
    checkin_date: date
    mood: float
    sleep: float
    calm_index: float
    productivity_index: float


def analyze_trend(values: Sequence[float], threshold: float = 1.0) -> Trend:
    """Compare the mean of the later half of ``values`` with the earlier half."""
    if len(values) < 2:
        return Trend(direction="stable", change=0.0, significance="low")
    midpoint = len(values) // 2
    first = mean(values[:midpoint])
    second = mean(values[midpoint:])
    change = round(second - first, 2)
    magnitude = abs(change)
    if magnitude >= threshold * 2:
        significance = "high"
    elif magnitude >= threshold:
        significance = "medium"
    else:
        significance = "low"
    if significance == "low":
        direction = "stable"
    else:
        direction = "improving" if change > 0 else "declining"
    return Trend(direction=direction, change=change, significance=significance)


def _trend_insight(metric: str, trend: Trend) -> Optional[dict[str, Any]]:
    if trend.direction == "stable":
        return None
    title, label = METRIC_LABELS[metric]
    unit = " hours" if metric == "sleep" else " points"
    return {
        "type": "trend",
        "title": title,
        "description": f"Your {label} has been {trend.direction} recently, a change of {abs(trend.change):g}{unit}.",
        "data": asdict(trend),
        "actionable": True,
        "priority": "high" if trend.direction == "declining" else "medium",
    }


def _consistency_insight(history: Sequence[HistoryPoint], today: date) -> Optional[dict[str, Any]]:
    window_start = today - timedelta(days=CONSISTENCY_WINDOW_DAYS - 1)
    days = {point.checkin_date for point in history if window_start <= point.checkin_date <= today}
    if len(days) < CONSISTENCY_MIN_DAYS:
        return None
    return {
        "type": "achievement",
        "title": "Consistency Achievement",
        "description": f"You checked in on {len(days)} of the last {CONSISTENCY_WINDOW_DAYS} days. Keep it up!",
        "data": {"days": len(days)},
        "actionable": False,
        "priority": "low",
    }


def build_insights(history: Sequence[HistoryPoint], today: date) -> list[dict[str, Any]]:
    ordered = sorted(history, key=lambda point: point.checkin_date)
    insights: list[dict[str, Any]] = []
    for metric, threshold in TREND_THRESHOLDS.items():
        values = [float(getattr(point, metric)) for point in ordered]
        insight = _trend_insight(metric, analyze_trend(values, threshold))
        if insight:
            insights.append(insight)
    consistency = _consistency_insight(ordered, today)
    if consistency:
        insights.append(consistency)
    priority_rank = {"high": 0, "medium": 1, "low": 2}
    return sorted(insights, key=lambda item: priority_rank[item["priority"]])
