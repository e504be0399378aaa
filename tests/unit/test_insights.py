from datetime import date, timedelta

from braincoach.core.insights import HistoryPoint, analyze_trend, build_insights


def _points(today: date, calm: list[float], mood: int = 7, sleep: float = 7.5) -> list[HistoryPoint]:
    start = today - timedelta(days=len(calm) - 1)
    return [
        HistoryPoint(
            checkin_date=start + timedelta(days=idx),
            mood=mood,
            sleep=sleep,
            calm_index=value,
            productivity_index=70,
        )
        for idx, value in enumerate(calm)
    ]


def test_analyze_trend_needs_two_values() -> None:
    trend = analyze_trend([5.0])
    assert (trend.direction, trend.change, trend.significance) == ("stable", 0.0, "low")


def test_analyze_trend_significance_levels() -> None:
    assert analyze_trend([5, 5, 6, 6], threshold=1.0).significance == "medium"
    high = analyze_trend([4, 4, 7, 7], threshold=1.0)
    assert (high.direction, high.change, high.significance) == ("improving", 3.0, "high")
    low = analyze_trend([5, 5, 5.5, 5.5], threshold=1.0)
    assert (low.direction, low.significance) == ("stable", "low")


def test_analyze_trend_declining() -> None:
    trend = analyze_trend([80, 78, 60, 58], threshold=8)
    assert trend.direction == "declining"
    assert trend.change == -20.0


def test_build_insights_flags_declining_calm_first() -> None:
    today = date(2026, 10, 17)
    insights = build_insights(_points(today, [80, 82, 60, 58]), today=today)
    assert insights[0]["title"] == "Calm Index Trend"
    assert insights[0]["priority"] == "high"
    assert insights[0]["data"]["direction"] == "declining"


def test_build_insights_consistency_achievement() -> None:
    today = date(2026, 10, 17)
    insights = build_insights(_points(today, [70, 70, 70, 70, 70]), today=today)
    assert [item["type"] for item in insights] == ["achievement"]
    assert insights[0]["data"] == {"days": 5}


def test_build_insights_empty_history() -> None:
    assert build_insights([], today=date(2026, 10, 17)) == []
