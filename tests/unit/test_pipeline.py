import pytest

from braincoach.core.pipeline import (
    CHAT_FAILURE_MESSAGE,
    CHECKIN_FAILURE_MESSAGE,
    CHECKIN_REQUIRED_ANSWER,
    INVALID_FORM_MESSAGE,
    format_mood,
    format_sleep,
    submit_chat_message,
    submit_checkin,
)
from conftest import FakeGenerators

# Generator output is not pure, so repeated submissions are never compared for equality.


def _form(**overrides) -> dict:
    form = {
        "mood": "7",
        "sleep": "8",
        "diet": "Healthy meals",
        "exercise": "30 min walk",
        "stressors": "Work deadlines",
        "userGoals": "Reduce stress",
    }
    form.update(overrides)
    return form


def _check_in(**overrides) -> dict:
    snapshot = {"mood": 7, "sleep": 8, "diet": "Healthy meals", "exercise": "30 min walk", "stressors": "Work"}
    snapshot.update(overrides)
    return snapshot


def test_concrete_checkin_yields_exact_result() -> None:
    fake = FakeGenerators()
    result = submit_checkin(_form(), fake.as_generators())
    assert result.model_dump(exclude_none=True) == {
        "status": "success",
        "data": {
            "scores": {"calmIndex": 75, "productivityIndex": 80},
            "personalizedRecommendations": ["Practice mindfulness", "Take breaks"],
            "habitTools": ["Deep breathing", "Exercise"],
        },
    }


def test_generators_receive_parsed_and_formatted_inputs() -> None:
    fake = FakeGenerators()
    submit_checkin(_form(), fake.as_generators())
    assert [name for name, _ in fake.calls] == ["score", "personalized_recommendations", "habit_tools"]
    assert fake.called("score") == [(7, 8.0, "Healthy meals", "30 min walk", "Work deadlines")]
    assert fake.called("personalized_recommendations") == [(75, 80, "Reduce stress")]
    assert fake.called("habit_tools") == [
        ("7/10", "8 hours", "Healthy meals", "30 min walk", "Work deadlines", 75, 80)
    ]


def test_scores_are_passed_through_unclamped() -> None:
    fake = FakeGenerators(scores={"calmIndex": 120, "productivityIndex": -5.5})
    result = submit_checkin(_form(), fake.as_generators())
    assert result.status == "success"
    assert result.data.scores.calmIndex == 120
    assert result.data.scores.productivityIndex == -5.5


@pytest.mark.parametrize(
    "overrides",
    [
        {"mood": "0"},
        {"mood": "11"},
        {"mood": "seven"},
        {"sleep": "-1"},
        {"sleep": "25"},
        {"sleep": "7.3"},
        {"diet": "   "},
        {"exercise": ""},
        {"stressors": "x" * 501},
        {"mood": None},
    ],
)
def test_invalid_form_makes_no_generator_calls(overrides: dict) -> None:
    fake = FakeGenerators()
    result = submit_checkin(_form(**overrides), fake.as_generators())
    assert result.status == "error"
    assert result.error == INVALID_FORM_MESSAGE
    assert result.data is None
    assert fake.calls == []


def test_goals_are_optional_and_fractional_sleep_accepted() -> None:
    fake = FakeGenerators()
    form = _form(sleep="6.5")
    del form["userGoals"]
    result = submit_checkin(form, fake.as_generators())
    assert result.status == "success"
    assert fake.called("personalized_recommendations") == [(75, 80, "")]
    assert fake.called("habit_tools")[0][1] == "6.5 hours"


def test_score_failure_stops_pipeline_and_reports() -> None:
    fake = FakeGenerators(scores=RuntimeError("provider down"))
    reported = []
    result = submit_checkin(_form(), fake.as_generators(), error_reporter=lambda exc, flow: reported.append(flow))
    assert result.status == "error"
    assert result.error == CHECKIN_FAILURE_MESSAGE
    assert [name for name, _ in fake.calls] == ["score"]
    assert reported == ["checkin"]


def test_habit_tool_failure_discards_partial_results() -> None:
    fake = FakeGenerators(habit_tools=TimeoutError("slow"))
    result = submit_checkin(_form(), fake.as_generators())
    assert result.status == "error"
    assert result.error == CHECKIN_FAILURE_MESSAGE
    assert result.data is None


def test_malformed_generator_reply_is_a_generation_failure() -> None:
    fake = FakeGenerators(personalized={"items": ["wrong key"]})
    result = submit_checkin(_form(), fake.as_generators())
    assert result.error == CHECKIN_FAILURE_MESSAGE


def test_failing_error_reporter_does_not_mask_result() -> None:
    def broken_reporter(exc, flow):
        raise RuntimeError("sink offline")

    fake = FakeGenerators(scores=ValueError("bad json"))
    result = submit_checkin(_form(), fake.as_generators(), error_reporter=broken_reporter)
    assert result.error == CHECKIN_FAILURE_MESSAGE


@pytest.mark.parametrize(
    "check_in,scores",
    [
        (_check_in(diet=""), {"calmIndex": 70, "productivityIndex": 60}),
        (_check_in(), {"calmIndex": 0, "productivityIndex": 60}),
    ],
)
def test_chat_grounding_guard_skips_guidance(check_in: dict, scores: dict) -> None:
    fake = FakeGenerators()
    result = submit_chat_message("How do I focus?", check_in, scores, fake.as_generators())
    assert result.status == "success"
    assert result.answer == CHECKIN_REQUIRED_ANSWER
    assert fake.calls == []


def test_chat_returns_guidance_answer() -> None:
    fake = FakeGenerators(guidance={"answer": "X"})
    result = submit_chat_message(
        "  How do I focus?  ", _check_in(), {"calmIndex": 70, "productivityIndex": 60.5}, fake.as_generators()
    )
    assert result.model_dump(exclude_none=True) == {"status": "success", "answer": "X"}
    assert fake.called("guidance") == [
        ("How do I focus?", 70, 60.5, "7/10", "8 hours", "Healthy meals", "30 min walk", "Work")
    ]


def test_chat_validation_errors_are_joined() -> None:
    fake = FakeGenerators()
    result = submit_chat_message("   ", _check_in(mood=12), {"calmIndex": "high"}, fake.as_generators())
    assert result.status == "error"
    assert "question:" in result.error
    assert "checkInData.mood:" in result.error
    assert "scores.calmIndex:" in result.error
    assert "scores.productivityIndex:" in result.error
    assert ", " in result.error
    assert fake.calls == []


def test_chat_guidance_failure_is_generic() -> None:
    fake = FakeGenerators(guidance=RuntimeError("boom"))
    reported = []
    result = submit_chat_message(
        "Help?",
        _check_in(),
        {"calmIndex": 70, "productivityIndex": 60},
        fake.as_generators(),
        error_reporter=lambda exc, flow: reported.append((type(exc).__name__, flow)),
    )
    assert result.status == "error"
    assert result.error == CHAT_FAILURE_MESSAGE
    assert reported == [("RuntimeError", "chat")]


def test_mood_and_sleep_formatting() -> None:
    assert format_mood(7) == "7/10"
    assert format_sleep(8.0) == "8 hours"
    assert format_sleep(7.5) == "7.5 hours"


@pytest.mark.parametrize(
    "scores",
    [
        {"calmIndex": float("nan"), "productivityIndex": 60},
        {"calmIndex": 70, "productivityIndex": float("inf")},
        {"calmIndex": float("-inf"), "productivityIndex": 60},
    ],
)
def test_chat_rejects_non_finite_scores(scores: dict) -> None:
    fake = FakeGenerators()
    result = submit_chat_message("Help?", _check_in(), scores, fake.as_generators())
    assert result.status == "error"
    assert "scores." in result.error
    assert fake.calls == []


def test_chat_rejects_non_finite_sleep() -> None:
    fake = FakeGenerators()
    result = submit_chat_message(
        "Help?", _check_in(sleep=float("nan")), {"calmIndex": 70, "productivityIndex": 60}, fake.as_generators()
    )
    assert result.status == "error"
    assert result.error.startswith("checkInData.sleep:")
    assert fake.calls == []


def test_checkin_rejects_nan_sleep() -> None:
    fake = FakeGenerators()
    result = submit_checkin(_form(sleep="nan"), fake.as_generators())
    assert result.error == INVALID_FORM_MESSAGE
    assert fake.calls == []


@pytest.mark.parametrize(
    "scores",
    [
        {"calmIndex": "75", "productivityIndex": 80},
        {"calmIndex": 75, "productivityIndex": True},
        {"calmIndex": float("nan"), "productivityIndex": 80},
    ],
)
def test_non_numeric_generator_scores_are_a_generation_failure(scores: dict) -> None:
    fake = FakeGenerators(scores=scores)
    result = submit_checkin(_form(), fake.as_generators())
    assert result.status == "error"
    assert result.error == CHECKIN_FAILURE_MESSAGE
    assert [name for name, _ in fake.calls] == ["score"]
