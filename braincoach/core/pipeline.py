"""Check-in to insight pipeline.

``submit_checkin`` turns one submitted form into scores and recommendations by
running three generators in order; ``submit_chat_message`` answers a coaching
question against the latest check-in. Both return a tagged result and never
raise: validation problems and generator failures come back as
``status="error"`` with a fixed user-facing message, while the underlying
exception is logged and handed to the error reporter.
"""

import logging
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel

from braincoach.core.error_tracker import ErrorReporter
from braincoach.core.validation import ChatMessageInput, CheckInForm, ScoreValue, validate
from braincoach.services.generators import Generators

logger = logging.getLogger("uvicorn.error")

INVALID_FORM_MESSAGE = "Invalid form data."
CHECKIN_FAILURE_MESSAGE = "Failed to process data. Please try again."
CHAT_FAILURE_MESSAGE = "Sorry, I couldn't process that. Please try again."
CHECKIN_REQUIRED_ANSWER = (
    "I can answer your questions more effectively once you've completed your daily check-in. "
    "Please fill out the check-in form first."
)

CHECKIN_FIELDS = ("mood", "sleep", "diet", "exercise", "stressors", "userGoals")


class ScorePair(BaseModel):
    calmIndex: ScoreValue
    productivityIndex: ScoreValue


class CheckinData(BaseModel):
    scores: ScorePair
    personalizedRecommendations: list[str]
    habitTools: list[str]


class CheckinResult(BaseModel):
    status: Literal["success", "error"]
    data: Optional[CheckinData] = None
    error: Optional[str] = None


class ChatResult(BaseModel):
    status: Literal["success", "error"]
    answer: Optional[str] = None
    error: Optional[str] = None


def format_mood(mood: Union[int, float]) -> str:
    return f"{mood:g}/10"


def format_sleep(sleep: Union[int, float]) -> str:
    return f"{sleep:g} hours"


def _report(error_reporter: Optional[ErrorReporter], exc: Exception, flow: str) -> None:
    if error_reporter is None:
        return
    try:
        error_reporter(exc, flow)
    except Exception:
        logger.exception("error_reporter_failed flow=%s", flow)


def submit_checkin(
    raw_form_fields: Mapping[str, Any],
    generators: Generators,
    error_reporter: Optional[ErrorReporter] = None,
) -> CheckinResult:
    fields = {name: raw_form_fields.get(name) for name in CHECKIN_FIELDS if raw_form_fields.get(name) is not None}
    checkin, _ = validate(CheckInForm, fields, context="daily_checkin")
    if checkin is None:
        return CheckinResult(status="error", error=INVALID_FORM_MESSAGE)

    try:
        # Recommendations both depend on the scores, so the calls stay strictly ordered.
        scores = ScorePair.model_validate(
            generators.score(checkin.mood, checkin.sleep, checkin.diet, checkin.exercise, checkin.stressors)
        )
        personalized = generators.personalized_recommendations(
            scores.calmIndex, scores.productivityIndex, checkin.userGoals
        )
        habit_tools = generators.habit_tools(
            format_mood(checkin.mood),
            format_sleep(checkin.sleep),
            checkin.diet,
            checkin.exercise,
            checkin.stressors,
            scores.calmIndex,
            scores.productivityIndex,
        )
        data = CheckinData(
            scores=scores,
            personalizedRecommendations=personalized["recommendations"],
            habitTools=habit_tools["recommendations"],
        )
    except Exception as exc:
        logger.exception("checkin_generation_error detail=%s", str(exc)[:220])
        _report(error_reporter, exc, "checkin")
        return CheckinResult(status="error", error=CHECKIN_FAILURE_MESSAGE)

    return CheckinResult(status="success", data=data)


def submit_chat_message(
    question: Any,
    check_in_snapshot: Any,
    score_snapshot: Any,
    generators: Generators,
    error_reporter: Optional[ErrorReporter] = None,
) -> ChatResult:
    parsed, errors = validate(
        ChatMessageInput,
        {"question": question, "checkInData": check_in_snapshot, "scores": score_snapshot},
        context="chat_message",
    )
    if parsed is None:
        return ChatResult(status="error", error=", ".join(errors))

    check_in = parsed.checkInData
    scores = parsed.scores
    if check_in.diet == "" or scores.calmIndex == 0:
        return ChatResult(status="success", answer=CHECKIN_REQUIRED_ANSWER)

    try:
        reply = generators.guidance(
            parsed.question,
            scores.calmIndex,
            scores.productivityIndex,
            format_mood(check_in.mood),
            format_sleep(check_in.sleep),
            check_in.diet,
            check_in.exercise,
            check_in.stressors,
        )
        answer = str(reply["answer"])
    except Exception as exc:
        logger.exception("chat_generation_error detail=%s", str(exc)[:220])
        _report(error_reporter, exc, "chat")
        return ChatResult(status="error", error=CHAT_FAILURE_MESSAGE)

    return ChatResult(status="success", answer=answer)
