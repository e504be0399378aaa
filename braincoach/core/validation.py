import logging
from typing import Annotated, Any, Optional, TypeVar, Union

from pydantic import AllowInfNan, BaseModel, Field, Strict, StrictInt, ValidationError, field_validator

logger = logging.getLogger("uvicorn.error")

TEXT_FIELD_MAX = 500
GOALS_MAX = 1000
CHAT_MESSAGE_MAX = 1000

ModelT = TypeVar("ModelT", bound=BaseModel)

# JSON numbers only: strings, booleans, NaN and infinities are rejected.
ScoreValue = Union[StrictInt, Annotated[float, Strict(), AllowInfNan(False)]]


def _strip(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


class CheckInForm(BaseModel):
    mood: int = Field(ge=1, le=10)
    sleep: float = Field(ge=0, le=24, multiple_of=0.5, allow_inf_nan=False)
    diet: str = Field(min_length=1, max_length=TEXT_FIELD_MAX)
    exercise: str = Field(min_length=1, max_length=TEXT_FIELD_MAX)
    stressors: str = Field(min_length=1, max_length=TEXT_FIELD_MAX)
    userGoals: str = Field(default="", max_length=GOALS_MAX)

    @field_validator("mood", "sleep", "diet", "exercise", "stressors", "userGoals", mode="before")
    @classmethod
    def strip_text(cls, value: Any) -> Any:
        return _strip(value)

    @field_validator("userGoals", mode="before")
    @classmethod
    def goals_default(cls, value: Any) -> Any:
        return "" if value is None else value


class CheckInSnapshot(BaseModel):
    mood: int = Field(ge=1, le=10)
    sleep: float = Field(ge=0, le=24, allow_inf_nan=False)
    diet: str
    exercise: str
    stressors: str


class ScoreSnapshot(BaseModel):
    calmIndex: ScoreValue
    productivityIndex: ScoreValue


class ChatMessageInput(BaseModel):
    question: str = Field(min_length=1, max_length=CHAT_MESSAGE_MAX)
    checkInData: CheckInSnapshot
    scores: ScoreSnapshot

    @field_validator("question", mode="before")
    @classmethod
    def strip_question(cls, value: Any) -> Any:
        return _strip(value)


def error_messages(exc: ValidationError) -> list[str]:
    messages: list[str] = []
    for err in exc.errors():
        # Union members add their type name to the location; keep only field names.
        path = ".".join(str(part) for part in err["loc"] if str(part) not in {"int", "float"})
        prefix = f"{path}: " if path else ""
        message = f"{prefix}{err['msg']}"
        if message not in messages:
            messages.append(message)
    return messages or ["Validation failed"]


def validate(
    model: type[ModelT], data: Any, context: Optional[str] = None
) -> tuple[Optional[ModelT], list[str]]:
    """Validate ``data`` against ``model``.

    Returns ``(instance, [])`` on success and ``(None, messages)`` otherwise. Failures are
    logged with the given context so rejected submissions still show up in the logs.
    """
    try:
        return model.model_validate(data), []
    except ValidationError as exc:
        messages = error_messages(exc)
        if context:
            logger.warning("validation_failed context=%s errors=%s", context, "; ".join(messages))
        return None, messages
