"""LLM-backed generators used by the check-in pipeline.

Each generator renders a prompt, asks the LLM client for a JSON object and
validates the reply against a small pydantic model. Malformed replies raise
``pydantic.ValidationError``; the pipeline treats any exception as a failed
generation.
"""

from dataclasses import dataclass
from typing import Callable

from fastapi import Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from braincoach.api.auth import get_current_user
from braincoach.core.validation import ScoreValue
from braincoach.db.models import User
from braincoach.db.session import get_db
from braincoach.services.llm import LLMClient, get_llm_client


class ScoreOutput(BaseModel):
    calmIndex: ScoreValue
    productivityIndex: ScoreValue


class RecommendationsOutput(BaseModel):
    recommendations: list[str]


class GuidanceOutput(BaseModel):
    answer: str


ScoreGenerator = Callable[[int, float, str, str, str], dict]
PersonalizedRecommendationGenerator = Callable[[float, float, str], dict]
HabitToolGenerator = Callable[[str, str, str, str, str, float, float], dict]
GuidanceGenerator = Callable[[str, float, float, str, str, str, str, str], dict]


@dataclass
class Generators:
    score: ScoreGenerator
    personalized_recommendations: PersonalizedRecommendationGenerator
    habit_tools: HabitToolGenerator
    guidance: GuidanceGenerator


SCORE_SYSTEM = 'Return strict JSON: {"calmIndex": number 0-100, "productivityIndex": number 0-100}.'
RECOMMENDATIONS_SYSTEM = 'Return strict JSON: {"recommendations": [string, ...]}.'
GUIDANCE_SYSTEM = 'Return strict JSON: {"answer": string}.'


def score_prompt(mood: int, sleep: float, diet: str, exercise: str, stressors: str) -> str:
    return (
        "Analyze the user's daily check-in data and provide a Calm Index and Productivity Index score.\n\n"
        "Data:\n"
        f"Mood: {mood}\n"
        f"Sleep: {sleep:g} hours\n"
        f"Diet: {diet}\n"
        f"Exercise: {exercise}\n"
        f"Stressors: {stressors}\n\n"
        "Instructions:\n"
        "1. Consider all factors to determine the Calm Index and Productivity Index.\n"
        "2. Calm Index reflects the user's overall calmness and peace of mind.\n"
        "3. Productivity Index reflects the user's ability to focus and be productive.\n"
        "4. Both indices should be on a scale of 0-100.\n"
        "5. Provide scores that are reasonable and reflect the data provided."
    )


def personalized_prompt(calm_index: float, productivity_index: float, user_goals: str) -> str:
    return (
        "You are a personal brain coach. Generate personalized recommendations based on the user's "
        "Calm Index, Productivity Index, and stated goals.\n\n"
        f"Calm Index: {calm_index:g}\n"
        f"Productivity Index: {productivity_index:g}\n"
        f"User Goals: {user_goals or 'not stated'}\n\n"
        "Provide 3-5 actionable recommendations to help the user rewire habits, reduce stress, and "
        "improve focus. Return the recommendations as a list of strings."
    )


def habit_tools_prompt(
    mood: str,
    sleep: str,
    diet: str,
    exercise: str,
    stressors: str,
    calm_index: float,
    productivity_index: float,
) -> str:
    return (
        "You are an AI-powered habit coach that specializes in mental wellness and productivity.\n\n"
        "Based on the user's self-reported data, provide a list of specific, actionable recommendations "
        "to detoxify their thinking and improve their mental habits.\n\n"
        "Consider the following factors:\n"
        f"- Mood: {mood}\n"
        f"- Sleep: {sleep}\n"
        f"- Diet: {diet}\n"
        f"- Exercise: {exercise}\n"
        f"- Stressors: {stressors}\n"
        f"- Calm Index: {calm_index:g}\n"
        f"- Productivity Index: {productivity_index:g}\n\n"
        'Example: ["Practice mindfulness meditation for 10 minutes daily.", '
        '"Reduce caffeine intake after 2 PM.", "Go for a 30-minute walk in nature."]'
    )


def guidance_prompt(
    question: str,
    calm_index: float,
    productivity_index: float,
    mood: str,
    sleep: str,
    diet: str,
    exercise: str,
    stressors: str,
) -> str:
    return (
        "You are an AI Brain Coach designed to answer user questions about mental wellness and provide "
        "personalized guidance.\n\n"
        "You have access to the following information about the user:\n"
        f"- Calm Index: {calm_index:g}\n"
        f"- Productivity Index: {productivity_index:g}\n"
        f"- Mood: {mood}\n"
        f"- Sleep: {sleep}\n"
        f"- Diet: {diet}\n"
        f"- Exercise: {exercise}\n"
        f"- Stressors: {stressors}\n\n"
        "Based on this information, answer the following question and provide personalized guidance:\n"
        f"{question}\n\n"
        "Remember to not provide medical advice. Refer to rewiring habits, not clinical intervention."
    )


def build_llm_generators(db: Session, user_id: int, llm_client: LLMClient) -> Generators:
    def score(mood: int, sleep: float, diet: str, exercise: str, stressors: str) -> dict:
        raw = llm_client.generate_json(
            db,
            user_id,
            score_prompt(mood, sleep, diet, exercise, stressors),
            task_type="scoring",
            system_instruction=SCORE_SYSTEM,
        )
        return ScoreOutput.model_validate(raw).model_dump()

    def personalized_recommendations(calm_index: float, productivity_index: float, user_goals: str) -> dict:
        raw = llm_client.generate_json(
            db,
            user_id,
            personalized_prompt(calm_index, productivity_index, user_goals),
            task_type="recommendations",
            system_instruction=RECOMMENDATIONS_SYSTEM,
        )
        return RecommendationsOutput.model_validate(raw).model_dump()

    def habit_tools(
        mood: str,
        sleep: str,
        diet: str,
        exercise: str,
        stressors: str,
        calm_index: float,
        productivity_index: float,
    ) -> dict:
        raw = llm_client.generate_json(
            db,
            user_id,
            habit_tools_prompt(mood, sleep, diet, exercise, stressors, calm_index, productivity_index),
            task_type="habit_tools",
            system_instruction=RECOMMENDATIONS_SYSTEM,
        )
        return RecommendationsOutput.model_validate(raw).model_dump()

    def guidance(
        question: str,
        calm_index: float,
        productivity_index: float,
        mood: str,
        sleep: str,
        diet: str,
        exercise: str,
        stressors: str,
    ) -> dict:
        raw = llm_client.generate_json(
            db,
            user_id,
            guidance_prompt(question, calm_index, productivity_index, mood, sleep, diet, exercise, stressors),
            task_type="reasoning",
            system_instruction=GUIDANCE_SYSTEM,
        )
        return GuidanceOutput.model_validate(raw).model_dump()

    return Generators(
        score=score,
        personalized_recommendations=personalized_recommendations,
        habit_tools=habit_tools,
        guidance=guidance,
    )


def get_generators(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    llm_client: LLMClient = Depends(get_llm_client),
) -> Generators:
    return build_llm_generators(db, user.id, llm_client)
