import json
import os
import time
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Tuple

import httpx
from sqlalchemy.orm import Session

from braincoach.core.security import decrypt_api_key
from braincoach.db.models import ModelUsageStat, UserAIConfig

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "45"))
LLM_CONNECT_TIMEOUT_SECONDS = float(os.getenv("LLM_CONNECT_TIMEOUT_SECONDS", "10"))
LLM_WRITE_TIMEOUT_SECONDS = float(os.getenv("LLM_WRITE_TIMEOUT_SECONDS", "30"))
LLM_POOL_TIMEOUT_SECONDS = float(os.getenv("LLM_POOL_TIMEOUT_SECONDS", "45"))
LLM_RETRY_COUNT = int(os.getenv("LLM_RETRY_COUNT", "1"))
LLM_RETRY_BACKOFF_SECONDS = float(os.getenv("LLM_RETRY_BACKOFF_SECONDS", "0.75"))
LLM_MAX_TOKENS_UTILITY = int(os.getenv("LLM_MAX_TOKENS_UTILITY", "400"))
LLM_MAX_TOKENS_REASONING = int(os.getenv("LLM_MAX_TOKENS_REASONING", "800"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.4"))

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
GEMINI_URL_TEMPLATE = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent?key={key}"

# Scoring and list generation are short structured tasks; chat guidance gets the stronger model.
UTILITY_TASK_TYPES = {
    "utility",
    "scoring",
    "recommendations",
    "habit_tools",
}

SUPPORTED_PROVIDERS = {"openai", "gemini"}


class LLMRequestError(RuntimeError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


def _http_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=LLM_CONNECT_TIMEOUT_SECONDS,
        read=LLM_TIMEOUT_SECONDS,
        write=LLM_WRITE_TIMEOUT_SECONDS,
        pool=LLM_POOL_TIMEOUT_SECONDS,
    )


def _is_utility_task(task_type: str) -> bool:
    return (task_type or "").strip().lower() in UTILITY_TASK_TYPES


def _max_output_tokens(task_type: str) -> int:
    return LLM_MAX_TOKENS_UTILITY if _is_utility_task(task_type) else LLM_MAX_TOKENS_REASONING


def parse_llm_json(raw_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw_text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    # Models sometimes wrap the object in prose or code fences.
    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start != -1 and end > start:
        try:
            parsed = json.loads(raw_text[start : end + 1])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
    raise ValueError("Invalid JSON response from LLM")


def select_model_for_task(reasoning_model: str, utility_model: str, task_type: str) -> str:
    if _is_utility_task(task_type):
        return utility_model
    return reasoning_model


def _resolve_model_config(db: Session, user_id: int) -> Tuple[str, str, str, str]:
    cfg = db.query(UserAIConfig).filter(UserAIConfig.user_id == user_id).first()
    if cfg:
        return (
            cfg.ai_provider,
            cfg.ai_model,
            cfg.ai_utility_model or cfg.ai_model,
            decrypt_api_key(cfg.encrypted_api_key),
        )

    provider = os.getenv("DEFAULT_AI_PROVIDER", "").strip().lower()
    reasoning_model = os.getenv("DEFAULT_REASONING_MODEL", "").strip()
    utility_model = os.getenv("DEFAULT_UTILITY_MODEL", "").strip() or reasoning_model
    if provider == "openai":
        key = os.getenv("OPENAI_API_KEY", "")
    elif provider == "gemini":
        key = os.getenv("GEMINI_API_KEY", "")
    else:
        key = ""

    if provider and reasoning_model and key:
        return provider, reasoning_model, utility_model, key
    raise ValueError("AI config missing")


def _status_error(provider: str, model: str, exc: httpx.HTTPStatusError) -> LLMRequestError:
    status = exc.response.status_code if exc.response is not None else None
    detail = ""
    if exc.response is not None:
        detail = (exc.response.text or "").strip()[:220]
    return LLMRequestError(
        provider=provider,
        model=model,
        status_code=status,
        message=f"{provider} request failed (status={status}): {detail or 'no response body'}",
    )


def _openai_chat(
    model: str, api_key: str, prompt: str, system_instruction: str, max_output_tokens: int
) -> Tuple[str, dict[str, int]]:
    payload = {
        "model": model,
        "response_format": {"type": "json_object"},
        "temperature": LLM_TEMPERATURE,
        "messages": [
            {"role": "system", "content": system_instruction},
            {"role": "user", "content": prompt},
        ],
        "max_completion_tokens": max_output_tokens,
    }
    response = httpx.post(
        OPENAI_CHAT_URL,
        headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
        json=payload,
        timeout=_http_timeout(),
    )
    response.raise_for_status()
    data = response.json()
    usage = data.get("usage", {}) if isinstance(data, dict) else {}
    usage_tokens = {
        "prompt_tokens": int(usage.get("prompt_tokens", 0) or 0),
        "completion_tokens": int(usage.get("completion_tokens", 0) or 0),
        "total_tokens": int(usage.get("total_tokens", 0) or 0),
    }
    text = str(data["choices"][0]["message"].get("content", "")).strip()
    if not text:
        raise ValueError("OpenAI chat completion returned empty content")
    return text, usage_tokens


def _gemini_generate(
    model: str, api_key: str, prompt: str, system_instruction: str, max_output_tokens: int
) -> Tuple[str, dict[str, int]]:
    response = httpx.post(
        GEMINI_URL_TEMPLATE.format(model=model, key=api_key),
        headers={"Content-Type": "application/json"},
        json={
            "systemInstruction": {"parts": [{"text": system_instruction}]},
            "generationConfig": {
                "responseMimeType": "application/json",
                "temperature": LLM_TEMPERATURE,
                "maxOutputTokens": max_output_tokens,
            },
            "contents": [{"parts": [{"text": prompt}]}],
        },
        timeout=_http_timeout(),
    )
    response.raise_for_status()
    data = response.json()
    usage = data.get("usageMetadata", {}) if isinstance(data, dict) else {}
    prompt_tokens = int(usage.get("promptTokenCount", 0) or 0)
    completion_tokens = int(usage.get("candidatesTokenCount", 0) or 0)
    usage_tokens = {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": int(usage.get("totalTokenCount", prompt_tokens + completion_tokens) or 0),
    }
    text = str(data["candidates"][0]["content"]["parts"][0].get("text", "")).strip()
    if not text:
        raise ValueError("Gemini returned empty content")
    return text, usage_tokens


_PROVIDER_CALLS = {
    "openai": _openai_chat,
    "gemini": _gemini_generate,
}


def _request_with_retries(
    provider: str, model: str, api_key: str, prompt: str, system_instruction: str, max_output_tokens: int
) -> Tuple[str, dict[str, int]]:
    call = _PROVIDER_CALLS[provider]
    attempts = max(1, LLM_RETRY_COUNT + 1)
    last_error = "unknown error"
    for idx in range(attempts):
        try:
            return call(model, api_key, prompt, system_instruction, max_output_tokens)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code if exc.response is not None else None
            # Client errors will not improve on retry; 429 and 5xx might.
            if status is not None and status < 500 and status != 429:
                raise _status_error(provider, model, exc) from exc
            if idx < attempts - 1:
                time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
                continue
            raise _status_error(provider, model, exc) from exc
        except httpx.TimeoutException as exc:
            last_error = "timed out while waiting for response"
            if idx < attempts - 1:
                time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
                continue
            raise LLMRequestError(provider=provider, model=model, message=f"{provider} request {last_error}") from exc
        except (httpx.HTTPError, ValueError, KeyError, IndexError) as exc:
            last_error = str(exc)[:220]
            if idx < attempts - 1:
                time.sleep(LLM_RETRY_BACKOFF_SECONDS * (idx + 1))
                continue
            raise LLMRequestError(
                provider=provider, model=model, message=f"{provider} request failed: {last_error}"
            ) from exc
    raise LLMRequestError(provider=provider, model=model, message=f"{provider} request failed: {last_error}")


def _record_usage(db: Session, user_id: int, provider: str, model: str, usage_tokens: dict[str, int]) -> None:
    prompt_tokens = max(0, int(usage_tokens.get("prompt_tokens", 0) or 0))
    completion_tokens = max(0, int(usage_tokens.get("completion_tokens", 0) or 0))
    total_tokens = max(0, int(usage_tokens.get("total_tokens", prompt_tokens + completion_tokens) or 0))
    row = (
        db.query(ModelUsageStat)
        .filter(
            ModelUsageStat.user_id == user_id,
            ModelUsageStat.provider == provider,
            ModelUsageStat.model == model,
        )
        .first()
    )
    if not row:
        row = ModelUsageStat(
            user_id=user_id,
            provider=provider,
            model=model,
            request_count=0,
            prompt_tokens=0,
            completion_tokens=0,
            total_tokens=0,
        )
        db.add(row)
    row.request_count += 1
    row.prompt_tokens += prompt_tokens
    row.completion_tokens += completion_tokens
    row.total_tokens += total_tokens
    row.last_used_at = datetime.now(timezone.utc)


class LLMClient(Protocol):
    def generate_json(
        self,
        db: Session,
        user_id: int,
        prompt: str,
        task_type: str = "reasoning",
        system_instruction: str = "",
    ) -> dict[str, Any]:
        ...


class RealLLMClient:
    def generate_json(
        self,
        db: Session,
        user_id: int,
        prompt: str,
        task_type: str = "reasoning",
        system_instruction: str = "",
    ) -> dict[str, Any]:
        provider, reasoning_model, utility_model, api_key = _resolve_model_config(db, user_id)
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError("Unsupported AI provider")
        model = select_model_for_task(reasoning_model, utility_model, task_type)
        raw, usage_tokens = _request_with_retries(
            provider,
            model,
            api_key,
            prompt,
            system_instruction or "Return strict JSON.",
            _max_output_tokens(task_type),
        )
        _record_usage(db, user_id, provider, model, usage_tokens)
        db.commit()
        return parse_llm_json(raw)


def get_llm_client() -> LLMClient:
    return RealLLMClient()
