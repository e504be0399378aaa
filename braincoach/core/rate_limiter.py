import os
import threading
import time
from dataclasses import dataclass
from typing import Callable

from fastapi import HTTPException, Request, status

AUTH_RATE_LIMIT = int(os.getenv("AUTH_RATE_LIMIT", "5"))
AUTH_RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("AUTH_RATE_LIMIT_WINDOW_SECONDS", str(15 * 60)))
AI_RATE_LIMIT = int(os.getenv("AI_RATE_LIMIT", "10"))
AI_RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("AI_RATE_LIMIT_WINDOW_SECONDS", "60"))


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float


class RateLimiter:
    """Fixed-window request counter keyed by an arbitrary string."""

    def __init__(self, window_seconds: float, max_requests: int, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[int, float]] = {}

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]

    def check(self, key: str) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            self._purge_expired(now)
            count, reset_at = self._windows.get(key, (0, now + self.window_seconds))
            count += 1
            self._windows[key] = (count, reset_at)
        return RateLimitResult(
            allowed=count <= self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset_at=reset_at,
        )

    def retry_after(self, result: RateLimitResult) -> int:
        return max(1, int(round(result.reset_at - self._clock())))

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


auth_rate_limiter = RateLimiter(AUTH_RATE_LIMIT_WINDOW_SECONDS, AUTH_RATE_LIMIT)
ai_rate_limiter = RateLimiter(AI_RATE_LIMIT_WINDOW_SECONDS, AI_RATE_LIMIT)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(limiter: RateLimiter, key: str) -> None:
    result = limiter.check(key)
    if not result.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please slow down and try again shortly.",
            headers={"Retry-After": str(limiter.retry_after(result))},
        )


def limit_auth_requests(request: Request) -> None:
    enforce_rate_limit(auth_rate_limiter, f"auth:{client_ip(request)}")

