"""
Rate limiting for the DalandanCare API.

Per-client sliding windows, one limiter per endpoint group. Calls that reach
the language model get a much tighter budget than plain lookups.
"""

import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Tuple

from fastapi import HTTPException, Request

from .structured_logging import StructuredLogger, mask_ip

logger = StructuredLogger(__name__)


class RateLimiter:
    """
    Sliding-window limiter keyed by client identifier.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: int = 900,
        clock: Callable[[], float] = time.time,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.requests: dict[str, list[float]] = defaultdict(list)

    def is_allowed(self, identifier: str) -> Tuple[bool, int, int]:
        """
        Record a request for identifier if it fits in the window.

        Returns:
            Tuple of (is_allowed, requests_remaining, retry_after_seconds).
            retry_after_seconds is 0 when allowed.
        """
        now = self.clock()
        window_start = now - self.window_seconds

        timestamps = [ts for ts in self.requests[identifier] if ts > window_start]
        self.requests[identifier] = timestamps

        if len(timestamps) >= self.max_requests:
            retry_after = int(min(timestamps) + self.window_seconds - now) + 1
            return False, 0, retry_after

        timestamps.append(now)
        return True, self.max_requests - len(timestamps), 0

    def reset(self, identifier: str):
        self.requests.pop(identifier, None)


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = 100
    window_seconds: int = 900
    message: str = "Too many requests from this IP, please try again later"


LLM_LIMIT = RateLimitConfig(
    max_requests=10,
    window_seconds=300,
    message="AI service rate limit exceeded, please wait before making another request",
)

# Endpoints that call the language model share the tighter budget
ENDPOINT_LIMITS = {
    "chat": LLM_LIMIT,
    "recommendations-generate": LLM_LIMIT,
}


def client_identifier(request: Request, trust_forwarded: bool = False) -> str:
    """Client IP of the request.

    X-Forwarded-For is client-controlled, so its first hop is used only when
    the service sits behind a trusted proxy.
    """
    forwarded_for = request.headers.get("X-Forwarded-For") if trust_forwarded else None
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimitManager:
    """Owns one RateLimiter per endpoint group."""

    def __init__(
        self,
        limits: dict[str, RateLimitConfig] = None,
        clock: Callable[[], float] = time.time,
        trust_forwarded: bool = False,
    ):
        self.limits = ENDPOINT_LIMITS if limits is None else limits
        self.clock = clock
        self.trust_forwarded = trust_forwarded
        self.limiters: dict[str, RateLimiter] = {}

    def get_limiter(self, endpoint: str) -> RateLimiter:
        if endpoint not in self.limiters:
            config = self.limits.get(endpoint, RateLimitConfig())
            self.limiters[endpoint] = RateLimiter(
                max_requests=config.max_requests,
                window_seconds=config.window_seconds,
                clock=self.clock,
            )
        return self.limiters[endpoint]

    def check(self, endpoint: str, request: Request) -> dict:
        """
        Count the request against the endpoint's limit.

        Returns:
            Rate limit headers to attach to the response.

        Raises:
            HTTPException: 429 with a Retry-After header once the limit is hit.
        """
        limiter = self.get_limiter(endpoint)
        client_ip = client_identifier(request, self.trust_forwarded)
        allowed, remaining, retry_after = limiter.is_allowed(client_ip)

        headers = {
            "X-RateLimit-Limit": str(limiter.max_requests),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Window": str(limiter.window_seconds),
        }

        if not allowed:
            headers["Retry-After"] = str(retry_after)
            logger.warning(
                "Rate limit exceeded",
                endpoint=endpoint,
                client_ip=mask_ip(client_ip),
                limit=limiter.max_requests,
                window_seconds=limiter.window_seconds,
                retry_after=retry_after,
            )
            config = self.limits.get(endpoint, RateLimitConfig())
            raise HTTPException(
                status_code=429,
                detail={"error": config.message, "retryAfter": retry_after},
                headers=headers,
            )

        return headers

    def reset(self):
        self.limiters.clear()
