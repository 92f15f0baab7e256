"""Per-route request throttling backed by Redis.

Each throttled route names a policy. The policy's budget is read from
``Settings`` as ``RATE_LIMIT_<POLICY>`` in ``"<requests>/<seconds>"`` form,
so operators can tighten the public invitation and login routes without a
deploy. Counting is a fixed window per client address, optionally narrowed
by an identifier such as the login email.
"""

from dataclasses import dataclass
from typing import Optional
from fastapi import Request
import redis
from realty_access.config import settings
from realty_access.errors import RateLimited
import structlog

logger = structlog.get_logger()

POLICIES = (
    "login",
    "refresh",
    "logout",
    "me",
    "check",
    "register",
    "invitation_create",
    "invitation_validate",
    "invitation_accept",
)


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    limit: int
    window: int

    @classmethod
    def parse(cls, name: str, value: str) -> "RateLimitPolicy":
        """Parse ``"10/60"`` into a policy allowing 10 requests per 60 seconds."""
        try:
            limit, window = (int(part) for part in value.split("/", 1))
        except ValueError:
            raise ValueError(f"Invalid rate limit for {name}: {value!r}")
        if limit < 1 or window < 1:
            raise ValueError(f"Invalid rate limit for {name}: {value!r}")
        return cls(name=name, limit=limit, window=window)


def policy_for(name: str) -> RateLimitPolicy:
    return RateLimitPolicy.parse(name, getattr(settings, f"RATE_LIMIT_{name.upper()}"))


class RateLimiter:
    """Fixed-window counter; a no-op while no Redis client is attached."""

    def __init__(self, client: Optional[redis.Redis] = None, prefix: str = "realty_access:rate_limit"):
        self.client = client
        self.prefix = prefix

    def hit(self, policy: RateLimitPolicy, subject: str) -> Optional[int]:
        """
        Count one request against a policy.

        Returns:
            Seconds until the window resets when the request is over budget,
            otherwise None
        """
        if self.client is None:
            return None

        key = f"{self.prefix}:{policy.name}:{subject}"
        try:
            current = self.client.incr(key)
            if current == 1:
                self.client.expire(key, policy.window)
            if current <= policy.limit:
                return None
            ttl = self.client.ttl(key)
        except redis.RedisError as e:
            logger.warning("Rate limit check skipped", policy=policy.name, error=str(e))
            return None

        retry_after = ttl if ttl and ttl > 0 else policy.window
        logger.info("Rate limit exceeded", policy=policy.name, subject=subject, retry_after=retry_after)
        return retry_after


limiter = RateLimiter()


def client_subject(request: Request, identifier: Optional[str] = None) -> str:
    """Client address, plus a normalized identifier when one is given"""
    client_ip = request.client.host if request.client else "unknown"
    if identifier:
        normalized = identifier.strip().lower()
        if normalized:
            return f"{client_ip}:{normalized}"
    return client_ip


async def enforce_rate_limit(request: Request, policy_name: str, identifier: Optional[str] = None) -> None:
    policy = policy_for(policy_name)
    retry_after = limiter.hit(policy, client_subject(request, identifier))
    if retry_after is not None:
        raise RateLimited(
            f"Rate limit exceeded: {policy.limit} requests per {policy.window} seconds",
            retry_after=retry_after,
        )


def init_redis():
    """Validate every policy and attach Redis when rate limiting is enabled"""
    for name in POLICIES:
        policy_for(name)

    if not settings.RATE_LIMIT_ENABLED:
        limiter.client = None
        logger.info("Rate limiting disabled")
        return

    try:
        client = redis.from_url(settings.REDIS_URL)
        client.ping()
        limiter.client = client
        logger.info("Redis connected for rate limiting")
    except redis.RedisError as e:
        logger.warning("Redis not available for rate limiting", error=str(e))
        limiter.client = None


def rate_limit(policy_name: str):
    """Rate limiting dependency for a named policy"""
    async def rate_limiter(request: Request):
        await enforce_rate_limit(request, policy_name)

    return rate_limiter
