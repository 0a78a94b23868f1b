"""
Launch Tracker - Request Dependencies

Accessors for the shared services stored on app.state, plus the per-request
identity and rate-limit dependencies used by the routers.
"""
import logging
from typing import Callable

from fastapi import Request, Response

from .config import Settings
from .errors import NetworkIdentityError, RateLimitError
from .services.bot_verification import BotVerifier
from .services.capacity import CapacityMonitor, DegradationState
from .services.rate_limit import RateLimiter
from .services.statistics import StatisticsService
from .services.validation import SubmissionValidator

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_monitor(request: Request) -> CapacityMonitor:
    return request.app.state.capacity_monitor


def get_validator(request: Request) -> SubmissionValidator:
    return request.app.state.validator


def get_bot_verifier(request: Request) -> BotVerifier:
    return request.app.state.bot_verifier


def get_statistics(request: Request) -> StatisticsService:
    return request.app.state.statistics


def get_degradation_state(request: Request) -> DegradationState:
    """State recorded by the capacity middleware for this request, else a fresh read."""
    state = getattr(request.state, "degradation", None)
    if state is None:
        state = request.app.state.capacity_monitor.current_state()
        request.state.degradation = state
    return state


def get_network_hash(request: Request) -> str:
    """
    Salted hash of the caller's address, computed once per request.

    Raises NetworkIdentityError when no parseable address is available.
    """
    cached = getattr(request.state, "ip_hash", None)
    if cached:
        return cached
    peer = request.client.host if request.client else None
    ip_hash = request.app.state.hasher.hash_request(request.headers, peer)
    request.state.ip_hash = ip_hash
    return ip_hash


def rate_limit(endpoint: str, require_identity: bool = True) -> Callable:
    """
    Dependency factory: fixed-window limit for one endpoint key.

    With `require_identity` an unresolvable caller address is rejected
    (writes); without it the caller passes unlimited (reads).
    """

    def dependency(request: Request, response: Response) -> None:
        limiter: RateLimiter = request.app.state.rate_limiter
        limit = limiter.limits.get(endpoint)
        try:
            ip_hash = get_network_hash(request)
        except NetworkIdentityError:
            if require_identity:
                raise
            limiter.note_unidentified(endpoint)
            return
        if not limit:
            return
        try:
            result = limiter.check(ip_hash, endpoint, limit)
        except Exception as e:
            logger.warning(f"Rate limiter unavailable for {endpoint}, failing open: {e}")
            return

        now = limiter.clock()
        if not result.allowed:
            request.state.extra_headers = result.headers(now)
            logger.warning(f"Rate limit exceeded: endpoint={endpoint} ip_hash={ip_hash[:8]}")
            raise RateLimitError(
                "Too many requests. Please try again later.",
                retry_after=result.retry_after(now),
            )
        response.headers.update(result.headers(now))

    return dependency
