"""
Bot Verification

Checks the caller's challenge token against Cloudflare Turnstile.

Only an explicit "success: false" from the verification service rejects a
request. A missing secret, a missing token, HTTP errors and network failures
fail open: the request proceeds and the degraded mode is logged once.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

import requests

logger = logging.getLogger(__name__)

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"
VERIFY_TIMEOUT_SECONDS = 3.0


@dataclass
class VerificationResult:
    passed: bool
    degraded: bool = False
    error_codes: List[str] = field(default_factory=list)
    hostname: Optional[str] = None
    challenge_ts: Optional[str] = None


class BotVerifier:
    """
    Turnstile client with a single degraded-mode flag.

    `degraded` is True while verification cannot be performed (no secret,
    service unreachable); callers use it to relax the token-presence rule.
    """

    def __init__(
        self,
        secret_key: str,
        session: Optional[requests.Session] = None,
        verify_url: str = TURNSTILE_VERIFY_URL,
        timeout: float = VERIFY_TIMEOUT_SECONDS,
    ):
        self.secret_key = secret_key or ""
        self.session = session or requests.Session()
        self.verify_url = verify_url
        self.timeout = timeout
        self._degraded_reason: Optional[str] = None
        self._lock = threading.Lock()
        if not self.secret_key:
            self._enter_degraded("missing-input-secret")

    @property
    def degraded(self) -> bool:
        return self._degraded_reason is not None

    def _enter_degraded(self, reason: str) -> None:
        with self._lock:
            if self._degraded_reason == reason:
                return
            self._degraded_reason = reason
        if reason == "missing-input-secret":
            logger.error("Turnstile secret key is missing; bot verification disabled (fail open)")
        else:
            logger.warning(f"Turnstile verification degraded ({reason}); failing open")

    def _leave_degraded(self) -> None:
        with self._lock:
            if self._degraded_reason is None:
                return
            self._degraded_reason = None
        logger.info("Turnstile verification recovered")

    def verify(self, token: Optional[str], remote_ip_hash: Optional[str] = None) -> VerificationResult:
        """Verify a challenge token. Never raises for transport failures."""
        if not self.secret_key:
            return VerificationResult(passed=True, degraded=True, error_codes=["missing-input-secret"])

        if not token or not isinstance(token, str):
            logger.warning("Turnstile token is missing; allowing request (fail open)")
            return VerificationResult(passed=True, degraded=True, error_codes=["missing-input-response"])

        try:
            response = self.session.post(
                self.verify_url,
                data={"secret": self.secret_key, "response": token},
                timeout=self.timeout,
            )
        except requests.Timeout:
            self._enter_degraded("timeout")
            logger.warning(f"Turnstile verification timed out after {self.timeout:g}s")
            return VerificationResult(passed=True, degraded=True, error_codes=["network-error"])
        except requests.RequestException as e:
            self._enter_degraded("network-error")
            logger.warning(f"Turnstile verification request failed: {e}")
            return VerificationResult(passed=True, degraded=True, error_codes=["network-error"])

        if response.status_code != 200:
            self._enter_degraded(f"http-{response.status_code}")
            logger.error(f"Turnstile API returned HTTP {response.status_code}")
            return VerificationResult(
                passed=True, degraded=True, error_codes=[f"http-{response.status_code}"]
            )

        try:
            payload = response.json()
        except ValueError:
            self._enter_degraded("invalid-json")
            return VerificationResult(passed=True, degraded=True, error_codes=["invalid-json"])

        self._leave_degraded()
        result = VerificationResult(
            passed=bool(payload.get("success")),
            error_codes=list(payload.get("error-codes") or []),
            hostname=payload.get("hostname"),
            challenge_ts=payload.get("challenge_ts"),
        )
        if result.passed:
            logger.debug(f"Turnstile verification passed (host={result.hostname})")
        else:
            logger.warning(
                f"Turnstile verification failed: codes={result.error_codes} "
                f"ip_hash_prefix={(remote_ip_hash or '')[:8]}"
            )
        return result
