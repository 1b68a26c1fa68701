"""
Circuit breaker for calls to external payout providers.

State lives in Django's cache (Redis in production) so every web and
worker instance sees the same view of a provider's health.

States:
    - CLOSED: calls pass through, consecutive failures are counted
    - OPEN: calls fail fast with CircuitOpenError until the recovery
      timeout elapses
    - HALF_OPEN: a limited number of probe calls pass; success_threshold
      consecutive successes close the circuit, any failure reopens it

Usage:
    from core.circuit_breaker import CircuitBreaker, CircuitOpenError

    breaker = CircuitBreaker("payout:paystack", failure_threshold=5)

    with breaker.call():
        response = requests.post(url, json=body, timeout=30)

A cache outage never blocks provider calls: every cache error is logged
and the breaker behaves as CLOSED.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.core.cache import cache

from core.exceptions import ExternalServiceError

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds for one breaker."""

    failure_threshold: int = 5
    success_threshold: int = 2
    recovery_timeout: int = 60
    cache_ttl: int = 3600


class CircuitOpenError(ExternalServiceError):
    """
    Raised when a call is attempted through an open circuit.

    No request was sent, so the caller can safely try another provider.
    """

    default_error_code = "CIRCUIT_OPEN"
    is_retryable = True


class CircuitBreaker:
    """
    Distributed circuit breaker using the Django cache backend.

    Attributes:
        name: Unique identifier, also the cache key prefix
        config: Thresholds
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        recovery_timeout: int = 60,
        is_failure: Callable[[BaseException], bool] | None = None,
    ):
        """
        Args:
            name: Unique identifier (e.g. "payout:wise")
            failure_threshold: Consecutive failures before opening
            success_threshold: Half-open successes needed to close
            recovery_timeout: Seconds an open circuit waits before probing
            is_failure: Predicate deciding whether an exception raised inside
                call() counts against the provider. Defaults to all exceptions.
        """
        self.name = name
        self.config = CircuitBreakerConfig(
            failure_threshold=failure_threshold,
            success_threshold=success_threshold,
            recovery_timeout=recovery_timeout,
        )
        self._is_failure = is_failure or (lambda exc: True)
        self._key = f"circuit:{name}"

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def state(self) -> CircuitState:
        try:
            return self._read_state()
        except Exception as e:
            logger.warning(
                f"Circuit breaker cache read failed, assuming closed: {e}",
                extra={"circuit": self.name},
            )
            return CircuitState.CLOSED

    def is_available(self) -> bool:
        """Return True if a call may be attempted now."""
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.OPEN:
            opened_at = self._cache_get("opened_at")
            if opened_at is None or time.time() - opened_at >= self.config.recovery_timeout:
                self._transition(CircuitState.HALF_OPEN)
                self._cache_set("probes", 0)
                self._cache_set("successes", 0)
                return self._take_probe()
            return False
        return self._take_probe()

    def record_success(self) -> None:
        state = self.state
        if state == CircuitState.HALF_OPEN:
            successes = self._cache_incr("successes")
            if successes >= self.config.success_threshold:
                self._transition(CircuitState.CLOSED)
                logger.info(
                    "Circuit breaker closed after recovery",
                    extra={"circuit": self.name, "successes": successes},
                )
            else:
                # Next probe may go through
                self._cache_set("probes", 0)
        self._cache_set("failures", 0)

    def record_failure(self) -> None:
        state = self.state
        if state == CircuitState.HALF_OPEN:
            self._open()
            logger.warning(
                "Circuit breaker reopened after failed probe",
                extra={"circuit": self.name},
            )
            return
        failures = self._cache_incr("failures")
        if failures >= self.config.failure_threshold:
            self._open()
            logger.warning(
                f"Circuit breaker opened after {failures} consecutive failures",
                extra={
                    "circuit": self.name,
                    "failure_count": failures,
                    "threshold": self.config.failure_threshold,
                },
            )

    @contextmanager
    def call(self) -> Generator[None, None, None]:
        """
        Guard a block with the breaker.

        Raises:
            CircuitOpenError: If the circuit rejects the call
        """
        if not self.is_available():
            raise CircuitOpenError(
                f"Circuit '{self.name}' is open",
                details={"circuit": self.name},
            )
        try:
            yield
        except Exception as exc:
            if self._is_failure(exc):
                self.record_failure()
            raise
        self.record_success()

    def reset(self) -> None:
        for suffix in ("failures", "successes", "probes", "opened_at"):
            self._cache_delete(suffix)
        self._transition(CircuitState.CLOSED)

    def get_status(self) -> dict:
        status = {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._cache_get("failures") or 0,
            "failure_threshold": self.config.failure_threshold,
        }
        opened_at = self._cache_get("opened_at")
        if opened_at:
            elapsed = time.time() - opened_at
            status["recovery_in_seconds"] = max(
                0, int(self.config.recovery_timeout - elapsed)
            )
        return status

    # =========================================================================
    # Cache operations
    # =========================================================================

    def _read_state(self) -> CircuitState:
        raw = cache.get(f"{self._key}:state", CircuitState.CLOSED.value)
        try:
            return CircuitState(raw)
        except ValueError:
            return CircuitState.CLOSED

    def _transition(self, state: CircuitState) -> None:
        self._cache_set("state", state.value)

    def _open(self) -> None:
        self._transition(CircuitState.OPEN)
        self._cache_set("opened_at", time.time())
        self._cache_set("failures", 0)

    def _take_probe(self) -> bool:
        # One probe in flight at a time while half-open
        return self._cache_incr("probes") <= 1

    def _cache_get(self, suffix: str):
        try:
            return cache.get(f"{self._key}:{suffix}")
        except Exception as e:
            logger.warning(
                f"Circuit breaker cache read failed: {e}",
                extra={"circuit": self.name},
            )
            return None

    def _cache_set(self, suffix: str, value) -> None:
        try:
            cache.set(f"{self._key}:{suffix}", value, timeout=self.config.cache_ttl)
        except Exception as e:
            logger.warning(
                f"Circuit breaker cache write failed: {e}",
                extra={"circuit": self.name},
            )

    def _cache_delete(self, suffix: str) -> None:
        try:
            cache.delete(f"{self._key}:{suffix}")
        except Exception as e:
            logger.warning(
                f"Circuit breaker cache delete failed: {e}",
                extra={"circuit": self.name},
            )

    def _cache_incr(self, suffix: str) -> int:
        key = f"{self._key}:{suffix}"
        try:
            if cache.add(key, 1, timeout=self.config.cache_ttl):
                return 1
            return cache.incr(key)
        except ValueError:
            # Expired between add() and incr()
            cache.set(key, 1, timeout=self.config.cache_ttl)
            return 1
        except Exception as e:
            logger.warning(
                f"Circuit breaker cache increment failed: {e}",
                extra={"circuit": self.name},
            )
            return 0

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self.state.value})"
