"""
Cache-backed circuit around the risk scorer.

Every web process and Celery worker shares the circuit through Django's
cache. After ``failure_threshold`` consecutive scorer failures the circuit
opens and RiskService stops calling the scorer; submissions go straight to
the fail-closed manual review path. Once ``recovery_timeout`` seconds have
passed, one trial call is let through: success closes the circuit, failure
opens it for another window.

State is derived from two keys:

    <name>:failures   consecutive failure count (cache.incr)
    <name>:opened_at  epoch seconds the circuit last opened; absent when closed

plus a short-lived ``<name>:trial`` key claimed with ``cache.add`` so only one
worker tries a half-open scorer.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import TYPE_CHECKING

from django.core.cache import cache
from django.utils import timezone

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """The scorer was not called because its circuit is open."""


class RiskCircuit:
    """
    Failure counter with an open/half-open window for the risk scorer.

    A cache outage leaves the circuit closed: scoring still happens, it just
    is not guarded.
    """

    def __init__(
        self,
        name: str = "risk-scorer",
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._failures_key = f"circuit:{name}:failures"
        self._opened_at_key = f"circuit:{name}:opened_at"
        self._trial_key = f"circuit:{name}:trial"

    @property
    def state(self) -> CircuitState:
        opened_at = cache.get(self._opened_at_key)
        if opened_at is None:
            return CircuitState.CLOSED
        if _now() - opened_at < self.recovery_timeout:
            return CircuitState.OPEN
        return CircuitState.HALF_OPEN

    @property
    def failures(self) -> int:
        return cache.get(self._failures_key, 0)

    def allow_request(self) -> bool:
        """True when the scorer may be called now (claims the half-open trial call)."""
        try:
            state = self.state
            if state == CircuitState.CLOSED:
                return True
            if state == CircuitState.HALF_OPEN:
                return cache.add(self._trial_key, 1, timeout=self.recovery_timeout)
            return False
        except Exception as e:
            logger.warning(
                f"Risk circuit cache error, scoring unguarded: {e}",
                extra={"circuit": self.name},
            )
            return True

    def record_success(self) -> None:
        try:
            if self.state != CircuitState.CLOSED:
                logger.info("Risk circuit closed", extra={"circuit": self.name})
            cache.delete_many([self._failures_key, self._opened_at_key, self._trial_key])
        except Exception as e:
            logger.warning(
                f"Risk circuit failed to record success: {e}",
                extra={"circuit": self.name},
            )

    def record_failure(self) -> None:
        try:
            if self.state != CircuitState.CLOSED:
                # Failed trial call
                self._open()
                return

            try:
                failures = cache.incr(self._failures_key)
            except ValueError:
                cache.set(self._failures_key, 1, timeout=None)
                failures = 1

            if failures >= self.failure_threshold:
                self._open()
        except Exception as e:
            logger.warning(
                f"Risk circuit failed to record failure: {e}",
                extra={"circuit": self.name},
            )

    def reset(self) -> None:
        cache.delete_many([self._failures_key, self._opened_at_key, self._trial_key])

    @contextmanager
    def call(self) -> Generator[None, None, None]:
        """
        Guard one scorer call.

        Raises:
            CircuitOpenError: The circuit is open; the body does not run
        """
        if not self.allow_request():
            raise CircuitOpenError(f"Circuit '{self.name}' is open")
        try:
            yield
        except Exception:
            self.record_failure()
            raise
        self.record_success()

    def get_status(self) -> dict:
        status = {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failures,
            "failure_threshold": self.failure_threshold,
        }
        opened_at = cache.get(self._opened_at_key)
        if opened_at is not None:
            status["recovery_in_seconds"] = max(
                0, int(self.recovery_timeout - (_now() - opened_at))
            )
        return status

    def _open(self) -> None:
        cache.set(self._opened_at_key, _now(), timeout=None)
        cache.delete(self._trial_key)
        logger.warning(
            "Risk circuit opened",
            extra={"circuit": self.name, "failure_count": self.failures},
        )

    def __repr__(self) -> str:
        return f"RiskCircuit(name={self.name!r}, state={self.state.value})"


def _now() -> float:
    return timezone.now().timestamp()
