"""
Circuit breaker around a single unreliable async call.

States:
- CLOSED: calls pass through; every outcome lands in the rolling window
- OPEN: calls are rejected immediately and the fallback answers
- HALF_OPEN: one trial call is let through to check for recovery

The breaker does not retry. When a fallback is configured, callers always get
a result back (real or degraded) and never see the wrapped call's errors.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    @property
    def gauge_value(self) -> int:
        return {CircuitState.CLOSED: 0, CircuitState.OPEN: 1, CircuitState.HALF_OPEN: 2}[self]


class CircuitOpenError(RuntimeError):
    """Raised by ``fire`` when the call is rejected and no fallback exists."""


StateListener = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    def __init__(
        self,
        action: Callable[..., Awaitable[Any]],
        *,
        name: str = "circuit",
        timeout: float = 3.0,
        error_threshold_percentage: float = 50.0,
        reset_timeout: float = 30.0,
        volume_threshold: int = 5,
        rolling_window_size: Optional[int] = None,
        fallback: Optional[Callable[..., Any]] = None,
        on_state_change: Optional[StateListener] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            action: Coroutine function to protect.
            timeout: Seconds to wait for ``action`` before counting a failure.
            error_threshold_percentage: Failure rate (0-100) over the window
                that trips CLOSED -> OPEN.
            reset_timeout: Seconds OPEN is held before a HALF_OPEN trial.
            volume_threshold: Minimum outcomes in the window before the
                failure rate is evaluated at all.
            rolling_window_size: Number of most recent outcomes kept.
                Defaults to ``volume_threshold``.
            fallback: Called with the same arguments as ``action`` when the
                call is rejected, fails or times out.
            on_state_change: Notified with ``(name, old, new)`` after every
                transition. Errors raised by it are logged and ignored.
            clock: Monotonic time source in seconds.
        """
        if volume_threshold < 1:
            raise ValueError("volume_threshold must be >= 1")
        window = rolling_window_size or volume_threshold
        if window < volume_threshold:
            raise ValueError("rolling_window_size must be >= volume_threshold")

        self.name = name
        self.timeout = timeout
        self.error_threshold_percentage = error_threshold_percentage
        self.reset_timeout = reset_timeout
        self.volume_threshold = volume_threshold
        self._action = action
        self._fallback = fallback
        self._on_state_change = on_state_change
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._window: Deque[bool] = deque(maxlen=window)
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> CircuitState:
        with self._lock:
            transition = self._maybe_half_open()
            state = self._state
        self._notify(transition)
        return state

    def snapshot(self) -> Dict[str, Any]:
        state = self.state
        with self._lock:
            total = len(self._window)
            failures = sum(1 for ok in self._window if not ok)
            opened_at = self._opened_at
        return {
            "name": self.name,
            "state": state.value,
            "window_size": total,
            "failures": failures,
            "failure_rate": round(failures / total * 100, 2) if total else 0.0,
            "opened_at": opened_at,
        }

    # ------------------------------------------------------------------ #
    # Calls
    # ------------------------------------------------------------------ #
    async def fire(self, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            transition = self._maybe_half_open()
            allowed, is_trial = self._admit()
        self._notify(transition)

        if not allowed:
            logger.debug("Circuit %s rejected call (state=%s)", self.name, self._state.value)
            return self._reject(CircuitOpenError(f"Circuit {self.name} is open"), args, kwargs)

        try:
            result = await asyncio.wait_for(self._action(*args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Circuit %s call timed out after %.3fs", self.name, self.timeout)
            self._record(False, is_trial)
            return self._reject(exc, args, kwargs)
        except Exception as exc:
            logger.warning("Circuit %s call failed: %s", self.name, exc)
            self._record(False, is_trial)
            return self._reject(exc, args, kwargs)
        except BaseException:
            # cancelled: release the trial slot without counting an outcome
            if is_trial:
                with self._lock:
                    self._trial_in_flight = False
            raise

        self._record(True, is_trial)
        return result

    def _reject(self, error: BaseException, args: tuple, kwargs: Dict[str, Any]) -> Any:
        if self._fallback is None:
            raise error
        return self._fallback(*args, **kwargs)

    # ------------------------------------------------------------------ #
    # Transitions (callers hold self._lock)
    # ------------------------------------------------------------------ #
    def _admit(self) -> Tuple[bool, bool]:
        if self._state is CircuitState.CLOSED:
            return True, False
        if self._state is CircuitState.HALF_OPEN and not self._trial_in_flight:
            self._trial_in_flight = True
            return True, True
        return False, False

    def _maybe_half_open(self) -> Optional[Tuple[CircuitState, CircuitState]]:
        if self._state is CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.reset_timeout:
                return self._transition(CircuitState.HALF_OPEN)
        return None

    def _transition(self, new_state: CircuitState) -> Tuple[CircuitState, CircuitState]:
        old_state = self._state
        self._state = new_state
        if new_state is CircuitState.OPEN:
            self._opened_at = self._clock()
        elif new_state is CircuitState.CLOSED:
            self._opened_at = None
            self._window.clear()
        self._trial_in_flight = False
        return old_state, new_state

    def _record(self, success: bool, is_trial: bool) -> None:
        transition = None
        with self._lock:
            if is_trial:
                # the trial decides alone; the window is not consulted
                transition = self._transition(CircuitState.CLOSED if success else CircuitState.OPEN)
            elif self._state is CircuitState.CLOSED:
                self._window.append(success)
                if not success and self._should_trip():
                    transition = self._transition(CircuitState.OPEN)
            # outcomes of calls admitted before a concurrent trip are dropped
        self._notify(transition)

    def _should_trip(self) -> bool:
        total = len(self._window)
        if total < self.volume_threshold:
            return False
        failures = sum(1 for ok in self._window if not ok)
        return failures / total * 100 >= self.error_threshold_percentage

    # ------------------------------------------------------------------ #
    # Notifications (never called with the lock held)
    # ------------------------------------------------------------------ #
    def _notify(self, transition: Optional[Tuple[CircuitState, CircuitState]]) -> None:
        if transition is None:
            return
        old_state, new_state = transition
        if new_state is CircuitState.OPEN:
            logger.warning("Circuit breaker %s OPEN", self.name)
        else:
            logger.info("Circuit breaker %s %s", self.name, new_state.value.upper())
        if self._on_state_change is None:
            return
        try:
            self._on_state_change(self.name, old_state, new_state)
        except Exception:
            logger.exception("Circuit breaker %s state listener failed", self.name)
