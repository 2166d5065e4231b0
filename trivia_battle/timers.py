"""
Cancellable round timers for question timeouts, settle delays, turn
timeouts and challenge expiry.
"""
import asyncio
import logging
import math
import time
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_armed(owner_id: str, purpose: str, duration: float) -> None:
        logger.debug(
            f"Timer lifecycle: ARMED - {purpose} for {owner_id}, Duration {duration}s",
            extra={
                'event_type': 'timer_armed',
                'owner_id': owner_id,
                'purpose': purpose,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_completion(owner_id: str, purpose: str, completion_type: str, duration: float) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.debug(
            f"Timer lifecycle: COMPLETED - {purpose} for {owner_id}, Type {completion_type}, Duration {duration}s",
            extra={
                'event_type': 'timer_completed',
                'owner_id': owner_id,
                'purpose': purpose,
                'completion_type': completion_type,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(owner_id: str, purpose: str, from_state: str, to_state: str, reason: str = None) -> None:
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - {purpose} for {owner_id}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'owner_id': owner_id,
                'purpose': purpose,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(owner_id: str, purpose: str, error_type: str, error_message: str) -> None:
        logger.error(
            f"Timer lifecycle: ERROR - {purpose} for {owner_id}, Type {error_type}: {error_message}",
            exc_info=True,
            extra={
                'event_type': 'timer_error',
                'owner_id': owner_id,
                'purpose': purpose,
                'error_type': error_type,
                'error_message': error_message,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_stale_fire(owner_id: str, details: str) -> None:
        """Log a timer that fired after the state it guarded had moved on."""
        logger.info(
            f"Timer lifecycle: STALE_FIRE - {owner_id}: {details}",
            extra={
                'event_type': 'timer_stale_fire',
                'owner_id': owner_id,
                'details': details,
                'timestamp': time.time()
            }
        )


class RoundTimer:
    """One-shot countdown that runs a callback unless cancelled first."""

    def __init__(self, owner_id: str, purpose: str):
        self._owner_id = owner_id
        self._purpose = purpose
        self._task: Optional[asyncio.Task] = None
        self._is_cancelled = False
        self._has_fired = False
        self._remaining_time = 0.0
        self._duration = 0.0

    def arm(
        self,
        duration: float,
        completion_callback: Callable[[], Awaitable[Any]],
        update_callback: Optional[Callable[[int], Awaitable[Any]]] = None
    ) -> "RoundTimer":
        """
        Start the countdown as a background task on the running loop.

        Args:
            duration: Seconds until ``completion_callback`` runs
            completion_callback: Awaited once when the countdown elapses
            update_callback: Awaited with the whole seconds remaining, once per second
        """
        if self._task is not None:
            raise RuntimeError(f"{self._purpose} timer for {self._owner_id} is already armed")

        self._duration = max(0.0, float(duration))
        self._remaining_time = self._duration
        TimerLifecycleLogger.log_timer_armed(self._owner_id, self._purpose, self._duration)
        self._task = asyncio.get_running_loop().create_task(
            self._countdown(completion_callback, update_callback)
        )
        return self

    async def _countdown(self, completion_callback, update_callback) -> None:
        try:
            while self._remaining_time > 0 and not self._is_cancelled:
                if update_callback is not None:
                    try:
                        await update_callback(math.ceil(self._remaining_time))
                    except Exception as e:
                        TimerLifecycleLogger.log_timer_error(
                            self._owner_id, self._purpose, "update_callback_error", str(e)
                        )
                step = min(1.0, self._remaining_time)
                await asyncio.sleep(step)
                self._remaining_time -= step

            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(
                    self._owner_id, self._purpose, "cancelled", self._duration
                )
                return

            self._has_fired = True
            TimerLifecycleLogger.log_timer_completion(
                self._owner_id, self._purpose, "natural_expiry", self._duration
            )
            await completion_callback()

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(
                self._owner_id, self._purpose, "asyncio_cancelled", self._duration
            )
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._owner_id, self._purpose, "completion_callback_error", str(e)
            )

    def cancel(self) -> bool:
        """
        Disarm the timer synchronously.

        Returns:
            True if the countdown had not fired yet, False otherwise
        """
        if self._has_fired or self._is_cancelled:
            return False

        self._is_cancelled = True
        if self._task is not None and not self._task.done():
            # A completion callback may disarm its own timer
            if self._task is not asyncio.current_task():
                self._task.cancel()
        TimerLifecycleLogger.log_timer_state_transition(
            self._owner_id, self._purpose, "armed", "cancelled", "cancel requested"
        )
        return True

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def has_fired(self) -> bool:
        return self._has_fired

    @property
    def is_armed(self) -> bool:
        return self._task is not None and not self._is_cancelled and not self._has_fired

    @property
    def remaining_time(self) -> float:
        return max(0.0, self._remaining_time)

    @property
    def purpose(self) -> str:
        return self._purpose
