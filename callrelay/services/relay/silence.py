"""Silence detection for a relay session.

The monitor ticks on a fixed interval and compares the time since the last
meaningful inbound event against a threshold. Each time the threshold passes
it either emits a reminder for the caller or, once the reminder ceiling is
reached, emits an end-of-call message with reason code ``unresponsive`` and
stops ticking. Reported activity resets both the baseline and the count.
"""
import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

from pydantic import BaseModel

from callrelay.services.relay.messages import EndMessage, OutboundMessage, TextMessage

logger = logging.getLogger(__name__)

UNRESPONSIVE_REASON_CODE = "unresponsive"

REMINDER_MESSAGES: List[str] = [
    "Still there?",
    "Just checking you are still there?",
]

SilenceCallback = Callable[[OutboundMessage], Union[None, Awaitable[None]]]


class SilenceConfig(BaseModel):
    """Silence thresholds for one call."""

    threshold_seconds: float = 5.0
    max_reminders: int = 3
    tick_seconds: float = 1.0


class SilenceState(str, Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    ENDED = "ended"


class SilenceMonitor:
    """Tracks caller silence and escalates through reminders to ending the call."""

    def __init__(
        self,
        config: Optional[SilenceConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or SilenceConfig()
        self._clock = clock
        self.state = SilenceState.IDLE
        self.last_activity: Optional[float] = None
        self.reminder_count = 0
        self._callback: Optional[SilenceCallback] = None
        self._task: Optional[asyncio.Task] = None

    def start(self, callback: SilenceCallback, run_timer: bool = True) -> None:
        """
        Start monitoring.

        Args:
            callback: receives each reminder or end message; may be async
            run_timer: schedule the interval task (tests drive ``check`` directly)
        """
        if self.state != SilenceState.IDLE:
            logger.warning(f"[SILENCE] start() called in state {self.state.value}, ignoring")
            return
        logger.info("[SILENCE] Starting silence monitoring")
        self.state = SilenceState.MONITORING
        self.last_activity = self._clock()
        self.reminder_count = 0
        self._callback = callback
        if run_timer:
            self._task = asyncio.create_task(self._run(), name="silence-monitor")

    def reset(self) -> None:
        """Record caller activity."""
        if self.state != SilenceState.MONITORING:
            logger.debug("[SILENCE] Activity received but monitoring not active")
            return
        self.last_activity = self._clock()
        self.reminder_count = 0
        logger.debug("[SILENCE] Timer and reminder count reset")

    def silence_seconds(self) -> float:
        if self.last_activity is None:
            return 0.0
        return self._clock() - self.last_activity

    def next_message(self) -> Optional[OutboundMessage]:
        """Advance the escalation if the threshold has passed.

        Returns the message to deliver, or None while still within the threshold.
        """
        if self.state != SilenceState.MONITORING:
            return None
        silence = self.silence_seconds()
        if silence < self.config.threshold_seconds:
            return None

        self.reminder_count += 1
        logger.info(
            f"[SILENCE] No activity for {silence:.1f}s "
            f"(reminder {self.reminder_count}/{self.config.max_reminders})"
        )
        self.last_activity = self._clock()

        if self.reminder_count >= self.config.max_reminders:
            self.state = SilenceState.ENDED
            logger.info("[SILENCE] Reminder ceiling reached, ending call")
            return EndMessage.from_handoff(
                {
                    "reasonCode": UNRESPONSIVE_REASON_CODE,
                    "reason": "The caller was not speaking",
                }
            )

        index = min(self.reminder_count, len(REMINDER_MESSAGES)) - 1
        return TextMessage(token=REMINDER_MESSAGES[index], last=True)

    async def check(self) -> Optional[OutboundMessage]:
        """Run one tick: compute the next message and deliver it to the callback."""
        message = self.next_message()
        if message is not None and self._callback is not None:
            result = self._callback(message)
            if inspect.isawaitable(result):
                await result
        return message

    def stop(self) -> None:
        """Stop the interval and drop the callback. Safe to call repeatedly."""
        if self._task is not None:
            if self._task is not asyncio.current_task() and not self._task.done():
                self._task.cancel()
            self._task = None
            logger.info("[SILENCE] Silence monitor stopped")
        self.state = SilenceState.ENDED
        self._callback = None

    async def _run(self) -> None:
        while self.state == SilenceState.MONITORING:
            await asyncio.sleep(self.config.tick_seconds)
            try:
                await self.check()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[SILENCE] Silence callback failed")
