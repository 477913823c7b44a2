"""
Client-side device-code polling loop.

A DevicePoller waits poll_interval seconds, polls once, and reacts to the
tagged outcome: PENDING keeps the interval, SLOW_DOWN grows it, SUCCESS
returns the result, EXPIRED and DENIED raise. The wait between polls is the
only timer, so a session never has two timers running at once.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from sso_engine.exceptions import ExpiredDeviceCodeError, SSOError, UserDeniedError
from sso_engine.types.sso import DeviceAuthSession, DeviceFlowPollResult, DevicePollStatus, SSOAuthResult

logger = logging.getLogger(__name__)

PollFunction = Callable[[str, str], Awaitable[DeviceFlowPollResult]]
PendingCallback = Callable[[DevicePollStatus, int], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_poll_interval(interval: int, factor: float) -> int:
    """Interval after a slow_down: scaled by factor and always strictly larger."""
    return max(math.ceil(interval * factor), interval + 1)


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    EXPIRED = "expired"
    DENIED = "denied"
    CANCELLED = "cancelled"
    FAILED = "failed"


class DevicePoller:
    """
    Polls a device flow until it succeeds, is denied, expires or is cancelled.

    Usage:
        session = await manager.start_device_flow("okta")
        poller = DevicePoller(manager.poll_device_flow, "okta", session)
        task = poller.start()
        ...
        poller.cancel()  # user aborted
    """

    def __init__(
        self,
        poll: PollFunction,
        provider_id: str,
        session: DeviceAuthSession,
        slow_down_factor: float = 1.5,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_pending: Optional[PendingCallback] = None,
    ):
        """
        Args:
            poll: Coroutine function (provider_id, device_code) -> DeviceFlowPollResult,
                  normally SSOManager.poll_device_flow
            provider_id: Provider the session was started with
            session: Session returned by start_device_flow
            slow_down_factor: Interval multiplier applied on slow_down
            clock: Time source for the local expiry check
            sleep: Awaitable used between polls
            on_pending: Called with (status, next interval) after each non-terminal poll
        """
        self._poll = poll
        self.provider_id = provider_id
        self.session = session
        self.slow_down_factor = slow_down_factor
        self._clock = clock or _utcnow
        self._sleep = sleep
        self._on_pending = on_pending

        self.state = PollerState.IDLE
        self.poll_count = 0
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False

    @property
    def poll_interval(self) -> int:
        return self.session.poll_interval_seconds

    @property
    def is_running(self) -> bool:
        return self.state == PollerState.POLLING

    def start(self) -> "asyncio.Task[SSOAuthResult]":
        """Run the loop in a background task. Only one task per poller."""
        if self._task is not None or self.state != PollerState.IDLE:
            raise RuntimeError("Device poller has already been started")
        self._task = asyncio.create_task(
            self.run(),
            name=f"device-poll-{self.provider_id}",
        )
        return self._task

    def cancel(self) -> None:
        """Stop polling. Safe to call at any time, including before start."""
        self._cancel_requested = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        elif self.state == PollerState.IDLE:
            self.state = PollerState.CANCELLED

    async def run(self) -> SSOAuthResult:
        """
        Poll until a terminal outcome.

        Returns:
            The composed authentication result on success

        Raises:
            ExpiredDeviceCodeError: If the device code expired
            UserDeniedError: If the user rejected the request
            asyncio.CancelledError: If cancelled
            RuntimeError: If a loop is already running or has finished
        """
        # One loop per session: after start(), only the spawned task may run
        if self._task is not None and asyncio.current_task() is not self._task:
            raise RuntimeError("Device poller is running in a background task")
        if self._cancel_requested:
            self.state = PollerState.CANCELLED
            raise asyncio.CancelledError()
        if self.state == PollerState.POLLING:
            raise RuntimeError("Device poller is already running")
        if self.state != PollerState.IDLE:
            raise RuntimeError(f"Device poller already finished ({self.state.value})")

        self.state = PollerState.POLLING
        logger.info(
            f"Polling device flow for {self.provider_id} every {self.poll_interval}s"
        )
        try:
            return await self._loop()
        except asyncio.CancelledError:
            self.state = PollerState.CANCELLED
            logger.info(f"Device flow polling for {self.provider_id} cancelled")
            raise
        except SSOError:
            if self.state == PollerState.POLLING:
                self.state = PollerState.FAILED
            raise

    async def _loop(self) -> SSOAuthResult:
        while True:
            await self._sleep(self.poll_interval)

            if self.session.is_expired(self._clock()):
                self.state = PollerState.EXPIRED
                raise ExpiredDeviceCodeError()

            outcome = await self._poll(self.provider_id, self.session.device_code)
            self.poll_count += 1
            status = outcome.status

            if status == DevicePollStatus.PENDING:
                self._notify(status)
            elif status == DevicePollStatus.SLOW_DOWN:
                previous = self.poll_interval
                self.session.poll_interval_seconds = next_poll_interval(
                    previous, self.slow_down_factor
                )
                logger.info(
                    f"IdP asked {self.provider_id} device flow to slow down: "
                    f"{previous}s -> {self.poll_interval}s"
                )
                self._notify(status)
            elif status == DevicePollStatus.SUCCESS:
                self.state = PollerState.SUCCEEDED
                return outcome.result
            elif status == DevicePollStatus.EXPIRED:
                self.state = PollerState.EXPIRED
                raise ExpiredDeviceCodeError()
            elif status == DevicePollStatus.DENIED:
                self.state = PollerState.DENIED
                raise UserDeniedError()

    def _notify(self, status: DevicePollStatus) -> None:
        if self._on_pending is not None:
            self._on_pending(status, self.poll_interval)
