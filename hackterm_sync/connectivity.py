"""
Connectivity supervisor.

Periodically probes the backend's reachability endpoint and keeps the
online/offline state. Retry spacing adapts to the probe history:

- before the backend has ever answered, retries ramp up linearly and
  stay short, since the backend may simply not be up yet
- once it has answered at least once, failures are treated as an
  outage and back off exponentially up to a much higher ceiling

Listeners hear about online/offline transitions only, never about
repeated failures while already offline.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .config import SyncConfig

logger = logging.getLogger(__name__)


@dataclass
class ConnectionState:
    """Snapshot of the supervisor's view of the backend."""

    is_online: bool = False
    consecutive_failures: int = 0
    current_retry_interval: float = 3.0
    ever_connected_once: bool = False


class ConnectivitySupervisor:
    """Reachability prober with adaptive retry intervals.

    Usage:
        supervisor = ConnectivitySupervisor(probe=transport.probe, config=config)
        supervisor.on_transition(lambda online: print("online" if online else "offline"))
        supervisor.start()
        ...
        await supervisor.stop()
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[bool]],
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            probe: Async callable returning True when the backend answered
            config: Interval settings (defaults if None)
        """
        cfg = config or SyncConfig()
        self.base_interval = cfg.probe_base_interval
        self.max_interval = cfg.probe_max_interval
        self.initial_interval = cfg.probe_initial_interval
        self.initial_step = cfg.probe_initial_step
        self.initial_cap = cfg.probe_initial_cap

        self._probe = probe
        self._state = ConnectionState(current_retry_interval=self.initial_interval)
        self._probe_in_flight = False
        self._listeners: list[Callable[[bool], None]] = []

        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ConnectionState:
        """A copy of the current state; mutate it through report_outcome()."""
        return ConnectionState(**vars(self._state))

    @property
    def is_online(self) -> bool:
        return self._state.is_online

    @property
    def is_running(self) -> bool:
        return self._running

    def on_transition(self, callback: Callable[[bool], None]) -> None:
        """Register a callback fired with the new is_online value on transitions."""
        self._listeners.append(callback)

    def start(self) -> None:
        """Start the periodic probe loop. The first probe runs immediately."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._probe_loop())
        logger.info("Connectivity supervisor started")

    async def stop(self) -> None:
        """Stop the periodic probe loop."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Connectivity supervisor stopped")

    async def check_now(self) -> bool | None:
        """Run one probe immediately unless one is already pending.

        Returns:
            The probe outcome, or None if a probe was already in flight
        """
        if self._probe_in_flight:
            return None

        self._probe_in_flight = True
        try:
            try:
                success = await self._probe()
            except Exception as e:
                logger.debug(f"Reachability probe raised: {e}")
                success = False
        finally:
            self._probe_in_flight = False

        self.report_outcome(success)
        return success

    def report_outcome(self, success: bool) -> bool:
        """Feed one probe result into the state machine.

        Returns:
            True if the result flipped online/offline and listeners were notified
        """
        state = self._state
        was_online = state.is_online

        if success:
            state.consecutive_failures = 0
            state.ever_connected_once = True
            state.current_retry_interval = self.base_interval
            state.is_online = True
        else:
            state.consecutive_failures += 1
            state.current_retry_interval = self._failure_interval(
                state.consecutive_failures, state.ever_connected_once
            )
            state.is_online = False

        if state.is_online == was_online:
            if not success:
                logger.debug(
                    "Backend still unreachable (failures=%d, next probe in %.0fs)",
                    state.consecutive_failures,
                    state.current_retry_interval,
                )
            return False

        if state.is_online:
            logger.info("Backend reachable, now online")
        else:
            logger.warning(
                "Backend unreachable, now offline (next probe in %.0fs)",
                state.current_retry_interval,
            )
        self._notify(state.is_online)
        return True

    def _failure_interval(self, failures: int, ever_connected: bool) -> float:
        if ever_connected:
            # Exponent capped so long outages cannot overflow the float
            return min(self.base_interval * 2 ** min(failures - 1, 32), self.max_interval)
        return min(self.initial_interval + (failures - 1) * self.initial_step, self.initial_cap)

    def _notify(self, online: bool) -> None:
        for callback in list(self._listeners):
            try:
                callback(online)
            except Exception:
                logger.exception("Connectivity listener failed")

    async def _probe_loop(self) -> None:
        while self._running:
            await self.check_now()
            await asyncio.sleep(self._state.current_retry_interval)
