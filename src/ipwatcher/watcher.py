"""Public IP change detection loop.

One cycle resolves the current address, compares it with the last recorded
one, records it if it differs and then sends a notification. Cycles run one
at a time: a random startup jitter first, then a fixed wait after each
cycle completes. stop() ends any wait immediately; a cycle already running
is allowed to finish.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from ipwatcher.errors import (
    NoSourcesError,
    NotifyError,
    ResolutionError,
    StoreReadError,
    StoreWriteError,
)
from ipwatcher.history import Observation
from ipwatcher.resolver import Address

logger = logging.getLogger(__name__)

# Polling faster than this abuses the public echo endpoints
MIN_CHECK_INTERVAL = 30.0  # seconds

DEFAULT_JITTER = (180.0, 360.0)  # seconds


class Resolver(Protocol):
    """Protocol for the address resolver dependency."""

    async def resolve(self, sources: list[str]) -> Address:
        ...


class Store(Protocol):
    """Protocol for the history store dependency."""

    async def last_address(self) -> Optional[Address]:
        ...

    async def append(self, address: Address) -> Observation:
        ...


class Notifier(Protocol):
    """Protocol for the notifier dependency."""

    async def notify(self, address: Address, is_first_observation: bool) -> None:
        ...


class WatcherState(Enum):
    """Where the watcher is in its cycle."""

    IDLE = "idle"
    RESOLVING = "resolving"
    COMPARING = "comparing"
    PERSISTING = "persisting"
    NOTIFYING = "notifying"
    SHUTTING_DOWN = "shutting_down"


class CycleOutcome(Enum):
    """How a single cycle ended."""

    FIRST = "first"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    RESOLVE_FAILED = "resolve_failed"
    READ_FAILED = "read_failed"
    WRITE_FAILED = "write_failed"
    NOTIFY_FAILED = "notify_failed"

    @property
    def is_failure(self) -> bool:
        return self.value.endswith("_failed")


class EventKind(Enum):
    """Kinds of structured events emitted by the watcher."""

    FIRST_DETECTED = "first_detected"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    NOTIFIED = "notified"
    RESOLVE_FAILED = "resolve_failed"
    READ_FAILED = "read_failed"
    WRITE_FAILED = "write_failed"
    NOTIFY_FAILED = "notify_failed"

    @property
    def is_error(self) -> bool:
        return self.value.endswith("_failed")


@dataclass(frozen=True)
class CycleEvent:
    """A state transition worth reporting."""

    kind: EventKind
    stage: WatcherState
    detail: str
    address: Optional[Address] = None


EventCallback = Callable[[CycleEvent], None]


def clamp_interval(seconds: float) -> float:
    """Raise a polling interval to MIN_CHECK_INTERVAL if it is below it."""
    if seconds < MIN_CHECK_INTERVAL:
        logger.warning(
            f"check_interval {seconds}s is below the minimum, "
            f"using {MIN_CHECK_INTERVAL:.0f}s"
        )
        return MIN_CHECK_INTERVAL
    return float(seconds)


class IpWatcher:
    """Detects public IP changes, records them and sends notifications.

    Uses dependency injection for the resolver, store and notifier so the
    decision logic can be tested without network or disk.

    Usage:
        watcher = IpWatcher(resolver, store, notifier, sources)
        task = asyncio.create_task(watcher.run())
        ...
        watcher.stop()
        await task
    """

    def __init__(
        self,
        resolver: Resolver,
        store: Store,
        notifier: Notifier,
        sources: list[str],
        check_interval: float = 300.0,
        jitter: tuple[float, float] = DEFAULT_JITTER,
        on_event: Optional[EventCallback] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the watcher.

        Args:
            resolver: Learns the current public address.
            store: Append-only address history.
            notifier: Sends change notifications.
            sources: Address sources in priority order.
            check_interval: Seconds between cycles, clamped to MIN_CHECK_INTERVAL.
            jitter: (min, max) seconds of random delay before the first cycle.
            on_event: Optional callback receiving every CycleEvent.
            rng: Random generator for the jitter (injectable for testing).

        Raises:
            NoSourcesError: If sources is empty.
        """
        if not sources:
            raise NoSourcesError()

        self._resolver = resolver
        self._store = store
        self._notifier = notifier
        self._sources = list(sources)
        self._interval = clamp_interval(check_interval)
        self._jitter = jitter
        self._on_event = on_event
        self._rng = rng or random.Random()
        self._state = WatcherState.IDLE
        self._stop_event = asyncio.Event()
        self._running = False
        self._cycles = 0

    @property
    def state(self) -> WatcherState:
        """Current position in the cycle."""
        return self._state

    @property
    def interval(self) -> float:
        """Effective seconds between cycles."""
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycles(self) -> int:
        """Number of cycles started so far."""
        return self._cycles

    def stop(self) -> None:
        """Request shutdown. No new cycle starts after this call."""
        if not self._stop_event.is_set():
            logger.info("Stop requested")
        self._stop_event.set()
        if not self._running:
            self._state = WatcherState.SHUTTING_DOWN

    async def run(self, skip_jitter: bool = False) -> None:
        """Run cycles until stop() is called.

        Args:
            skip_jitter: Start the first cycle immediately.
        """
        if self._running:
            return

        self._running = True
        try:
            if not skip_jitter:
                delay = self._rng.uniform(*self._jitter)
                logger.info(
                    f"Startup jitter: sleeping {delay:.0f} seconds before first check"
                )
                if await self._wait(delay):
                    return

            logger.info(f"Entering polling loop (every {self._interval:.0f}s)")
            while not self._stop_event.is_set():
                try:
                    await self.run_cycle()
                except NoSourcesError:
                    raise
                except Exception as e:
                    logger.error(f"Unexpected error in check cycle: {e}", exc_info=True)
                    self._state = WatcherState.IDLE

                if await self._wait(self._interval):
                    break
        finally:
            self._running = False
            self._state = WatcherState.SHUTTING_DOWN
            logger.info("IP watcher stopped")

    async def _wait(self, delay: float) -> bool:
        """Sleep for delay seconds or until stop() is called.

        Returns:
            True if stop was requested.
        """
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def run_cycle(self) -> CycleOutcome:
        """Run one resolve, compare, persist and notify cycle.

        Every failure except a missing source list is logged and ends the
        cycle; the next cycle retries from scratch.

        Raises:
            NoSourcesError: The source list is empty (configuration defect).
        """
        self._cycles += 1
        try:
            return await self._cycle()
        finally:
            if self._state is not WatcherState.SHUTTING_DOWN:
                self._state = WatcherState.IDLE

    async def _cycle(self) -> CycleOutcome:
        self._state = WatcherState.RESOLVING
        try:
            current = await self._resolver.resolve(self._sources)
        except NoSourcesError:
            raise
        except ResolutionError as e:
            self._emit(EventKind.RESOLVE_FAILED, f"External IP query failed: {e}")
            return CycleOutcome.RESOLVE_FAILED

        self._state = WatcherState.COMPARING
        try:
            last = await self._store.last_address()
        except StoreReadError as e:
            self._emit(EventKind.READ_FAILED, f"History read error: {e}", current)
            return CycleOutcome.READ_FAILED

        if last == current:
            self._emit(EventKind.UNCHANGED, f"External IP unchanged: {current}", current)
            return CycleOutcome.UNCHANGED

        first = last is None

        self._state = WatcherState.PERSISTING
        try:
            await self._store.append(current)
        except StoreWriteError as e:
            self._emit(EventKind.WRITE_FAILED, f"Failed to save IP {current}: {e}", current)
            return CycleOutcome.WRITE_FAILED

        if first:
            self._emit(
                EventKind.FIRST_DETECTED, f"First detected external IP: {current}", current
            )
        else:
            self._emit(
                EventKind.CHANGED, f"External IP changed: {last} -> {current}", current
            )

        self._state = WatcherState.NOTIFYING
        try:
            await self._notifier.notify(current, is_first_observation=first)
        except NotifyError as e:
            self._emit(EventKind.NOTIFY_FAILED, f"Failed to send notification: {e}", current)
            return CycleOutcome.NOTIFY_FAILED

        self._emit(EventKind.NOTIFIED, f"Notification sent for {current}", current)
        return CycleOutcome.FIRST if first else CycleOutcome.CHANGED

    def _emit(
        self, kind: EventKind, detail: str, address: Optional[Address] = None
    ) -> None:
        """Log an event and pass it to the callback."""
        event = CycleEvent(kind=kind, stage=self._state, detail=detail, address=address)
        level = logging.ERROR if kind.is_error else logging.INFO
        logger.log(level, f"[{event.stage.value}] {detail}")

        if self._on_event:
            try:
                self._on_event(event)
            except Exception as e:
                logger.error(f"Event callback failed: {e}")
