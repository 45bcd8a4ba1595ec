"""Main daemon orchestration - ties all components together."""

import asyncio
import logging
import random
import signal
from pathlib import Path
from typing import Optional

from ipwatcher.config import Config, validate_config
from ipwatcher.history import HistoryStore
from ipwatcher.notifier import EmailNotifier
from ipwatcher.resolver import AddressResolver
from ipwatcher.watcher import CycleOutcome, EventCallback, IpWatcher

logger = logging.getLogger(__name__)


class WatcherDaemon:
    """Runs an IpWatcher with real collaborators.

    Responsibilities:
    - Validate configuration
    - Open the history store and the HTTP session
    - Handle SIGINT/SIGTERM
    - Close everything on shutdown
    """

    def __init__(
        self,
        config: Config,
        resolver: Optional[AddressResolver] = None,
        store: Optional[HistoryStore] = None,
        notifier: Optional[EmailNotifier] = None,
        on_event: Optional[EventCallback] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize daemon.

        Args:
            config: Watcher configuration.
            resolver: Optional injected resolver (for testing).
            store: Optional injected history store (for testing).
            notifier: Optional injected notifier (for testing).
            on_event: Optional callback receiving every CycleEvent.
            rng: Optional jitter random generator (for testing).
        """
        self._config = config
        self._resolver = resolver
        self._store = store
        self._notifier = notifier
        self._on_event = on_event
        self._rng = rng
        self._watcher: Optional[IpWatcher] = None
        self._started = False
        self._stop_requested = False

    @property
    def watcher(self) -> Optional[IpWatcher]:
        return self._watcher

    async def start(self) -> None:
        """Validate config and open resources.

        Raises:
            ConfigurationError: If the configuration is unusable.
            StoreWriteError: If the history database cannot be opened.
        """
        if self._started:
            return

        logger.info("ipwatcher starting...")
        validate_config(self._config)

        if self._store is None:
            self._store = HistoryStore(Path(self._config.db_path))
        if self._resolver is None:
            self._resolver = AddressResolver(request_timeout=self._config.request_timeout)
        if self._notifier is None:
            self._notifier = EmailNotifier(self._config.smtp)

        await self._store.open()
        try:
            await self._resolver.open()
        except BaseException:
            await self._store.close()
            raise

        jitter = self._config.startup_jitter
        self._watcher = IpWatcher(
            resolver=self._resolver,
            store=self._store,
            notifier=self._notifier,
            sources=self._config.sources,
            check_interval=self._config.check_interval,
            jitter=(jitter.min, jitter.max),
            on_event=self._on_event,
            rng=self._rng,
        )
        if self._stop_requested:
            self._watcher.stop()
        self._started = True

    async def run_forever(self, skip_jitter: bool = False) -> None:
        """Run the watcher until a shutdown signal arrives."""
        if not self._started:
            await self.start()

        self._setup_signals()
        try:
            await self._watcher.run(skip_jitter=skip_jitter)
        finally:
            self._remove_signals()
            await self._shutdown()

    async def check_once(self) -> CycleOutcome:
        """Run a single cycle now, without jitter."""
        if not self._started:
            await self.start()
        try:
            return await self._watcher.run_cycle()
        finally:
            await self._shutdown()

    def stop(self) -> None:
        """Ask the watcher to stop after the current cycle.

        A stop requested before start() is remembered, so run_forever() then
        returns without running a cycle.
        """
        self._stop_requested = True
        if self._watcher:
            self._watcher.stop()

    def _setup_signals(self) -> None:
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._on_signal, sig)

    def _remove_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        logger.info(f"{sig.name} received, shutting down.")
        self.stop()

    async def _shutdown(self) -> None:
        """Release the HTTP session and the database."""
        if not self._started:
            return
        self._started = False

        if self._resolver:
            await self._resolver.close()
        if self._store:
            await self._store.close()

        logger.info("ipwatcher shutdown complete")
