"""Controller façade — the narrow surface a UI drives.

All notifications are funnelled through one queue and delivered by
:meth:`Controller.dispatch` on whichever thread the UI dedicates to it, so
callbacks never run on reader, pump or watcher threads.
"""

from __future__ import annotations

import logging
import queue
from collections.abc import Callable

from transrun.config import TransRunConfig
from transrun.options.models import Configuration
from transrun.options.store import SettingsError, SettingsStore
from transrun.output.aggregator import LogAggregator
from transrun.output.pump import LogPump
from transrun.output.view import LogView
from transrun.session.models import LogBatch, SessionEnded, SessionHandle
from transrun.session.supervisor import EVENT_PREFIX, ProcessSupervisor

logger = logging.getLogger(__name__)


class Controller:
    """Wires aggregator, pump, view and supervisor together."""

    def __init__(
        self,
        config: TransRunConfig | None = None,
        on_log_batch: Callable[[str], None] | None = None,
        on_session_ended: Callable[[SessionEnded], None] | None = None,
        settings: SettingsStore | None = None,
    ) -> None:
        self._config = config or TransRunConfig.load()
        self._on_log_batch = on_log_batch
        self._on_session_ended = on_session_ended
        self._settings = settings or SettingsStore(self._config.settings_path)
        self._events: queue.Queue[LogBatch | SessionEnded] = queue.Queue()

        self._aggregator = LogAggregator(threshold=self._config.flush_threshold)
        self._view = LogView(
            hard_cap=self._config.log_hard_cap, keep=self._config.log_keep
        )
        self._pump = LogPump(
            self._aggregator,
            sink=lambda text: self._events.put(LogBatch(text)),
            interval=self._config.flush_interval,
        )
        self._supervisor = ProcessSupervisor(
            self._aggregator,
            self._pump,
            on_session_ended=self._events.put,
            config=self._config,
        )
        self._pump.start()

    @property
    def view(self) -> LogView:
        return self._view

    @property
    def is_running(self) -> bool:
        return self._supervisor.is_active

    def status(self) -> SessionHandle | None:
        return self._supervisor.status()

    def start(self, configuration: Configuration) -> SessionHandle:
        """Start a new session; StartError subclasses propagate unchanged."""
        if not self._supervisor.is_active:
            self._aggregator.reset()
            self._view.clear()
        if not self._pump.is_running:
            self._pump.start()
        return self._supervisor.start(configuration)

    def request_stop(self) -> None:
        self._supervisor.request_stop()

    def shutdown(self) -> None:
        """Stop the worker (bounded wait) and deliver the remaining output."""
        self._supervisor.shutdown()
        self._pump.stop()

    def dispatch(self, timeout: float | None = 0.0) -> int:
        """Deliver queued notifications on the calling thread.

        Blocks up to ``timeout`` seconds for the first message, then drains
        whatever else is already queued.  Returns the number delivered.
        """
        delivered = 0
        block = timeout is None or timeout > 0
        while True:
            try:
                if delivered == 0 and block:
                    message = self._events.get(timeout=timeout)
                else:
                    message = self._events.get_nowait()
            except queue.Empty:
                return delivered
            self._deliver(message)
            delivered += 1

    def load_settings(self) -> Configuration:
        return self._settings.load()

    def save_settings(self, configuration: Configuration) -> bool:
        """Persist options; failures are logged and reported, never raised."""
        try:
            self._settings.save(configuration)
        except SettingsError as exc:
            logger.error("Settings not saved: %s", exc)
            self._aggregator.write(f"{EVENT_PREFIX}Failed to save settings: {exc}")
            return False
        return True

    def _deliver(self, message: LogBatch | SessionEnded) -> None:
        if isinstance(message, LogBatch):
            self._view.append(message.text)
            if self._on_log_batch is not None:
                self._on_log_batch(message.text)
        elif self._on_session_ended is not None:
            self._on_session_ended(message)
