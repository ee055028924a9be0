"""Log pump — periodic and milestone delivery of aggregated output."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from transrun.output.aggregator import LogAggregator

logger = logging.getLogger(__name__)


class LogPump:
    """Moves batches from a :class:`LogAggregator` to a sink.

    Two triggers feed the same :meth:`pump`: a background ticker every
    ``interval`` seconds (woken early when the aggregator crosses its
    threshold) and direct calls at lifecycle milestones.  Delivery happens
    under ``_deliver_lock`` so batches reach the sink in drain order.
    """

    def __init__(
        self,
        aggregator: LogAggregator,
        sink: Callable[[str], None],
        interval: float = 0.3,
    ) -> None:
        self._aggregator = aggregator
        self._sink = sink
        self._interval = interval
        self._deliver_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def pump(self) -> str:
        """Flush the aggregator and deliver the batch; returns what was sent."""
        with self._deliver_lock:
            text = self._aggregator.flush()
            if text:
                self._sink(text)
            return text

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="transrun-log-pump", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the ticker and deliver whatever is still pending."""
        self._stop_event.set()
        self._aggregator.threshold_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.pump()

    def _loop(self) -> None:
        wake = self._aggregator.threshold_event
        while not self._stop_event.is_set():
            wake.wait(timeout=self._interval)
            if self._stop_event.is_set():
                break
            try:
                self.pump()
            except Exception:
                logger.exception("Log sink raised; batch dropped")
