"""Interval timers that drive periodic event and ticket refreshes."""
import logging
import threading
from typing import Callable, List, Optional

from settings.config_provider import ConfigProvider

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs an action on a fixed interval in a background thread.

    A tick that arrives while the previous run is still executing is skipped,
    so a task never overlaps with itself.
    """

    def __init__(self, name: str, interval_seconds: float, action: Callable[[], object]):
        if interval_seconds <= 0:
            raise ValueError(f"Interval for {name} must be positive, got {interval_seconds}")
        self.name = name
        self.interval_seconds = interval_seconds
        self.action = action
        self._in_flight = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"Started periodic task {self.name} every {self.interval_seconds} seconds")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info(f"Stopped periodic task {self.name}")

    def run_once(self) -> bool:
        """
        Run the action unless a previous run is still in flight.

        Errors raised by the action are logged and swallowed so the timer
        keeps firing.

        Returns:
            True if the action ran, False if the tick was skipped
        """
        if not self._in_flight.acquire(blocking=False):
            logger.warning(f"Skipping {self.name}: previous run still in progress")
            return False

        try:
            self.action()
        except Exception as e:
            logger.error(
                f"Periodic task {self.name} failed: {e}",
                extra={'error_type': type(e).__name__},
                exc_info=True
            )
        finally:
            self._in_flight.release()
        return True

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()


class Scheduler:
    """Owns the event list timer and the ticket fetch timer."""

    def __init__(
        self,
        config: ConfigProvider,
        on_event_list_update: Callable[[], object],
        on_ticket_fetch: Callable[[], object]
    ):
        self.config = config
        self.on_event_list_update = on_event_list_update
        self.on_ticket_fetch = on_ticket_fetch
        self.tasks: List[PeriodicTask] = []

    def start_periodic_updates(self) -> None:
        """Read the intervals once and start both timers."""
        self.start_periodic_event_list_update()
        self.start_periodic_ticket_fetch()

    def start_periodic_event_list_update(self) -> PeriodicTask:
        interval_hours = self.config.get_float('EVENT_LIST_UPDATE_INTERVAL_HOURS', 4)
        logger.info(f"Event list update interval set to {interval_hours} hours")
        return self._start_task('event-list-update', interval_hours * 60 * 60, self.on_event_list_update)

    def start_periodic_ticket_fetch(self) -> PeriodicTask:
        interval_seconds = self.config.get_float('TICKET_FETCH_INTERVAL_SECONDS', 20)
        logger.info(f"Ticket fetch interval set to {interval_seconds} seconds")
        return self._start_task('ticket-fetch', interval_seconds, self.on_ticket_fetch)

    def stop(self) -> None:
        for task in self.tasks:
            task.stop()
        self.tasks = []

    def _start_task(self, name: str, interval_seconds: float, action) -> PeriodicTask:
        task = PeriodicTask(name, interval_seconds, action)
        task.start()
        self.tasks.append(task)
        return task
