# universal/global_clock.py
import datetime
import logging
import time
from typing import Callable, List

logger = logging.getLogger(__name__)


class GlobalClock:
    """Shared simulation clock.

    Keeps a simulated datetime, advances it by a fixed tick interval scaled by
    a time multiplier, and notifies registered listeners (e.g. the brake
    backend) in registration order whenever it ticks.
    """

    def __init__(self, tick_interval: float = 0.1,
                 start: datetime.datetime = None):
        self.current_time = start or datetime.datetime(2000, 1, 1, 6, 0, 0)
        self.time_multiplier = 1.0
        self.tick_interval = tick_interval  # simulated seconds per tick at 1x
        self.running = False
        self._listeners: List[Callable[[datetime.datetime], None]] = []

    # ---- core time control ----
    def tick(self):
        """Advance simulated time by (tick_interval x multiplier) and notify listeners."""
        delta = datetime.timedelta(seconds=self.tick_interval * self.time_multiplier)
        self.current_time += delta
        for cb in list(self._listeners):
            try:
                cb(self.current_time)
            except Exception:
                logger.exception("Clock listener raised an exception")

    def run(self, ticks: int = None):
        """Tick until stopped or `ticks` ticks have elapsed.

        Sleeps tick_interval real seconds between ticks. The multiplier only
        scales how much simulated time each tick covers, so simulated time
        runs at multiplier x real time and listeners see a steady tick rate.
        """
        self.running = True
        count = 0
        while self.running:
            self.tick()
            count += 1
            if ticks is not None and count >= ticks:
                break
            time.sleep(self.tick_interval)
        self.running = False

    def stop(self):
        """Stop the continuous run loop."""
        self.running = False

    def set_speed(self, multiplier: float):
        """
        Set how fast simulation time advances.
        multiplier = 1.0 -> real time
        multiplier = 0.0 -> frozen
        """
        if multiplier < 0:
            multiplier = 0.0
        self.time_multiplier = multiplier
        logger.info("Clock speed set to %.1fx", multiplier)

    def get_time(self) -> datetime.datetime:
        return self.current_time

    def register_listener(self, callback: Callable[[datetime.datetime], None]):
        """Module (like the brake backend) calls once to receive time updates."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unregister_listener(self, callback: Callable[[datetime.datetime], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def __repr__(self):
        return self.current_time.strftime("%H:%M:%S.%f")


# Shared singleton
clock = GlobalClock()
