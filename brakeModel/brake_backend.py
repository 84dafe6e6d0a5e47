"""Train Brake Backend
"""
import logging
import os
import sys
from datetime import datetime
from typing import Callable, Dict, List, Optional

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from brakeModel.pressure_state import BrakeSnapshot, RetainerSetting, clamp
from brakeModel.propagation import TrainPropagationCoordinator
from brakeModel.train import BrakeCar, Train
from universal.global_clock import GlobalClock, clock

logger = logging.getLogger(__name__)


class TrainBrakeBackend:
    """Drives the brake model of one train, one tick at a time.

    Each tick runs the lead locomotive's brake handles, then the train-wide
    propagation, then every car's brake update in train order.

    Attributes:
        train: Train being simulated.
        coordinator: Train-wide line propagation.
        time: Simulation time of the last clock tick, if clock driven.
    """

    DT_MAX = 0.5  # s, larger clock steps are split
    DEFAULT_MAX_VACUUM_INHG = 21.0

    def __init__(self, train: Train,
                 coordinator: Optional[TrainPropagationCoordinator] = None) -> None:
        """Initialize the backend.

        Args:
            train: Train to simulate; must have at least one car.
            coordinator: Propagation pass to use. Defaults to a new one.

        Raises:
            ValueError: If the train has no cars.
        """
        if not train.cars:
            raise ValueError("Cannot simulate the brakes of a train with no cars")
        self.train = train
        self.coordinator = coordinator or TrainPropagationCoordinator()
        self.time: Optional[datetime] = None
        self._clock: Optional[GlobalClock] = None
        self._last_clock_time: Optional[datetime] = None
        self._listeners: List[Callable[[], None]] = []

    # ---- clock ----
    def attach_clock(self, sim_clock: Optional[GlobalClock] = None) -> None:
        """Step the brakes from a simulation clock, the shared one by default."""
        self.detach_clock()
        self._clock = sim_clock or clock
        self._last_clock_time = None
        self._clock.register_listener(self._on_clock_tick)

    def detach_clock(self) -> None:
        if self._clock is not None:
            self._clock.unregister_listener(self._on_clock_tick)
            self._clock = None

    def _on_clock_tick(self, now: datetime) -> None:
        """Clock listener callback.

        Args:
            now: Current simulation time from the clock.
        """
        self.time = now
        if self._last_clock_time is None:
            self._last_clock_time = now
            return

        dt_s = (now - self._last_clock_time).total_seconds()
        self._last_clock_time = now

        remaining = max(0.0, float(dt_s))
        while remaining > 1e-6:
            step = min(self.DT_MAX, remaining)
            self.step(step)
            remaining -= step

    # ---- listeners ----
    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback run after every tick."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify_listeners(self) -> None:
        for cb in list(self._listeners):
            try:
                cb()
            except Exception:
                logger.exception("Listener raised an exception")

    # ---- setup ----
    @property
    def reference_car(self) -> BrakeCar:
        return self.train.lead_locomotive or self.train.cars[0]

    def initialize(
        self,
        handbrake_on: bool = False,
        max_pressure: Optional[float] = None,
        full_service_pressure: Optional[float] = None,
        immediate_release: bool = False,
    ) -> None:
        """Charge every car for the start of a run.

        Args:
            handbrake_on: Start with all handbrakes applied.
            max_pressure: Fully charged brake pipe in psi (vacuum trains:
                inHg). Defaults to the lead handle's calibration.
            full_service_pressure: Brake pipe pressure at full service.
            immediate_release: Start with every cylinder empty.
        """
        train = self.train
        lead = train.lead_locomotive
        controller = lead.train_brake_controller if lead is not None else None
        if train.is_vacuum:
            if max_pressure is None:
                max_pressure = self.DEFAULT_MAX_VACUUM_INHG
            if full_service_pressure is None:
                full_service_pressure = 0.0
            # vacuum handles work in inHg of vacuum
            if controller is not None:
                controller.max_pressure_psi = max_pressure
        else:
            if max_pressure is None:
                max_pressure = controller.max_pressure_psi if controller else 90.0
            if full_service_pressure is None:
                reduction = controller.full_service_reduction_psi if controller else 26.0
                full_service_pressure = max_pressure - reduction
            train.line_aux2 = lead.main_reservoir_psi if lead is not None else max_pressure
        train.brake_line_target = max_pressure
        train.engine_brake_target = 0.0
        train.ep_line = 0.0

        for car in train.cars:
            car.brake_system.initialize(
                handbrake_on,
                max_pressure,
                full_service_pressure,
                immediate_release,
                train.brake_line_target,
                train.line_aux2,
            )
        logger.info(
            "Initialized brakes of %d cars (max %.1f, full service %.1f)",
            len(train.cars),
            max_pressure,
            full_service_pressure,
        )

    # ---- tick ----
    def step(self, dt: float) -> None:
        """Advance the brake model by dt seconds.

        A car whose update raises is logged and skipped; the other cars still
        run.

        Args:
            dt: Elapsed simulation time in seconds.
        """
        if dt <= 0.0:
            return
        self._update_controllers(dt)
        self.coordinator.update(self.train, dt)
        for car in self.train.cars:
            car.brake_system.ai_brake_percent = self.train.ai_brake_percent
            try:
                car.brake_system.update(dt)
            except Exception:
                logger.exception("Brake update failed for %r", car)
        self._notify_listeners()

    def _update_controllers(self, dt: float) -> None:
        train = self.train
        lead = train.lead_locomotive
        if lead is None or train.ai_brake_percent is not None:
            return
        if lead.train_brake_controller is not None:
            train.brake_line_target, train.ep_line = lead.train_brake_controller.update_pressure(
                train.brake_line_target, train.ep_line, dt)
        if lead.engine_brake_controller is not None:
            train.engine_brake_target = lead.engine_brake_controller.update_engine_brake_pressure(
                train.engine_brake_target, dt)

    # ---- commands ----
    def ai_set_percent(self, percent: float) -> float:
        """Hand the brakes to the AI driver at percent braking.

        Returns:
            New train brake line target.
        """
        target = None
        reference = self.reference_car.brake_system
        for car in self.train.cars:
            value = car.brake_system.ai_set_percent(percent)
            if car.brake_system is reference:
                target = value
        self.train.brake_line_target = target
        self.train.ai_brake_percent = clamp(float(percent), 0.0, 100.0)
        logger.debug("AI brake %.0f%%, line target %.2f", self.train.ai_brake_percent, target)
        return target

    def release_ai_control(self) -> None:
        """Give the brakes back to the lead locomotive's handles."""
        self.train.ai_brake_percent = None
        for car in self.train.cars:
            car.brake_system.ai_brake_percent = None
        logger.debug("AI brake control released")

    def set_handbrake_percent(self, percent: float, car_index: Optional[int] = None) -> None:
        for car in self._select_cars(car_index):
            car.brake_system.set_handbrake_percent(percent)

    def set_retainer(self, setting: RetainerSetting, car_index: Optional[int] = None) -> None:
        for car in self._select_cars(car_index):
            car.brake_system.set_retainer(setting)
        logger.info("Retainer set to %s", setting.value)

    def set_bail_off(self, bail_off: bool) -> None:
        lead = self.train.lead_locomotive
        if lead is not None:
            lead.bail_off = bool(bail_off)

    def emergency_brake(self) -> None:
        lead = self.train.lead_locomotive
        if lead is not None and lead.train_brake_controller is not None:
            lead.train_brake_controller.set_emergency()
            logger.warning("Emergency brake applied")

    def connect_car(self, car_index: int) -> None:
        self.train.cars[car_index].brake_system.connect()
        logger.info("Connected brake hoses of %r", self.train.cars[car_index])

    def disconnect_car(self, car_index: int) -> None:
        self.train.cars[car_index].brake_system.disconnect()
        logger.info("Disconnected brake hoses of %r", self.train.cars[car_index])

    def _select_cars(self, car_index: Optional[int]) -> List[BrakeCar]:
        if car_index is None:
            return list(self.train.cars)
        return [self.train.cars[car_index]]

    # ---- snapshot ----
    def snapshot(self) -> Dict[str, object]:
        """Get the train level targets and every car's brake snapshot."""
        train = self.train
        lead = train.lead_locomotive
        return {
            "brake_line_target": train.brake_line_target,
            "line_aux2": train.line_aux2,
            "engine_brake_target": train.engine_brake_target,
            "ep_line": train.ep_line,
            "ai_brake_percent": train.ai_brake_percent,
            "main_reservoir_psi": lead.main_reservoir_psi if lead is not None else None,
            "cars": [car.brake_system.snapshot() for car in train.cars],
        }

    def restore(self, data: Dict[str, object]) -> None:
        """Overwrite the brake state between ticks.

        Raises:
            ValueError: If the car count or a car's brake type differs.
        """
        train = self.train
        snapshots: List[BrakeSnapshot] = list(data["cars"])
        if len(snapshots) != len(train.cars):
            raise ValueError(
                "Snapshot has %d cars, train has %d" % (len(snapshots), len(train.cars))
            )
        for car, snap in zip(train.cars, snapshots):
            car.brake_system.restore(snap)
        train.brake_line_target = data["brake_line_target"]
        train.line_aux2 = data["line_aux2"]
        train.engine_brake_target = data["engine_brake_target"]
        train.ep_line = data["ep_line"]
        train.ai_brake_percent = data.get("ai_brake_percent")
        lead = train.lead_locomotive
        if lead is not None and data.get("main_reservoir_psi") is not None:
            lead.main_reservoir_psi = data["main_reservoir_psi"]
        self._notify_listeners()

    # ---- telemetry ----
    @property
    def total_brake_force_n(self) -> float:
        return sum(car.brake_force_n for car in self.train.cars)

    def status_line(self, is_metric: bool = False) -> str:
        """Get the cab brake summary of the reference car."""
        last = self.train.last_car
        return self.reference_car.brake_system.get_full_status(
            last.brake_system if last is not None else None,
            is_metric,
            self.train.brake_line_target,
        ).strip()

    def debug_table(self, is_metric: bool = False) -> List[List[str]]:
        return [[car.car_id] + car.brake_system.get_debug_status(is_metric)
                for car in self.train.cars]

    def report_state(self) -> Dict[str, object]:
        """Get the brake state as a dictionary.

        Returns:
            Train level targets, total force and a summary row per car.
        """
        train = self.train
        lead = train.lead_locomotive
        return {
            "brake_line_target": train.brake_line_target,
            "line_aux2": train.line_aux2,
            "engine_brake_target": train.engine_brake_target,
            "ep_line": train.ep_line,
            "ai_brake_percent": train.ai_brake_percent,
            "main_reservoir_psi": lead.main_reservoir_psi if lead is not None else None,
            "total_brake_force_n": self.total_brake_force_n,
            "cars": [
                {
                    "car_id": car.car_id,
                    "brake_type": car.brake_system.TYPE_NAME,
                    "line_main": car.brake_system.state.line_main,
                    "cylinder": car.brake_system.state.cylinder,
                    "valve_state": car.brake_system.state.valve_state.value,
                    "handbrake_percent": car.brake_system.state.handbrake_percent,
                    "brake_force_n": car.brake_force_n,
                }
                for car in train.cars
            ],
        }
