"""Train-wide brake line propagation.

Moves the lead locomotive's brake pipe toward the train target and spreads
pressure differences car to car, then settles the main reservoir pipe and
the locomotive direct lines.
"""
import logging
import math
from typing import TYPE_CHECKING, List, Optional

from brakeModel.pressure_state import BrakeEvent, ValveState, decrease_pressure, increase_pressure
from universal.universal import ConversionFunctions

if TYPE_CHECKING:
    from brakeModel.brake_systems import BrakeSystem
    from brakeModel.train import BrakeCar, Locomotive, Train

logger = logging.getLogger(__name__)


def exchange_line_pressure(
    upstream: "BrakeSystem",
    downstream: "BrakeSystem",
    dt: float,
    pipe_time_factor_s: float,
) -> None:
    """Let air flow between the brake pipes of two coupled cars.

    The flow conserves v0*p0 + v1*p1 and never carries either pipe past the
    pressure the two would equalise at. Disconnected pipes are left alone.

    Args:
        upstream: Brake system of the car nearer the front.
        downstream: Brake system of the next car.
        dt: Sub-step length in seconds.
        pipe_time_factor_s: Time constant of the brake pipe.
    """
    s0 = upstream.state
    s1 = downstream.state
    p0 = s0.line_main
    p1 = s1.line_main
    if p0 < 0 or p1 < 0 or p0 == p1:
        return
    v0 = upstream.brake_pipe_volume_ft3
    v1 = downstream.brake_pipe_volume_ft3
    if v0 <= 0 or v1 <= 0:
        return
    equalised = (v0 * p0 + v1 * p1) / (v0 + v1)
    flow = dt * (p1 - p0) / pipe_time_factor_s * 2 * v0 * v1 / (v0 + v1)
    if abs(flow) >= abs(equalised - p0) * v0:
        s0.line_main = equalised
        s1.line_main = equalised
    else:
        s0.line_main = p0 + flow / v0
        s1.line_main = p1 - flow / v1


def _sub_steps(dt: float, pipe_time_factor_s: float) -> int:
    return max(1, int(math.ceil(2 * dt / pipe_time_factor_s)))


class TrainPropagationCoordinator:
    """Runs brake line propagation once per tick for a whole train.

    The reference brake system (the lead locomotive's, otherwise the first
    car's) picks the algorithm by calling back into one of the propagate_*
    methods.
    """

    # charging rates above this snap the whole pipe to the target at once
    INSTANT_CHARGING_RATE_PSIPS = 1000.0

    def update(self, train: "Train", dt: float) -> None:
        """Propagate the train's brake lines over dt seconds.

        Args:
            train: Train whose cars are updated in place.
            dt: Elapsed simulation time in seconds. Zero or negative does
                nothing.
        """
        if dt <= 0.0 or not train.cars:
            return
        lead = train.lead_locomotive
        reference = lead if lead is not None else train.cars[0]
        reference.brake_system.propagate(self, train, lead, dt)

    # ---- air ----
    def set_uniform_pressures(self, train: "Train") -> None:
        """Give every connected car the train level pressures directly."""
        logger.debug("No lead locomotive, using uniform brake pressures")
        for car in train.cars:
            s = car.brake_system.state
            if not s.connected:
                continue
            s.line_main = train.brake_line_target
            s.line_aux2 = train.line_aux2
            s.line_aux3 = 0.0
            s.ep_line = train.ep_line if car.brake_system.uses_ep_line else 0.0
            s.bail_off = False

    def propagate_air_lines(self, train: "Train", lead: "Locomotive",
                            dt: float, two_pipes: bool) -> None:
        """Propagate brake pipe, main reservoir pipe and direct lines.

        Args:
            train: Train being simulated.
            lead: Lead locomotive feeding the brake pipe.
            dt: Elapsed simulation time in seconds.
            two_pipes: Whether every car carries a main reservoir pipe.
        """
        if lead.brake_pipe_charging_rate_psips > self.INSTANT_CHARGING_RATE_PSIPS:
            for car in train.cars:
                if car.brake_system.state.connected:
                    car.brake_system.state.line_main = train.brake_line_target
        else:
            self._propagate_brake_pipe(train, lead, dt)

        group = train.find_lead_locomotives()
        self._update_direct_lines(train, lead, group, dt)
        self._equalise_main_reservoir_pipe(train, group, two_pipes)

    def _propagate_brake_pipe(self, train: "Train", lead: "Locomotive", dt: float) -> None:
        target = train.brake_line_target
        service_time_factor = lead.brake_service_time_factor_s
        if lead.train_brake_controller is not None and lead.train_brake_controller.is_emergency():
            service_time_factor = lead.brake_emergency_time_factor_s
        pipe_tf = lead.brake_pipe_time_factor_s
        n = _sub_steps(dt, pipe_tf)
        step = dt / n
        s = lead.brake_system.state
        volume_ratio = lead.brake_system.brake_pipe_volume_ft3 / lead.main_reservoir_volume_ft3
        for _ in range(n):
            if s.connected and s.line_main < target:
                dp = step * lead.brake_pipe_charging_rate_psips
                if s.line_main + dp > target:
                    dp = target - s.line_main
                if s.line_main + dp > lead.main_reservoir_psi:
                    dp = lead.main_reservoir_psi - s.line_main
                dp = max(dp, 0.0)
                s.line_main += dp
                lead.main_reservoir_psi -= dp * volume_ratio
            elif s.connected and s.line_main > target:
                s.line_main = max(target, s.line_main * (1 - step / service_time_factor))
            self._exchange_along_train(train, step, pipe_tf)

    @staticmethod
    def _exchange_along_train(train: "Train", dt: float, pipe_time_factor_s: float) -> None:
        cars = train.cars
        for i in range(1, len(cars)):
            exchange_line_pressure(cars[i - 1].brake_system, cars[i].brake_system, dt, pipe_time_factor_s)

    def _update_direct_lines(self, train: "Train", lead: "Locomotive",
                             group: List["BrakeCar"], dt: float) -> None:
        group_ids = {id(car) for car in group}
        previous = lead.engine_brake_state
        target = train.engine_brake_target
        share = max(1, len(group))
        for car in train.cars:
            s = car.brake_system.state
            if not s.connected:
                continue
            s.ep_line = train.ep_line if car.brake_system.uses_ep_line else 0.0
            if id(car) not in group_ids:
                s.line_aux3 = 0.0
                s.bail_off = False
                continue
            p = s.line_aux3
            if p < target:
                p = increase_pressure(p, target, lead.engine_brake_apply_rate_psips / share, dt)
                lead.engine_brake_state = ValveState.APPLY
            elif p > target:
                p = decrease_pressure(p, target, lead.engine_brake_release_rate_psips / share, dt)
                lead.engine_brake_state = ValveState.RELEASE
            else:
                lead.engine_brake_state = ValveState.LAP
            s.line_aux3 = p
            s.bail_off = lead.bail_off

        if lead.engine_brake_state != previous:
            if lead.engine_brake_state == ValveState.APPLY:
                lead.brake_system.signal_event(BrakeEvent.ENGINE_BRAKE_PRESSURE_INCREASE)
            elif lead.engine_brake_state == ValveState.RELEASE:
                lead.brake_system.signal_event(BrakeEvent.ENGINE_BRAKE_PRESSURE_DECREASE)

    @staticmethod
    def _equalise_main_reservoir_pipe(train: "Train", group: List["BrakeCar"],
                                      two_pipes: bool) -> None:
        group_ids = {id(car) for car in group}
        sum_pv = 0.0
        sum_v = 0.0
        for car in train.cars:
            system = car.brake_system
            if not system.state.connected:
                continue
            in_group = id(car) in group_ids
            if in_group or two_pipes:
                sum_v += system.brake_pipe_volume_ft3
                sum_pv += system.brake_pipe_volume_ft3 * system.state.line_aux2
            if in_group and car.is_locomotive:
                sum_v += car.main_reservoir_volume_ft3
                sum_pv += car.main_reservoir_volume_ft3 * car.main_reservoir_psi
        mean = sum_pv / sum_v if sum_v > 0 else 0.0
        train.line_aux2 = mean

        for car in train.cars:
            s = car.brake_system.state
            if not s.connected:
                continue
            if id(car) in group_ids:
                s.line_aux2 = mean
                if car.is_locomotive:
                    car.main_reservoir_psi = mean
            else:
                s.line_aux2 = mean if two_pipes else 0.0

    # ---- vacuum ----
    def propagate_vacuum_line(
        self,
        train: "Train",
        lead: Optional["BrakeCar"],
        dt: float,
        pipe_time_factor_s: float,
        release_time_factor_s: float,
        apply_charging_rate_psips: float,
    ) -> None:
        """Propagate a vacuum brake pipe.

        The head car (lead locomotive, else the first car) moves toward the
        train target, given as a vacuum in inHg, then pipes exchange
        pairwise as for air.

        Args:
            train: Train being simulated.
            lead: Lead locomotive, or None.
            dt: Elapsed simulation time in seconds.
            pipe_time_factor_s: Time constant of the brake pipe.
            release_time_factor_s: Time constant of the ejector.
            apply_charging_rate_psips: Rate air is admitted when applying.
        """
        head = lead if lead is not None else train.cars[0]
        s = head.brake_system.state
        target = ConversionFunctions.vacuum_to_psia(train.brake_line_target)
        n = _sub_steps(dt, pipe_time_factor_s)
        step = dt / n
        for _ in range(n):
            if s.connected and s.line_main < target:
                s.line_main = increase_pressure(s.line_main, target, apply_charging_rate_psips, step)
            elif s.connected and s.line_main > target:
                s.line_main = max(target, s.line_main * (1 - step / release_time_factor_s))
            self._exchange_along_train(train, step, pipe_time_factor_s)
