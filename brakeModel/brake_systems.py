"""Brake system variants.

Each car owns one brake system, and the brake system owns the car's
PressureState. The variants share one capability set (update, propagate,
handbrake, retainer, AI percent, status, snapshot) declared by BrakeSystem.
"""
import logging
import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from brakeModel.parameters import apply_parameters, copy_parameters
from brakeModel.pressure_state import (
    DISCONNECTED_PSI,
    BrakeEvent,
    BrakeSnapshot,
    PressureState,
    RetainerSetting,
    ValveState,
    clamp,
    clamp_state,
    exchange_pressure,
)
from brakeModel.valve_state_machine import ValveThresholds, transition
from universal.universal import (
    ONE_ATMOSPHERE_KPA,
    ConversionFunctions,
    PressureUnit,
    format_pressure,
)

if TYPE_CHECKING:
    from brakeModel.propagation import TrainPropagationCoordinator
    from brakeModel.train import BrakeCar, Train

logger = logging.getLogger(__name__)

ONE_ATMOSPHERE_PSI = ConversionFunctions.kpa_to_psi(ONE_ATMOSPHERE_KPA)


class BrakeSystem(ABC):
    """Interface shared by every brake system variant.

    Attributes:
        state: Pressures owned by this car.
        brake_force_n: Brake force computed by the last update, in newtons.
        brake_pipe_volume_ft3: Volume of this car's length of brake pipe.
        ai_brake_percent: AI driver braking request, None while a driver
            has the handles.
    """

    TYPE_NAME = ""
    PARAMETERS: Dict[str, Sequence[str]] = {}
    PRESSURE_LIMIT_PSI = 150.0
    is_vacuum = False
    uses_ep_line = False

    def __init__(self, length_m: float = 0.0) -> None:
        self.state = PressureState()
        self.brake_pipe_volume_ft3 = 0.5
        self.max_brake_force_n = 89e3
        self.max_handbrake_force_n = 0.0
        self.brake_force_n = 0.0
        self.ai_brake_percent: Optional[float] = None
        self._listeners: List[Callable[[BrakeEvent], None]] = []

    # ---- events ----
    def add_listener(self, callback: Callable[[BrakeEvent], None]) -> None:
        """Register a callback for brake pressure events.

        Args:
            callback: Function called with the BrakeEvent.
        """
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[BrakeEvent], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def signal_event(self, event: BrakeEvent) -> None:
        """Notify all registered listeners of a brake event."""
        for cb in list(self._listeners):
            try:
                cb(event)
            except Exception:
                logger.exception("Brake event listener raised an exception")

    # ---- configuration ----
    def parse_parameters(self, params: Mapping[str, object]) -> int:
        """Apply recognised parameters from an external loader.

        Args:
            params: Parameter name to numeric value mapping. Unknown names
                and malformed values are ignored.

        Returns:
            Number of parameters applied.
        """
        return apply_parameters(self, params, self.PARAMETERS)

    def copy_parameters_from(self, other: "BrakeSystem") -> None:
        """Copy the calibration of another brake system of the same type."""
        if type(other) is not type(self):
            raise TypeError(
                "Cannot copy %s parameters into %s"
                % (other.TYPE_NAME, self.TYPE_NAME)
            )
        copy_parameters(other, self, self.PARAMETERS)

    # ---- commands ----
    def set_handbrake_percent(self, percent: float) -> None:
        """Set the handbrake application, clamped to 0..100."""
        self.state.handbrake_percent = clamp(float(percent), 0.0, 100.0)

    @property
    def handbrake_on(self) -> bool:
        return self.state.handbrake_percent > 0

    def _handbrake_force_n(self) -> float:
        return self.max_handbrake_force_n * self.state.handbrake_percent / 100.0

    def vacuum_reservoir_pressure_psi(self) -> float:
        return 0.0

    def _check_snapshot(self, snapshot: BrakeSnapshot) -> None:
        if snapshot.variant != self.TYPE_NAME:
            raise ValueError(
                "Snapshot of %r cannot restore a %r brake system"
                % (snapshot.variant, self.TYPE_NAME)
            )

    @abstractmethod
    def initialize(
        self,
        handbrake_on: bool,
        max_pressure: float,
        full_service_pressure: float,
        immediate_release: bool,
        train_line: float,
        train_aux2_psi: float = 0.0,
    ) -> None:
        """Set the starting pressures of a car joining a train."""

    @abstractmethod
    def connect(self) -> None:
        """Couple the brake hoses of a disconnected car."""

    @abstractmethod
    def disconnect(self) -> None:
        """Uncouple the brake hoses and vent the car."""

    @abstractmethod
    def update(self, dt: float) -> None:
        """Advance this car's brake pressures by dt seconds."""

    @abstractmethod
    def propagate(
        self,
        coordinator: "TrainPropagationCoordinator",
        train: "Train",
        lead: Optional["BrakeCar"],
        dt: float,
    ) -> None:
        """Run the train-wide line propagation suited to this brake type."""

    @abstractmethod
    def set_retainer(self, setting: RetainerSetting) -> None:
        """Move the retaining valve handle."""

    @abstractmethod
    def ai_set_percent(self, percent: float) -> float:
        """Get the train line target for an AI brake percentage."""

    @abstractmethod
    def get_status(self, is_metric: bool = False) -> str:
        """Get a one-line brake pipe summary."""

    @abstractmethod
    def get_full_status(
        self,
        last_car_system: Optional["BrakeSystem"] = None,
        is_metric: bool = False,
        equalizing_pressure: Optional[float] = None,
    ) -> str:
        """Get the cab summary, including the end-of-train reading."""

    @abstractmethod
    def get_debug_status(self, is_metric: bool = False) -> List[str]:
        """Get the per-car columns of the brake debug table."""

    @abstractmethod
    def cylinder_pressure_psi(self) -> float:
        """Get the brake cylinder gauge pressure."""

    @abstractmethod
    def snapshot(self) -> BrakeSnapshot:
        """Get a flat record of the brake state."""

    @abstractmethod
    def restore(self, snapshot: BrakeSnapshot) -> None:
        """Overwrite the brake state from a record made by snapshot()."""


class AirBrakeSystem(BrakeSystem):
    """Common calibration and plumbing of the automatic air brakes.

    Subclasses implement update() with their own valve logic and reuse the
    triple valve steps defined here.
    """

    TWO_PIPES = False
    DEBUG_TAG = "1P"

    # release threshold psi, release rate psi/s (None: max release rate)
    RETAINER_PRESETS: Dict[RetainerSetting, Tuple[float, Optional[float]]] = {
        RetainerSetting.EXHAUST: (0.0, None),
        RetainerSetting.HIGH_PRESSURE: (20.0, (50 - 20) / 90),
        RetainerSetting.LOW_PRESSURE: (10.0, (50 - 10) / 60),
        RetainerSetting.SLOW_DIRECT: (0.0, (50 - 10) / 86),
    }

    PARAMETERS = {
        "maxhandbrakeforce": ("max_handbrake_force_n",),
        "maxhandbrakeforcen": ("max_handbrake_force_n",),
        "maxbrakeforce": ("max_brake_force_n",),
        "maxbrakeforcen": ("max_brake_force_n",),
        "brakecylinderpressureformaxbrakebrakeforce": ("max_cylinder_psi",),
        "maxcylinderpressurepsi": ("max_cylinder_psi",),
        "triplevalveratio": ("aux_cyl_volume_ratio",),
        "auxcylvolumeratio": ("aux_cyl_volume_ratio",),
        "auxbrakelinevolumeratio": ("aux_brake_line_volume_ratio",),
        "maxreleaserate": ("max_release_rate_psips", "release_rate_psips"),
        "releaseratepsips": ("max_release_rate_psips", "release_rate_psips"),
        "maxapplicationrate": ("max_application_rate_psips",),
        "maxapplicationratepsips": ("max_application_rate_psips",),
        "maxauxilarychargingrate": ("max_aux_charging_rate_psips",),
        "maxauxchargingratepsips": ("max_aux_charging_rate_psips",),
        "emergencyreschargingrate": ("emerg_res_charging_rate_psips",),
        "emergreschargingratepsips": ("emerg_res_charging_rate_psips",),
        "emergencyresvolumemultiplier": ("emerg_aux_volume_ratio",),
        "emergauxvolumeratio": ("emerg_aux_volume_ratio",),
        "brakepipevolume": ("brake_pipe_volume_ft3",),
        "brakepipevolumeft3": ("brake_pipe_volume_ft3",),
        "graduatedrelease": ("graduated_release",),
    }

    def __init__(self, length_m: float = 0.0) -> None:
        super().__init__(length_m)
        self.max_cylinder_psi = 64.0
        self.aux_cyl_volume_ratio = 2.5
        self.aux_brake_line_volume_ratio = 3.1
        self.release_rate_psips = 1.86
        self.max_release_rate_psips = 1.86
        self.max_application_rate_psips = 0.9
        self.max_aux_charging_rate_psips = 1.684
        self.emerg_res_charging_rate_psips = 1.684
        self.emerg_aux_volume_ratio = 1.4
        self.retainer_threshold_psi = 0.0
        self.full_service_psi = 50.0
        self.max_pressure_psi = 90.0
        self.full_service_reduction_psi = 26.0
        self.graduated_release = False
        self.brake_percent = 0.0
        self.brake_pipe_volume_ft3 = 0.028 * (1 + length_m)

    def initialize(
        self,
        handbrake_on: bool,
        max_pressure: float,
        full_service_pressure: float,
        immediate_release: bool,
        train_line: float,
        train_aux2_psi: float = 0.0,
    ) -> None:
        """Set the starting pressures of a car joining a train.

        Args:
            handbrake_on: Start with the handbrake fully applied.
            max_pressure: Fully charged brake pipe pressure in psi.
            full_service_pressure: Brake pipe pressure at full service.
            immediate_release: Start with the cylinder empty (AI trains).
            train_line: Current train brake line pressure in psi.
            train_aux2_psi: Current main reservoir pipe pressure in psi.
        """
        s = self.state
        s.line_main = train_line
        s.line_aux2 = train_aux2_psi
        s.line_aux3 = 0.0
        s.ep_line = 0.0
        s.aux_reservoir = s.line_main
        s.emergency_reservoir = max_pressure
        self.full_service_psi = full_service_pressure
        if max_pressure > 0:
            self.max_pressure_psi = max_pressure
            if 0 < full_service_pressure < max_pressure:
                self.full_service_reduction_psi = max_pressure - full_service_pressure
        s.auto_cylinder = clamp(
            (max_pressure - s.line_main) * self.aux_cyl_volume_ratio,
            0.0,
            self.max_cylinder_psi,
        )
        if immediate_release:
            s.auto_cylinder = 0.0
        s.cylinder = s.auto_cylinder
        s.valve_state = ValveState.LAP
        s.bail_off = False
        s.handbrake_percent = 100.0 if handbrake_on else 0.0
        self._update_brake_force()

    def connect(self) -> None:
        if self.state.line_main < 0:
            self.state.line_main = 0.0

    def disconnect(self) -> None:
        self.initialize(False, 0.0, 0.0, False, 0.0)
        self.state.line_main = DISCONNECTED_PSI
        self.state.line_aux2 = 0.0

    def propagate(self, coordinator, train, lead, dt) -> None:
        if lead is None:
            coordinator.set_uniform_pressures(train)
        else:
            coordinator.propagate_air_lines(train, lead, dt, self.TWO_PIPES)

    def set_retainer(self, setting: RetainerSetting) -> None:
        """Select one of the four retainer release presets.

        Args:
            setting: Retainer handle position.
        """
        threshold, rate = self.RETAINER_PRESETS[setting]
        self.retainer_threshold_psi = threshold
        self.release_rate_psips = self.max_release_rate_psips if rate is None else rate
        self.state.retainer = setting

    def ai_set_percent(self, percent: float) -> float:
        """Get the brake line target for an AI train braking at percent.

        Args:
            percent: Requested braking, clamped to 0..100.

        Returns:
            Train brake line target in psi.
        """
        self.brake_percent = clamp(float(percent), 0.0, 100.0)
        self.ai_brake_percent = self.brake_percent
        return self.max_pressure_psi - self.full_service_reduction_psi * self.brake_percent / 100.0

    def cylinder_pressure_psi(self) -> float:
        return self.state.cylinder

    # ---- triple valve ----
    def _run_triple_valve(self, dt: float) -> None:
        s = self.state
        s.valve_state = transition(s, ValveThresholds(self.full_service_psi))
        if s.valve_state in (ValveState.APPLY, ValveState.EMERGENCY):
            self._apply_step(dt)
        if s.valve_state == ValveState.RELEASE:
            self._release_step(dt)

    def _apply_step(self, dt: float) -> None:
        # Cylinder fills from the auxiliary reservoir until they equalise or
        # the reservoir falls to brake pipe pressure.
        s = self.state
        r = self.aux_cyl_volume_ratio
        dp = dt * self.max_application_rate_psips
        if s.aux_reservoir - dp / r < s.auto_cylinder + dp:
            dp = (s.aux_reservoir - s.auto_cylinder) * r / (1 + r)
        if s.line_main > s.aux_reservoir - dp / r:
            dp = (s.aux_reservoir - s.line_main) * r
            s.valve_state = ValveState.LAP
        s.aux_reservoir -= dp / r
        s.auto_cylinder += dp
        if s.valve_state == ValveState.EMERGENCY:
            s.emergency_reservoir, s.aux_reservoir = exchange_pressure(
                s.emergency_reservoir,
                s.aux_reservoir,
                dt * self.emerg_res_charging_rate_psips,
                1.0,
                self.emerg_aux_volume_ratio,
            )

    def _release_step(self, dt: float) -> None:
        s = self.state
        ear = self.emerg_aux_volume_ratio
        threshold = self.retainer_threshold_psi
        if self.graduated_release:
            threshold = max(threshold, (s.emergency_reservoir - s.line_main) * self.aux_cyl_volume_ratio)
        if s.auto_cylinder > threshold:
            s.auto_cylinder = max(threshold, s.auto_cylinder - dt * self.release_rate_psips)

        if (not self.graduated_release and s.aux_reservoir < s.emergency_reservoir
                and s.aux_reservoir < s.line_main):
            dp = dt * self.emerg_res_charging_rate_psips
            if s.emergency_reservoir - dp < s.aux_reservoir + dp * ear:
                dp = (s.emergency_reservoir - s.aux_reservoir) / (1 + ear)
            if s.line_main < s.aux_reservoir + dp * ear:
                dp = (s.line_main - s.aux_reservoir) / ear
            s.emergency_reservoir -= dp
            s.aux_reservoir += dp * ear
        if s.aux_reservoir > s.emergency_reservoir:
            s.aux_reservoir, s.emergency_reservoir = exchange_pressure(
                s.aux_reservoir,
                s.emergency_reservoir,
                dt * self.emerg_res_charging_rate_psips,
                ear,
                1.0,
            )
        if s.aux_reservoir < s.line_main:
            s.line_main, s.aux_reservoir = exchange_pressure(
                s.line_main,
                s.aux_reservoir,
                dt * self.max_aux_charging_rate_psips,
                self.aux_brake_line_volume_ratio,
                1.0,
            )

    def _signal_valve_change(self, previous: ValveState, current: ValveState) -> None:
        if current == previous:
            return
        logger.debug("%s valve %s -> %s", self.TYPE_NAME, previous.value, current.value)
        if current == ValveState.RELEASE:
            self.signal_event(BrakeEvent.TRAIN_BRAKE_PRESSURE_DECREASE)
        elif current in (ValveState.APPLY, ValveState.EMERGENCY):
            self.signal_event(BrakeEvent.TRAIN_BRAKE_PRESSURE_INCREASE)

    def _finish(self, dt: float) -> None:
        s = self.state
        if s.bail_off:
            s.auto_cylinder -= self.max_release_rate_psips * dt
        if s.auto_cylinder < 0:
            s.auto_cylinder = 0.0
        s.cylinder = max(s.line_aux3, s.auto_cylinder)
        clamp_state(s, self.PRESSURE_LIMIT_PSI)
        self._update_brake_force()

    def _update_brake_force(self) -> None:
        force = 0.0
        if self.max_cylinder_psi > 0:
            force = self.max_brake_force_n * self.state.cylinder / self.max_cylinder_psi
        self.brake_force_n = max(force, self._handbrake_force_n())

    # ---- telemetry ----
    @staticmethod
    def _unit(is_metric: bool) -> PressureUnit:
        return PressureUnit.BAR if is_metric else PressureUnit.PSI

    def _debug_fields(self) -> List[Tuple[str, float]]:
        s = self.state
        return [
            ("BC", s.cylinder),
            ("BP", s.line_main),
            ("AR", s.aux_reservoir),
            ("ER", s.emergency_reservoir),
        ]

    def get_status(self, is_metric: bool = False) -> str:
        if not self.state.connected:
            return ""
        return "BP {}".format(
            format_pressure(self.state.line_main, PressureUnit.PSI, self._unit(is_metric), True)
        )

    def get_full_status(self, last_car_system=None, is_metric=False,
                        equalizing_pressure=None) -> str:
        unit = self._unit(is_metric)
        s = self.state
        text = ""
        if equalizing_pressure is not None:
            text += " EQ {}".format(format_pressure(equalizing_pressure, PressureUnit.PSI, unit, True))
        if s.connected:
            text += " BC {} BP {}".format(
                format_pressure(s.cylinder, PressureUnit.PSI, unit, False),
                format_pressure(s.line_main, PressureUnit.PSI, unit, False),
            )
        if last_car_system is not None and last_car_system is not self:
            text += " EOT " + last_car_system.get_status(is_metric)
        if s.handbrake_percent > 0:
            text += " Handbrake {:.0f}%".format(s.handbrake_percent)
        return text

    def get_debug_status(self, is_metric: bool = False) -> List[str]:
        if not self.state.connected:
            return []
        unit = self._unit(is_metric)
        rows = [self.DEBUG_TAG]
        for label, value in self._debug_fields():
            rows.append("{} {}".format(label, format_pressure(value, PressureUnit.PSI, unit, False)))
        rows.append("State {}".format(self.state.valve_state.value))
        rows.append("")  # state column is two wide
        hb = self.state.handbrake_percent
        rows.append("Handbrake {:.0f}%".format(hb) if hb > 0 else "")
        return rows

    # ---- snapshot ----
    def snapshot(self) -> BrakeSnapshot:
        s = self.state
        return BrakeSnapshot(
            variant=self.TYPE_NAME,
            line_main=s.line_main,
            line_aux2=s.line_aux2,
            line_aux3=s.line_aux3,
            cylinder=s.cylinder,
            auto_cylinder=s.auto_cylinder,
            aux_reservoir=s.aux_reservoir,
            emergency_reservoir=s.emergency_reservoir,
            handbrake_percent=s.handbrake_percent,
            retainer=s.retainer,
            valve_state=s.valve_state,
            bail_off=s.bail_off,
            full_service_psi=self.full_service_psi,
            release_rate_psips=self.release_rate_psips,
            retainer_threshold_psi=self.retainer_threshold_psi,
            ep_line=s.ep_line,
            ai_brake_percent=self.ai_brake_percent,
        )

    def restore(self, snapshot: BrakeSnapshot) -> None:
        self._check_snapshot(snapshot)
        self.state = PressureState(
            line_main=snapshot.line_main,
            line_aux2=snapshot.line_aux2,
            line_aux3=snapshot.line_aux3,
            ep_line=snapshot.ep_line,
            cylinder=snapshot.cylinder,
            auto_cylinder=snapshot.auto_cylinder,
            aux_reservoir=snapshot.aux_reservoir,
            emergency_reservoir=snapshot.emergency_reservoir,
            handbrake_percent=snapshot.handbrake_percent,
            retainer=snapshot.retainer,
            valve_state=snapshot.valve_state,
            bail_off=snapshot.bail_off,
        )
        self.full_service_psi = snapshot.full_service_psi
        self.release_rate_psips = snapshot.release_rate_psips
        self.retainer_threshold_psi = snapshot.retainer_threshold_psi
        self.ai_brake_percent = snapshot.ai_brake_percent
        self._update_brake_force()


class AirSinglePipe(AirBrakeSystem):
    """Classic triple valve brake fed by a single brake pipe."""

    TYPE_NAME = "air_single_pipe"

    def update(self, dt: float) -> None:
        """Advance the triple valve and reservoirs by dt seconds.

        Args:
            dt: Elapsed simulation time in seconds. Zero or negative leaves
                the pressures untouched.
        """
        s = self.state
        if dt <= 0.0 or not s.connected:
            self._update_brake_force()
            return
        previous = s.valve_state
        self._run_triple_valve(dt)
        self._signal_valve_change(previous, s.valve_state)
        self._finish(dt)


class AirTwinPipe(AirBrakeSystem):
    """Brake pipe plus main reservoir pipe.

    The cylinder follows a threshold derived from the brake pipe reduction;
    the auxiliary reservoir charges from the main reservoir pipe.
    """

    TYPE_NAME = "air_twin_pipe"
    TWO_PIPES = True
    DEBUG_TAG = "2P"

    def update(self, dt: float) -> None:
        s = self.state
        if dt <= 0.0 or not s.connected:
            self._update_brake_force()
            return
        previous = s.valve_state
        r = self.aux_cyl_volume_ratio
        threshold = max(self.retainer_threshold_psi, (s.emergency_reservoir - s.line_main) * r)

        if s.auto_cylinder > threshold:
            s.valve_state = ValveState.RELEASE
            s.auto_cylinder = max(threshold, s.auto_cylinder - dt * self.release_rate_psips)
        elif s.auto_cylinder < threshold:
            s.valve_state = ValveState.APPLY
            dp = dt * self.max_application_rate_psips
            if s.aux_reservoir - dp / r < s.auto_cylinder + dp:
                dp = (s.aux_reservoir - s.auto_cylinder) * r / (1 + r)
            if threshold < s.auto_cylinder + dp:
                dp = threshold - s.auto_cylinder
            s.aux_reservoir -= dp / r
            s.auto_cylinder += dp
        else:
            s.valve_state = ValveState.LAP

        if s.line_main > s.emergency_reservoir:
            s.line_main, s.emergency_reservoir = exchange_pressure(
                s.line_main,
                s.emergency_reservoir,
                dt * self.emerg_res_charging_rate_psips,
                self.emerg_aux_volume_ratio * self.aux_brake_line_volume_ratio,
                1.0,
            )
            s.valve_state = ValveState.RELEASE
        if s.aux_reservoir < s.line_aux2:
            s.line_aux2, s.aux_reservoir = exchange_pressure(
                s.line_aux2,
                s.aux_reservoir,
                dt * self.max_aux_charging_rate_psips,
                self.aux_brake_line_volume_ratio,
                1.0,
            )

        self._signal_valve_change(previous, s.valve_state)
        self._finish(dt)

    def _debug_fields(self) -> List[Tuple[str, float]]:
        return super()._debug_fields() + [("MRP", self.state.line_aux2)]


class ElectroPneumatic(AirBrakeSystem):
    """EP brake: cylinder pressure commanded by the EP control line.

    The EP line pressure arrives in ep_line. The triple valve still runs
    underneath as the automatic safety layer, and the independent brake on
    line_aux3 still feeds the cylinder directly.
    """

    TYPE_NAME = "ep"
    TWO_PIPES = True
    DEBUG_TAG = "EP"
    uses_ep_line = True

    def __init__(self, length_m: float = 0.0) -> None:
        super().__init__(length_m)
        self.ep_state = ValveState.LAP

    def update(self, dt: float) -> None:
        s = self.state
        if dt <= 0.0 or not s.connected:
            self._update_brake_force()
            return
        previous_valve = s.valve_state
        previous_ep = self.ep_state

        self.retainer_threshold_psi = s.ep_line
        if s.auto_cylinder > self.retainer_threshold_psi:
            self.ep_state = ValveState.RELEASE
            if s.valve_state == ValveState.LAP:
                s.valve_state = ValveState.RELEASE
        self._run_triple_valve(dt)
        self._signal_valve_change(previous_valve, s.valve_state)

        if s.auto_cylinder < self.retainer_threshold_psi:
            self.ep_state = ValveState.APPLY
            dp = dt * self.max_application_rate_psips
            if s.line_aux2 - dp < s.auto_cylinder + dp:
                dp = (s.line_aux2 - s.auto_cylinder) * 0.5
            if self.retainer_threshold_psi < s.auto_cylinder + dp:
                dp = self.retainer_threshold_psi - s.auto_cylinder
            s.line_aux2 -= dp
            s.auto_cylinder += dp

        if self.ep_state != previous_ep:
            if self.ep_state == ValveState.RELEASE:
                self.signal_event(BrakeEvent.TRAIN_BRAKE_PRESSURE_DECREASE)
            elif self.ep_state == ValveState.APPLY:
                self.signal_event(BrakeEvent.TRAIN_BRAKE_PRESSURE_INCREASE)

        self._finish(dt)

    def get_full_status(self, last_car_system=None, is_metric=False,
                        equalizing_pressure=None) -> str:
        s = self.state
        text = " BC {}".format(format_pressure(s.cylinder, PressureUnit.PSI, self._unit(is_metric), True))
        if s.handbrake_percent > 0:
            text += " Handbrake {:.0f}%".format(s.handbrake_percent)
        return text

    def _debug_fields(self) -> List[Tuple[str, float]]:
        s = self.state
        return [
            ("BC", s.cylinder),
            ("MRP", s.line_aux2),
            ("AR", s.aux_reservoir),
            ("ER", s.emergency_reservoir),
            ("BP", s.line_main),
        ]


class VacuumSinglePipe(BrakeSystem):
    """Automatic vacuum brake.

    Pressures are absolute (psia). Full vacuum in the pipe releases the
    brakes; admitting air applies them. The brake force comes from the
    difference between the cylinder and the reservoir side of the piston.
    """

    TYPE_NAME = "vacuum_single_pipe"
    PRESSURE_LIMIT_PSI = ONE_ATMOSPHERE_PSI
    is_vacuum = True

    PARAMETERS = {
        "maxhandbrakeforce": ("max_handbrake_force_n",),
        "maxhandbrakeforcen": ("max_handbrake_force_n",),
        "maxbrakeforce": ("max_brake_force_n",),
        "maxbrakeforcen": ("max_brake_force_n",),
        "brakecylinderpressureformaxbrakebrakeforce": ("max_force_pressure_psi",),
        "maxforcepressurepsi": ("max_force_pressure_psi",),
        "maxreleaserate": ("max_release_rate_psips",),
        "maxapplicationrate": ("apply_charging_rate_psips", "max_application_rate_psips"),
        "pipetimefactor": ("pipe_time_factor_s",),
        "releasetimefactor": ("release_time_factor_s",),
        "numberofcylinders": ("num_cylinders",),
        "cylindervolume": ("cylinder_volume",),
        "reservoirvolume": ("reservoir_volume",),
        "pipevolume": ("pipe_volume",),
        "directadmissionvalve": ("has_direct_admission_valve",),
    }

    def __init__(self, length_m: float = 0.0) -> None:
        super().__init__(length_m)
        self.max_force_pressure_psi = ConversionFunctions.kpa_to_psi(ConversionFunctions.inhg_to_kpa(21))
        self.num_cylinders = 2
        # piston applied / released positions, cubic inches
        self.cylinder_volume = 9 * 9 * 4.5 * math.pi
        self.reservoir_volume = 12 * 12 * 16 * math.pi
        self.pipe_volume = 1 * 1 * 70 * 12 * math.pi
        self.has_direct_admission_valve = False
        self.max_release_rate_psips = 2.5
        self.max_application_rate_psips = 2.5
        self.pipe_time_factor_s = 0.003
        self.release_time_factor_s = 1.009
        self.apply_charging_rate_psips = 4.0
        self.state = PressureState(
            line_main=ONE_ATMOSPHERE_PSI,
            cylinder=ONE_ATMOSPHERE_PSI,
            auto_cylinder=ONE_ATMOSPHERE_PSI,
            aux_reservoir=ONE_ATMOSPHERE_PSI,
            emergency_reservoir=0.0,
        )

    def initialize(self, handbrake_on, max_pressure, full_service_pressure,
                   immediate_release, train_line, train_aux2_psi=0.0) -> None:
        """Set starting pressures.

        For vacuum brakes max_pressure and train_line are vacuum readings in
        inHg; full_service_pressure and immediate_release are not used.
        """
        s = self.state
        s.line_main = ConversionFunctions.vacuum_to_psia(train_line)
        s.cylinder = s.auto_cylinder = s.line_main
        s.aux_reservoir = ConversionFunctions.vacuum_to_psia(max_pressure)
        s.valve_state = ValveState.LAP
        s.handbrake_percent = 100.0 if handbrake_on else 0.0
        clamp_state(s, self.PRESSURE_LIMIT_PSI)
        self._update_brake_force()

    def connect(self) -> None:
        if self.state.line_main < 0:
            self.state.line_main = ONE_ATMOSPHERE_PSI

    def disconnect(self) -> None:
        s = self.state
        s.line_main = DISCONNECTED_PSI
        s.cylinder = s.auto_cylinder = ONE_ATMOSPHERE_PSI
        s.aux_reservoir = ONE_ATMOSPHERE_PSI

    def vacuum_reservoir_pressure_psi(self) -> float:
        """Get the reservoir pressure adjusted for piston movement.

        Returns:
            Effective reservoir pressure in psia, never above the cylinder.
        """
        s = self.state
        if s.aux_reservoir >= s.cylinder:
            return s.aux_reservoir
        p = s.aux_reservoir / (1 - self.cylinder_volume / self.reservoir_volume)
        return min(p, s.cylinder)

    def update(self, dt: float) -> None:
        s = self.state
        if dt <= 0.0 or not s.connected:
            self._update_brake_force()
            return
        previous = s.valve_state

        if s.line_main < s.aux_reservoir:
            # ejector evacuating the reservoir through the pipe
            dp = dt * self.max_release_rate_psips * self.cylinder_volume / self.reservoir_volume
            vr = self.num_cylinders * self.reservoir_volume / self.pipe_volume
            s.aux_reservoir, s.line_main = exchange_pressure(s.aux_reservoir, s.line_main, dp, 1.0, vr)
            s.cylinder = s.aux_reservoir
            s.valve_state = ValveState.RELEASE
        elif s.line_main < s.cylinder:
            dp = dt * self.max_release_rate_psips
            vr = self.num_cylinders * self.cylinder_volume / self.pipe_volume
            s.cylinder, s.line_main = exchange_pressure(s.cylinder, s.line_main, dp, 1.0, vr)
            s.valve_state = ValveState.RELEASE
        elif s.line_main > s.cylinder:
            dp = dt * self.max_application_rate_psips
            vr = self.num_cylinders * self.cylinder_volume / self.pipe_volume
            if s.cylinder + dp > s.line_main - dp * vr:
                dp = (s.line_main - s.cylinder) / (1 + vr)
            s.cylinder += dp
            if not self.has_direct_admission_valve:
                s.line_main -= dp * vr
            s.valve_state = ValveState.APPLY
        else:
            s.valve_state = ValveState.LAP

        # AI trains at 0% release at once
        if self.ai_brake_percent == 0:
            s.cylinder = 0.0
        s.auto_cylinder = s.cylinder
        clamp_state(s, self.PRESSURE_LIMIT_PSI)

        if s.valve_state != previous:
            if s.valve_state == ValveState.RELEASE:
                self.signal_event(BrakeEvent.TRAIN_BRAKE_PRESSURE_DECREASE)
            elif s.valve_state == ValveState.APPLY:
                self.signal_event(BrakeEvent.TRAIN_BRAKE_PRESSURE_INCREASE)
        self._update_brake_force()

    def _update_brake_force(self) -> None:
        s = self.state
        vrp = self.vacuum_reservoir_pressure_psi()
        force = 0.0
        if s.cylinder > vrp:
            force = self.max_brake_force_n * (s.cylinder - vrp) / self.max_force_pressure_psi
        force = max(force, self._handbrake_force_n())
        if self.ai_brake_percent == 0:
            force = 0.0
        self.brake_force_n = force

    def propagate(self, coordinator, train, lead, dt) -> None:
        coordinator.propagate_vacuum_line(
            train,
            lead,
            dt,
            self.pipe_time_factor_s,
            self.release_time_factor_s,
            self.apply_charging_rate_psips,
        )

    def set_retainer(self, setting: RetainerSetting) -> None:
        logger.debug("Vacuum brakes have no retainer, ignoring %s", setting.value)

    def ai_set_percent(self, percent: float) -> float:
        """Get the train vacuum target for an AI train braking at percent.

        A request of 0% empties the cylinder at once.

        Args:
            percent: Requested braking, clamped to 0..100.

        Returns:
            Train brake line target as a vacuum in inHg.
        """
        percent = clamp(float(percent), 0.0, 100.0)
        self.ai_brake_percent = percent
        if percent == 0:
            self.state.cylinder = self.state.auto_cylinder = 0.0
            self.brake_force_n = 0.0
        return ConversionFunctions.psia_to_vacuum(
            ONE_ATMOSPHERE_PSI - self.max_force_pressure_psi * (1 - percent / 100.0)
        )

    def cylinder_pressure_psi(self) -> float:
        return 0.0

    def _vacuum(self, psia: float) -> str:
        return format_pressure(
            ConversionFunctions.psia_to_vacuum(psia), PressureUnit.INHG, PressureUnit.INHG, False
        )

    def get_status(self, is_metric: bool = False) -> str:
        if not self.state.connected:
            return ""
        return "BP {}".format(self._vacuum(self.state.line_main))

    def get_full_status(self, last_car_system=None, is_metric=False,
                        equalizing_pressure=None) -> str:
        text = ""
        if equalizing_pressure is not None:
            text += " V {}".format(
                format_pressure(equalizing_pressure, PressureUnit.INHG, PressureUnit.INHG, True)
            )
        if last_car_system is not None and last_car_system is not self:
            text += " EOT " + last_car_system.get_status(is_metric)
        if self.state.handbrake_percent > 0:
            text += " Handbrake {:.0f}%".format(self.state.handbrake_percent)
        return text

    def get_debug_status(self, is_metric: bool = False) -> List[str]:
        s = self.state
        if not s.connected:
            return []
        return [
            "V",
            "BC {}".format(self._vacuum(s.cylinder)),
            "VR {}".format(self._vacuum(self.vacuum_reservoir_pressure_psi())),
            "BP {}".format(self._vacuum(s.line_main)),
            "",
            "Handbrake {:.0f}%".format(s.handbrake_percent) if s.handbrake_percent > 0 else "",
        ]

    def snapshot(self) -> BrakeSnapshot:
        s = self.state
        return BrakeSnapshot(
            variant=self.TYPE_NAME,
            line_main=s.line_main,
            line_aux2=s.line_aux2,
            line_aux3=s.line_aux3,
            cylinder=s.cylinder,
            auto_cylinder=s.auto_cylinder,
            aux_reservoir=s.aux_reservoir,
            emergency_reservoir=s.emergency_reservoir,
            handbrake_percent=s.handbrake_percent,
            retainer=s.retainer,
            valve_state=s.valve_state,
            ep_line=s.ep_line,
            ai_brake_percent=self.ai_brake_percent,
        )

    def restore(self, snapshot: BrakeSnapshot) -> None:
        self._check_snapshot(snapshot)
        self.state = PressureState(
            line_main=snapshot.line_main,
            line_aux2=snapshot.line_aux2,
            line_aux3=snapshot.line_aux3,
            ep_line=snapshot.ep_line,
            cylinder=snapshot.cylinder,
            auto_cylinder=snapshot.auto_cylinder,
            aux_reservoir=snapshot.aux_reservoir,
            emergency_reservoir=snapshot.emergency_reservoir,
            handbrake_percent=snapshot.handbrake_percent,
            retainer=snapshot.retainer,
            valve_state=snapshot.valve_state,
        )
        self.ai_brake_percent = snapshot.ai_brake_percent
        self._update_brake_force()


BRAKE_SYSTEM_TYPES = {
    AirSinglePipe.TYPE_NAME: AirSinglePipe,
    AirTwinPipe.TYPE_NAME: AirTwinPipe,
    ElectroPneumatic.TYPE_NAME: ElectroPneumatic,
    VacuumSinglePipe.TYPE_NAME: VacuumSinglePipe,
}


def create_brake_system(type_name: Optional[str], length_m: float = 0.0) -> BrakeSystem:
    """Build the brake system named by a car's brake type token.

    Names starting with "vacuum" give a vacuum brake, "ep" an EP brake and
    "air_twin_pipe" a twin pipe brake; anything else, including None, gives
    a single pipe air brake.

    Args:
        type_name: Brake type token from the car definition.
        length_m: Car length, used for the brake pipe volume.

    Returns:
        A new brake system.
    """
    name = (type_name or "").strip().lower()
    if name.startswith("vacuum"):
        return VacuumSinglePipe(length_m)
    if name == "ep":
        return ElectroPneumatic(length_m)
    if name == "air_twin_pipe":
        return AirTwinPipe(length_m)
    return AirSinglePipe(length_m)
