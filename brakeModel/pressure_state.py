"""Per-car brake pressures and the numeric helpers shared by every brake system.
"""
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

# Brake pipe pressure of a car whose hoses are not coupled
DISCONNECTED_PSI = -1.0


class ValveState(Enum):
    """Enumeration of triple valve (or EP valve) positions."""
    LAP = "Lap"
    APPLY = "Apply"
    RELEASE = "Release"
    EMERGENCY = "Emergency"


class RetainerSetting(Enum):
    """Enumeration of retaining valve handle positions."""
    EXHAUST = "exhaust"
    HIGH_PRESSURE = "high_pressure"
    LOW_PRESSURE = "low_pressure"
    SLOW_DIRECT = "slow_direct"


class BrakeEvent(Enum):
    """Discrete notifications emitted for sound and event consumers."""
    TRAIN_BRAKE_PRESSURE_INCREASE = "train_brake_pressure_increase"
    TRAIN_BRAKE_PRESSURE_DECREASE = "train_brake_pressure_decrease"
    ENGINE_BRAKE_PRESSURE_INCREASE = "engine_brake_pressure_increase"
    ENGINE_BRAKE_PRESSURE_DECREASE = "engine_brake_pressure_decrease"


@dataclass
class PressureState:
    """Brake pressures owned by exactly one car.

    Attributes:
        line_main: Brake pipe pressure in psi (psia for vacuum brakes).
            Negative means the car's hoses are disconnected.
        line_aux2: Main reservoir equalising pipe pressure in psi.
        line_aux3: Direct cylinder control line in psi. Carries the
            independent brake on locomotives of the lead group.
        ep_line: EP control line pressure in psi, used by EP cars only.
        cylinder: Brake cylinder pressure seen by the brake rigging.
        auto_cylinder: Cylinder pressure produced by the triple valve alone.
        aux_reservoir: Auxiliary reservoir pressure (vacuum reservoir for
            vacuum brakes).
        emergency_reservoir: Emergency reservoir pressure.
        handbrake_percent: Handbrake application, 0 to 100.
        retainer: Retaining valve position.
        valve_state: Current triple valve position.
        bail_off: Locomotive bail-off requested by the driver.
    """
    line_main: float = 90.0
    line_aux2: float = 0.0
    line_aux3: float = 0.0
    ep_line: float = 0.0
    cylinder: float = 0.0
    auto_cylinder: float = 0.0
    aux_reservoir: float = 90.0
    emergency_reservoir: float = 90.0
    handbrake_percent: float = 0.0
    retainer: RetainerSetting = RetainerSetting.EXHAUST
    valve_state: ValveState = ValveState.LAP
    bail_off: bool = False

    @property
    def connected(self) -> bool:
        return self.line_main >= 0.0


@dataclass
class BrakeSnapshot:
    """Flat record of one car's brake state for save/restore and network sync."""
    variant: str
    line_main: float
    line_aux2: float
    line_aux3: float
    cylinder: float
    auto_cylinder: float
    aux_reservoir: float
    emergency_reservoir: float
    handbrake_percent: float
    retainer: RetainerSetting
    valve_state: ValveState
    bail_off: bool = False
    full_service_psi: float = 0.0
    release_rate_psips: float = 0.0
    retainer_threshold_psi: float = 0.0
    ep_line: float = 0.0
    ai_brake_percent: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        """Get the snapshot as a plain dictionary with enum values as strings."""
        data = asdict(self)
        data["retainer"] = self.retainer.value
        data["valve_state"] = self.valve_state.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "BrakeSnapshot":
        values = dict(data)
        values["retainer"] = RetainerSetting(values["retainer"])
        values["valve_state"] = ValveState(values["valve_state"])
        return cls(**values)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def increase_pressure(pressure: float, target: float, rate: float,
                      dt: float) -> float:
    """Raise pressure toward target at rate, never past it."""
    if pressure < target:
        pressure += rate * dt
        if pressure > target:
            pressure = target
    return pressure


def decrease_pressure(pressure: float, target: float, rate: float,
                      dt: float) -> float:
    """Lower pressure toward target at rate, never past it."""
    if pressure > target:
        pressure -= rate * dt
        if pressure < target:
            pressure = target
    return pressure


def exchange_pressure(
    source: float,
    sink: float,
    dp: float,
    source_ratio: float = 1.0,
    sink_ratio: float = 1.0,
) -> Tuple[float, float]:
    """Move air from source to sink through a volume ratio.

    The sink rises by dp * sink_ratio while the source falls by
    dp * source_ratio. dp is limited so the two pressures meet at most.

    Args:
        source: Pressure of the supplying volume.
        sink: Pressure of the receiving volume.
        dp: Requested step, usually rate * dt.
        source_ratio: Source drop per unit of dp.
        sink_ratio: Sink rise per unit of dp.

    Returns:
        Tuple of (new source pressure, new sink pressure).
    """
    if source - dp * source_ratio < sink + dp * sink_ratio:
        dp = (source - sink) / (source_ratio + sink_ratio)
    return source - dp * source_ratio, sink + dp * sink_ratio


def clamp_state(state: PressureState, limit: float) -> None:
    """Clamp every pressure of state into [0, limit].

    A disconnected brake pipe keeps its sentinel value.
    """
    if state.line_main >= 0.0:
        state.line_main = clamp(state.line_main, 0.0, limit)
    state.line_aux2 = clamp(state.line_aux2, 0.0, limit)
    state.line_aux3 = clamp(state.line_aux3, 0.0, limit)
    state.ep_line = clamp(state.ep_line, 0.0, limit)
    state.cylinder = clamp(state.cylinder, 0.0, limit)
    state.auto_cylinder = clamp(state.auto_cylinder, 0.0, limit)
    state.aux_reservoir = clamp(state.aux_reservoir, 0.0, limit)
    state.emergency_reservoir = clamp(state.emergency_reservoir, 0.0, limit)
    state.handbrake_percent = clamp(state.handbrake_percent, 0.0, 100.0)
