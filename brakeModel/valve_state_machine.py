"""Triple valve state machine.
"""
from dataclasses import dataclass

from brakeModel.pressure_state import PressureState, ValveState


@dataclass(frozen=True)
class ValveThresholds:
    """Pressures the triple valve compares the brake pipe against.

    Attributes:
        full_service_psi: Brake pipe pressure below which the valve goes to
            emergency.
        band_psi: Hysteresis band around the auxiliary reservoir pressure.
    """
    full_service_psi: float = 50.0
    band_psi: float = 1.0


def transition(state: PressureState, thresholds: ValveThresholds) -> ValveState:
    """Get the next triple valve position for the current pressures.

    Pure function of the brake pipe, the auxiliary reservoir and the
    previous position held in state; the caller applies the pressure
    changes for the returned position.

    Args:
        state: Pressures of one car, including its current valve state.
        thresholds: Full service pressure and hysteresis band.

    Returns:
        The new valve state.
    """
    line = state.line_main
    aux = state.aux_reservoir
    band = thresholds.band_psi
    previous = state.valve_state

    if line < thresholds.full_service_psi - band:
        return ValveState.EMERGENCY
    if line > aux + band:
        return ValveState.RELEASE
    if previous == ValveState.EMERGENCY and line > aux:
        return ValveState.RELEASE
    if previous != ValveState.EMERGENCY and line < aux - band:
        return ValveState.APPLY
    if previous == ValveState.APPLY and line >= aux:
        return ValveState.LAP
    return previous
