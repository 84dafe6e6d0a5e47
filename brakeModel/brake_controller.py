"""Driver brake handle.

Turns a notch position (or a continuous handle value) into the requested
brake line pressure for the train brake, and into the requested cylinder
pressure for the independent engine brake.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from brakeModel.parameters import apply_parameters
from brakeModel.pressure_state import clamp, decrease_pressure, increase_pressure

logger = logging.getLogger(__name__)


class NotchType(Enum):
    """Enumeration of brake handle notch behaviours."""
    RELEASE = "Release"
    FULL_QUICK_RELEASE = "FullQuickRelease"
    RUNNING = "Running"
    APPLY = "Apply"
    FULL_SERVICE = "FullService"
    EP_APPLY = "EPApply"
    SELF_LAP_H = "SelfLapH"
    SUPPRESSION = "Suppression"
    CONTINUOUS_SERVICE = "ContinuousService"
    SELF_LAP = "SelfLap"
    EMERGENCY = "Emergency"
    DUMMY = "Dummy"


# notches that hold the pipe at a pressure set by the handle position
_SELF_LAP_TYPES = (
    NotchType.SELF_LAP_H,
    NotchType.SUPPRESSION,
    NotchType.CONTINUOUS_SERVICE,
    NotchType.SELF_LAP,
)


@dataclass
class Notch:
    """One handle position.

    Attributes:
        value: Handle value where the notch starts, 0 to 1.
        smooth: Whether the handle can rest anywhere inside the notch.
        notch_type: Pressure rule applied while in the notch.
    """
    value: float
    smooth: bool
    notch_type: NotchType


class DriverBrakeController:
    """Train or engine brake handle with notches or a continuous value."""

    PARAMETERS = {
        "maxsystempressure": ("max_pressure_psi",),
        "maxpressurepsi": ("max_pressure_psi",),
        "maxreleaserate": ("release_rate_psips",),
        "releaseratepsips": ("release_rate_psips",),
        "maxquickreleaserate": ("quick_release_rate_psips",),
        "maxapplicationrate": ("apply_rate_psips",),
        "applyratepsips": ("apply_rate_psips",),
        "emergencyapplicationrate": ("emergency_rate_psips",),
        "emergencyratepsips": ("emergency_rate_psips",),
        "fullservicepressuredrop": ("full_service_reduction_psi",),
        "fullservicereductionpsi": ("full_service_reduction_psi",),
        "minpressurereduction": ("min_reduction_psi",),
        "minreductionpsi": ("min_reduction_psi",),
    }

    def __init__(self, notches: Optional[Sequence[Notch]] = None,
                 step_size: float = 0.1) -> None:
        self.max_pressure_psi = 90.0
        self.release_rate_psips = 5.0
        self.quick_release_rate_psips = 10.0
        self.apply_rate_psips = 2.0
        self.emergency_rate_psips = 10.0
        self.full_service_reduction_psi = 26.0
        self.min_reduction_psi = 6.0
        self.graduated_release = False
        self.notches: List[Notch] = sorted(notches or [], key=lambda n: n.value)
        self.step_size = step_size
        self.current_notch = 0
        self.current_value = 0.0
        if self.notches:
            self.current_value = self.notches[0].value

    @classmethod
    def with_default_notches(cls) -> "DriverBrakeController":
        """Build a self-lapping automatic brake handle."""
        return cls([
            Notch(0.0, False, NotchType.RELEASE),
            Notch(0.1, False, NotchType.RUNNING),
            Notch(0.3, True, NotchType.SELF_LAP),
            Notch(0.85, False, NotchType.FULL_SERVICE),
            Notch(1.0, False, NotchType.EMERGENCY),
        ])

    def parse_parameters(self, params: Mapping[str, object]) -> int:
        return apply_parameters(self, params, self.PARAMETERS)

    # ---- handle position ----
    def get_current_notch(self) -> Optional[Notch]:
        if not self.notches:
            return None
        return self.notches[self.current_notch]

    def get_notch_fraction(self) -> float:
        """Get how far the handle sits inside the current notch.

        Returns:
            1.0 for a fixed notch (the handle value for an EP apply notch),
            the relative position inside a smooth notch otherwise. Release
            notches count from their upper end.
        """
        notch = self.get_current_notch()
        if notch is None:
            return 0.0
        if not notch.smooth:
            return self.current_value if notch.notch_type == NotchType.EP_APPLY else 1.0
        upper = 1.0
        if self.current_notch + 1 < len(self.notches):
            upper = self.notches[self.current_notch + 1].value
        if upper == notch.value:
            return 1.0
        x = (self.current_value - notch.value) / (upper - notch.value)
        if notch.notch_type == NotchType.RELEASE:
            x = 1 - x
        return x

    def set_value(self, value: float) -> None:
        """Move the handle to a value in 0..1, selecting the matching notch."""
        self.current_value = clamp(float(value), 0.0, 1.0)
        for i, notch in enumerate(self.notches):
            if notch.value <= self.current_value:
                self.current_notch = i

    def set_notch(self, index: int) -> None:
        if not self.notches:
            return
        self.current_notch = int(clamp(index, 0, len(self.notches) - 1))
        self.current_value = self.notches[self.current_notch].value

    def notch_up(self) -> None:
        if self.notches:
            self.set_notch(self.current_notch + 1)
        else:
            self.set_value(self.current_value + self.step_size)

    def notch_down(self) -> None:
        if self.notches:
            self.set_notch(self.current_notch - 1)
        else:
            self.set_value(self.current_value - self.step_size)

    def _set_notch_type(self, notch_type: NotchType) -> bool:
        for i, notch in enumerate(self.notches):
            if notch.notch_type == notch_type:
                self.set_notch(i)
                return True
        return False

    def set_emergency(self) -> None:
        if not self._set_notch_type(NotchType.EMERGENCY):
            logger.debug("Brake handle has no emergency notch")

    def is_emergency(self) -> bool:
        notch = self.get_current_notch()
        return notch is not None and notch.notch_type == NotchType.EMERGENCY

    def set_full_brake(self) -> None:
        self._set_notch_type(NotchType.CONTINUOUS_SERVICE)
        self._set_notch_type(NotchType.FULL_SERVICE)

    def is_full_brake(self) -> bool:
        notch = self.get_current_notch()
        return notch is not None and notch.notch_type in (
            NotchType.FULL_SERVICE, NotchType.CONTINUOUS_SERVICE)

    # ---- pressure requests ----
    def update_pressure(self, pressure: float, ep_pressure: float,
                        dt: float) -> Tuple[float, float]:
        """Advance the requested train brake line pressure.

        Args:
            pressure: Current brake line target in psi.
            ep_pressure: Current EP control line pressure in psi.
            dt: Elapsed simulation time in seconds.

        Returns:
            Tuple of (new brake line target, new EP line pressure), each
            clamped to 0..max_pressure_psi.
        """
        notch = self.get_current_notch()
        if notch is None:
            return (self.max_pressure_psi - self.full_service_reduction_psi * self.current_value,
                    ep_pressure)

        x = self.get_notch_fraction()
        kind = notch.notch_type
        if kind == NotchType.RELEASE:
            pressure += x * self.release_rate_psips * dt
            ep_pressure -= x * self.release_rate_psips * dt
        elif kind == NotchType.FULL_QUICK_RELEASE:
            pressure += x * 5.0 * self.release_rate_psips * dt
            ep_pressure -= x * 5.0 * self.release_rate_psips * dt
        elif kind == NotchType.RUNNING:
            if notch.smooth:
                x = 0.1 * (1 - x)
            pressure += x * self.release_rate_psips * dt
        elif kind in (NotchType.APPLY, NotchType.FULL_SERVICE):
            pressure -= x * self.apply_rate_psips * dt
        elif kind == NotchType.EP_APPLY:
            pressure += x * self.release_rate_psips * dt
            if notch.smooth:
                ep_pressure = increase_pressure(
                    ep_pressure, x * self.full_service_reduction_psi, self.apply_rate_psips, dt)
            else:
                ep_pressure += x * self.apply_rate_psips * dt
        elif kind in _SELF_LAP_TYPES:
            target = (self.max_pressure_psi - self.min_reduction_psi * (1 - x)
                      - self.full_service_reduction_psi * x)
            pressure = decrease_pressure(pressure, target, self.apply_rate_psips, dt)
            if self.graduated_release:
                pressure = increase_pressure(pressure, target, self.release_rate_psips, dt)
        elif kind == NotchType.EMERGENCY:
            pressure -= self.emergency_rate_psips * dt
        elif kind == NotchType.DUMMY:
            target = x * (self.max_pressure_psi - self.full_service_reduction_psi)
            pressure = increase_pressure(pressure, target, self.release_rate_psips, dt)
            pressure = decrease_pressure(pressure, target, self.apply_rate_psips, dt)

        return (clamp(pressure, 0.0, self.max_pressure_psi),
                clamp(ep_pressure, 0.0, self.max_pressure_psi))

    def update_engine_brake_pressure(self, pressure: float, dt: float) -> float:
        """Advance the requested independent brake cylinder pressure.

        Args:
            pressure: Current engine brake target in psi.
            dt: Elapsed simulation time in seconds.

        Returns:
            New engine brake target, clamped to 0..max_pressure_psi.
        """
        full = self.max_pressure_psi - self.full_service_reduction_psi
        notch = self.get_current_notch()
        if notch is None:
            return full * self.current_value

        x = self.get_notch_fraction()
        kind = notch.notch_type
        if kind == NotchType.RELEASE:
            pressure -= x * self.release_rate_psips * dt
        elif kind == NotchType.RUNNING:
            pressure -= self.release_rate_psips * dt
        elif kind == NotchType.EMERGENCY:
            pressure += self.emergency_rate_psips * dt
        elif kind == NotchType.DUMMY:
            pressure = full * self.current_value
        else:
            target = x * full
            pressure = increase_pressure(pressure, target, self.apply_rate_psips, dt)
            pressure = decrease_pressure(pressure, target, self.release_rate_psips, dt)
        return clamp(pressure, 0.0, self.max_pressure_psi)

    # ---- snapshot ----
    def snapshot(self) -> Dict[str, float]:
        """Get the calibration and handle position as a flat dictionary."""
        return {
            "max_pressure_psi": self.max_pressure_psi,
            "release_rate_psips": self.release_rate_psips,
            "quick_release_rate_psips": self.quick_release_rate_psips,
            "apply_rate_psips": self.apply_rate_psips,
            "emergency_rate_psips": self.emergency_rate_psips,
            "full_service_reduction_psi": self.full_service_reduction_psi,
            "min_reduction_psi": self.min_reduction_psi,
            "current_notch": self.current_notch,
            "current_value": self.current_value,
        }

    def restore(self, data: Mapping[str, float]) -> None:
        for key in (
            "max_pressure_psi",
            "release_rate_psips",
            "quick_release_rate_psips",
            "apply_rate_psips",
            "emergency_rate_psips",
            "full_service_reduction_psi",
            "min_reduction_psi",
            "current_value",
        ):
            setattr(self, key, float(data[key]))
        self.current_notch = int(data["current_notch"])
