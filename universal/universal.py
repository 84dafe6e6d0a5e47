"""
Universal pressure units and conversion functions for the brake model.
"""
from enum import Enum


class PressureUnit(Enum):
    """Enumeration of pressure units used by brake telemetry."""
    KPA = "kPa"
    BAR = "bar"
    PSI = "psi"
    INHG = "inHg"


# kPa per unit
KPA_PER_PSI = 6.89475729
KPA_PER_INHG = 3.386389
KPA_PER_BAR = 100.0

ONE_ATMOSPHERE_KPA = 100.0


class ConversionFunctions:
    """Holds conversion factors for pressure units."""

    @staticmethod
    def psi_to_kpa(psi):
        return psi * KPA_PER_PSI

    @staticmethod
    def kpa_to_psi(kpa):
        return kpa / KPA_PER_PSI

    @staticmethod
    def inhg_to_kpa(inhg):
        return inhg * KPA_PER_INHG

    @staticmethod
    def kpa_to_inhg(kpa):
        return kpa / KPA_PER_INHG

    @staticmethod
    def bar_to_kpa(bar):
        return bar * KPA_PER_BAR

    @staticmethod
    def kpa_to_bar(kpa):
        return kpa / KPA_PER_BAR

    @staticmethod
    def psi_to_bar(psi):
        """Convert psi to bar."""
        return psi * KPA_PER_PSI / KPA_PER_BAR

    @staticmethod
    def vacuum_to_psia(vacuum_inhg):
        """Convert a vacuum reading in inHg to absolute pressure in psia."""
        return (ONE_ATMOSPHERE_KPA - vacuum_inhg * KPA_PER_INHG) / KPA_PER_PSI

    @staticmethod
    def psia_to_vacuum(psia):
        """Convert absolute pressure in psia to a vacuum reading in inHg."""
        return (ONE_ATMOSPHERE_KPA - psia * KPA_PER_PSI) / KPA_PER_INHG


_TO_KPA = {
    PressureUnit.KPA: 1.0,
    PressureUnit.BAR: KPA_PER_BAR,
    PressureUnit.PSI: KPA_PER_PSI,
    PressureUnit.INHG: KPA_PER_INHG,
}

_FORMATS = {
    PressureUnit.KPA: "{:.0f}",
    PressureUnit.BAR: "{:.1f}",
    PressureUnit.PSI: "{:.0f}",
    PressureUnit.INHG: "{:.0f}",
}


def convert_pressure(value: float, from_unit: PressureUnit,
                     to_unit: PressureUnit) -> float:
    """Convert a pressure between two units.

    Args:
        value: Pressure expressed in from_unit.
        from_unit: Unit of value.
        to_unit: Unit to convert into.

    Returns:
        Pressure expressed in to_unit.
    """
    if from_unit == to_unit:
        return value
    return value * _TO_KPA[from_unit] / _TO_KPA[to_unit]


def format_pressure(value: float, from_unit: PressureUnit,
                    to_unit: PressureUnit, unit_displayed: bool) -> str:
    """Format a pressure for display, optionally with its unit suffix."""
    text = _FORMATS[to_unit].format(convert_pressure(value, from_unit, to_unit))
    if unit_displayed:
        text += " " + to_unit.value
    return text
