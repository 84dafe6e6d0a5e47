"""Numeric parameter intake shared by brake systems, controllers and locomotives.
"""
import logging
import re
from typing import Dict, Mapping, Sequence

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_SCOPE_PREFIXES = ("wagon(", "engine(")


def normalize_parameter_name(name: str) -> str:
    """Reduce a parameter name to lowercase alphanumerics without scope prefix.

    ``maxBrakeForceN``, ``max_brake_force_n`` and ``wagon(maxbrakeforcen``
    all normalize to ``maxbrakeforcen``.
    """
    key = str(name).strip().lower()
    for prefix in _SCOPE_PREFIXES:
        if key.startswith(prefix):
            key = key[len(prefix):]
            break
    return _NON_ALNUM.sub("", key)


def apply_parameters(
    target: object,
    params: Mapping[str, object],
    table: Dict[str, Sequence[str]],
) -> int:
    """Copy recognised numeric parameters onto target's attributes.

    Unknown names and values that are not numbers are skipped.

    Args:
        target: Object whose attributes receive the values.
        params: Parameter name to value mapping from the external loader.
        table: Normalized parameter name to attribute names.

    Returns:
        Number of parameters applied.
    """
    applied = 0
    for name, raw in params.items():
        attrs = table.get(normalize_parameter_name(name))
        if attrs is None:
            logger.debug("Ignoring unknown brake parameter %r", name)
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            logger.debug("Ignoring malformed value %r for %r", raw, name)
            continue
        for attr in attrs:
            setattr(target, attr, value)
        applied += 1
    return applied


def copy_parameters(source: object, target: object,
                    table: Dict[str, Sequence[str]]) -> None:
    """Copy every attribute named in table from source to target."""
    for attrs in table.values():
        for attr in attrs:
            setattr(target, attr, getattr(source, attr))
