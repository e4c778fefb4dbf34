# calculator.py
import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Mapping, Optional

from config import UNITS


def _to_number(value) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        num = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    return num if math.isfinite(num) else None


def calculate_dose(inputs: Mapping) -> Optional[Dict[str, float]]:
    """
    Returns {"correction_dose", "carb_dose", "total_dose"} in insulin units,
    or None when any of the five numeric fields is missing, non-numeric,
    or would divide by zero. No history is written here.
    """
    current = _to_number(inputs.get("current_bg"))
    target = _to_number(inputs.get("target_bg"))
    factor = _to_number(inputs.get("correction_factor"))
    carbs = _to_number(inputs.get("carbs"))
    ratio = _to_number(inputs.get("carb_ratio"))

    if None in (current, target, factor, carbs, ratio):
        return None
    if factor == 0 or ratio == 0:
        return None

    # Negative correction is not given unless specified
    correction_dose = max(0.0, (current - target) / factor)
    carb_dose = max(0.0, carbs / ratio)
    total_dose = max(0.0, correction_dose + carb_dose)

    # Huge finite inputs can still overflow
    if not all(math.isfinite(v) for v in (correction_dose, carb_dose, total_dose)):
        return None

    return {
        "correction_dose": correction_dose,
        "carb_dose": carb_dose,
        "total_dose": total_dose,
    }


def format_number(num: float) -> float:
    """One decimal place, halves rounded away from zero (7.65 -> 7.7)."""
    rounded = Decimal(repr(float(num))).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return float(rounded)


def unit_label(unit: Optional[str]) -> str:
    if unit in UNITS.values():
        return unit
    return UNITS.get(str(unit).upper(), UNITS["MGDL"]) if unit else UNITS["MGDL"]
