"""Shift target resolution and per-line compliance percentages."""
from __future__ import annotations

from fabrilog.models import Product, ProductionDetail

TEN_HOUR_SHIFT = "7:00am - 5:00pm"
TREE_TIED_PRODUCT_TYPE = "arbol_amarradora"

# Older records store a shift keyword instead of the hour range.
_LEGACY_SHIFT_LABELS = {
    "manana": "7:00am - 3:30pm",
    "tarde": "3:30pm - 11:30pm",
    "noche": "11:30pm - 7:00am",
}


def shift_label(shift: str | None) -> str:
    """Return the display label for a stored shift value."""

    text = (shift or "").strip()
    return _LEGACY_SHIFT_LABELS.get(text, text)


def is_ten_hour_shift(shift: str | None) -> bool:
    return shift_label(shift) == TEN_HOUR_SHIFT


def resolve_target(product: Product | None, shift: str | None) -> float:
    """Return the production target for ``product`` worked on ``shift``.

    Tree-tied products always use their general target.  Every other product
    uses the ten-hour target when the shift label matches the ten-hour shift
    exactly, otherwise the eight-hour target; a missing shift-specific value
    falls back to the general target.  ``0`` means no target is configured.
    """

    if product is None:
        return 0.0

    if product.product_type == TREE_TIED_PRODUCT_TYPE:
        target = product.target
    else:
        shift_target = product.target_10h if is_ten_hour_shift(shift) else product.target_8h
        target = shift_target if shift_target is not None else product.target

    if target is None or target <= 0:
        return 0.0
    return float(target)


def line_percentage(produced: float | None, target: float | None) -> float:
    """Return ``produced / target * 100``, or ``0`` without a usable target."""

    if not target or target <= 0:
        return 0.0
    return (float(produced or 0) / float(target)) * 100


def detail_percentage(detail: ProductionDetail, shift: str | None) -> float:
    return line_percentage(detail.produced, resolve_target(detail.product, shift))


def to_pct100(value: float | None) -> float:
    """Normalise a stored percentage to the 0-100 scale.

    Some rows store compliance as a fraction (0.85) instead of a percentage
    (85); values in ``(0, 1]`` are scaled up.
    """

    number = float(value or 0)
    if 0 < number <= 1:
        return number * 100
    return number
